"""
Django models for onion-export procurement.

Table names match the existing database: masters (suppliers, item_master,
gap_items, sieve_sizes, customers, units) and the receipt chain
purchase_orders -> pre_gr_entry -> gqr_entry. Links along that chain are
nullable so list/detail queries can outer-join and fill gaps at serialization
time (see services/gqr.py).

Weights are kilograms; rates are per kilogram.
"""

import uuid
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models


# =============================================================================
# Base Model with Timestamps
# =============================================================================

class TimestampedModel(models.Model):
    """Abstract base providing created/updated timestamps for every table."""
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


def _weight_field(**kwargs):
    kwargs.setdefault("max_digits", 12)
    kwargs.setdefault("decimal_places", 3)
    kwargs.setdefault("null", True)
    kwargs.setdefault("blank", True)
    return models.DecimalField(**kwargs)


def _money_field(**kwargs):
    kwargs.setdefault("max_digits", 14)
    kwargs.setdefault("decimal_places", 2)
    kwargs.setdefault("null", True)
    kwargs.setdefault("blank", True)
    return models.DecimalField(**kwargs)


# =============================================================================
# Master Data
# =============================================================================

class Supplier(TimestampedModel):
    name = models.CharField(max_length=150)
    contact_name = models.CharField(max_length=100, null=True, blank=True)
    phone = models.CharField(max_length=30, null=True, blank=True)
    address = models.TextField(null=True, blank=True)

    class Meta:
        db_table = 'suppliers'
        ordering = ['name']

    def __str__(self):
        return self.name


class ItemMaster(TimestampedModel):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    item_name = models.CharField(max_length=150)
    item_unit = models.CharField(max_length=20, null=True, blank=True)
    hsn_code = models.CharField(max_length=20, null=True, blank=True)

    class Meta:
        db_table = 'item_master'
        ordering = ['item_name']

    def __str__(self):
        return self.item_name

    @property
    def is_onion(self) -> bool:
        return "onion" in (self.item_name or "").lower()


class GapItem(TimestampedModel):
    """Secondary produce separated out during grading."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)

    class Meta:
        db_table = 'gap_items'
        ordering = ['name']

    def __str__(self):
        return self.name


class SieveSize(TimestampedModel):
    size = models.CharField(max_length=30)
    description = models.CharField(max_length=255, null=True, blank=True)

    class Meta:
        db_table = 'sieve_sizes'
        ordering = ['size']

    def __str__(self):
        return self.size


class Customer(TimestampedModel):
    name = models.CharField(max_length=150)
    contact = models.CharField(max_length=100, null=True, blank=True)
    mobile = models.CharField(max_length=30, null=True, blank=True)
    email = models.EmailField(max_length=254, null=True, blank=True)
    address = models.TextField(null=True, blank=True)
    country = models.CharField(max_length=80, null=True, blank=True)

    class Meta:
        db_table = 'customers'
        ordering = ['name']

    def __str__(self):
        return self.name


class Unit(TimestampedModel):
    """Unit of quantity with its GST UQC code."""
    quantity = models.CharField(max_length=50)
    quantity_type = models.CharField(max_length=50, null=True, blank=True)
    uqc_code = models.CharField(max_length=10)

    class Meta:
        db_table = 'units'
        ordering = ['quantity']

    def __str__(self):
        return f"{self.quantity} ({self.uqc_code})"


# =============================================================================
# Purchase Orders
# =============================================================================

class PurchaseOrder(TimestampedModel):
    """
    Purchase order raised against a supplier for one item. Quantity is in
    metric tons for onion items; rate is per kilogram.
    """
    vouchernumber = models.CharField(max_length=30, unique=True)
    ref_no = models.CharField(max_length=50, null=True, blank=True)
    date = models.DateField()
    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='purchase_orders'
    )
    item = models.ForeignKey(
        ItemMaster,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='purchase_orders'
    )
    quantity = _weight_field(validators=[MinValueValidator(Decimal('0'))])
    rate = _money_field()
    cargo = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    damage_allowed_kgs_ton = _weight_field(max_digits=8)
    podi_rate = _money_field()

    # Tally posting
    tally_posted = models.BooleanField(default=False)
    tally_posted_at = models.DateTimeField(null=True, blank=True)
    tally_response = models.TextField(null=True, blank=True)

    admin_remark = models.TextField(null=True, blank=True)
    po_closed = models.BooleanField(default=False)

    class Meta:
        db_table = 'purchase_orders'
        ordering = ['-date', '-id']
        indexes = [
            models.Index(fields=['supplier']),
            models.Index(fields=['po_closed']),
        ]

    def __str__(self):
        return f"PO {self.vouchernumber}"


# =============================================================================
# Pre-GR (weighbridge receipt)
# =============================================================================

class PreGREntry(TimestampedModel):
    """
    Preliminary goods receipt recorded at the weighbridge. Commercial terms
    are copied from the PO so later PO edits do not rewrite history.
    """
    vouchernumber = models.CharField(max_length=30, null=True, blank=True)
    date = models.DateField()
    po = models.ForeignKey(
        PurchaseOrder,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='pre_gr_entries'
    )
    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='pre_gr_entries'
    )
    item = models.ForeignKey(
        ItemMaster,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='pre_gr_entries'
    )
    gap_item1 = models.ForeignKey(
        GapItem,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='+'
    )
    gap_item2 = models.ForeignKey(
        GapItem,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='+'
    )

    quantity = _weight_field()
    rate = _money_field()
    cargo = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    damage_allowed = _weight_field(max_digits=8)

    ladden_wt = _weight_field()
    empty_wt = _weight_field()
    net_wt = _weight_field()
    doubles = _weight_field()
    weight_shortage = _weight_field()

    bags = models.IntegerField(null=True, blank=True)
    loaded_from = models.CharField(max_length=150, null=True, blank=True)
    vehicle_no = models.CharField(max_length=30, null=True, blank=True)
    weight_bridge_name = models.CharField(max_length=150, null=True, blank=True)
    prepared_by = models.CharField(max_length=100, null=True, blank=True)
    gr_no = models.CharField(max_length=30, null=True, blank=True)
    gr_dt = models.DateField(null=True, blank=True)
    sieve_no = models.CharField(max_length=30, null=True, blank=True)

    gap_item1_bags = models.IntegerField(null=True, blank=True)
    gap_item2_bags = models.IntegerField(null=True, blank=True)
    podi_bags = models.IntegerField(null=True, blank=True)

    # Admin approval
    is_admin_approved = models.BooleanField(default=False)
    admin_remark = models.TextField(null=True, blank=True)
    advance_paid = _money_field()
    admin_approved_advance = _money_field()

    is_gqr_created = models.BooleanField(default=False)
    remarks = models.TextField(null=True, blank=True)

    class Meta:
        db_table = 'pre_gr_entry'
        ordering = ['-date', '-id']
        indexes = [
            models.Index(fields=['po']),
            models.Index(fields=['is_admin_approved', 'is_gqr_created']),
        ]

    def __str__(self):
        return f"Pre-GR {self.gr_no or self.id}"

    @property
    def effective_net_wt(self) -> Decimal:
        """Net weight, falling back to laden minus empty when net is missing."""
        if self.net_wt:
            return self.net_wt
        if self.ladden_wt and self.empty_wt:
            return self.ladden_wt - self.empty_wt
        return Decimal('0')


# =============================================================================
# GQR (goods quality report)
# =============================================================================

class GQREntry(TimestampedModel):
    """
    Quality reconciliation of a Pre-GR: how the received net weight splits into
    export quality, gap items, podi and wastage, and what it is worth.
    """
    STATUS_OPEN = 'Open'
    STATUS_CLOSED = 'Closed'
    FINALIZED_PREFIX = 'Finalized'

    pre_gr = models.ForeignKey(
        PreGREntry,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='gqr_entries'
    )
    date = models.DateField()

    rot_weight = _weight_field()
    doubles_weight = _weight_field()
    sand_weight = _weight_field()
    weight_shortage = _weight_field()
    net_wt = _weight_field()
    export_quality_weight = _weight_field()
    podi_weight = _weight_field()
    gap_items_weight = _weight_field()
    total_wastage_weight = _weight_field()
    total_value_received = _money_field()

    # Per-GQR overrides of the PO commercial terms
    volatile_po_rate = _money_field()
    volatile_gap_item_rate = _money_field()
    volatile_podi_rate = _money_field()
    volatile_wastage_kgs_per_ton = _weight_field(max_digits=8)

    gqr_status = models.CharField(max_length=40, default=STATUS_OPEN)
    is_tally_posted = models.BooleanField(default=False)
    finalized_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'gqr_entry'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['gqr_status']),
            models.Index(fields=['pre_gr']),
        ]

    def __str__(self):
        return f"GQR {self.id} ({self.gqr_status})"

    @property
    def is_finalized(self) -> bool:
        return (self.gqr_status or '').startswith(self.FINALIZED_PREFIX)
