"""
GQR (goods quality report) service.

A GQR splits the net weight of an approved Pre-GR into export quality, gap
items, podi and wastage, and values the lot at the PO rates (or the per-GQR
"volatile" overrides once the lot is worked out).

Reads go through a single outer-joined query over
GQR -> Pre-GR -> PO -> supplier/item. Any link in that chain may be missing;
serialization substitutes placeholder records so callers always receive the
full nested shape.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from procurement import rules
from procurement.models import GQREntry, PreGREntry, PurchaseOrder
from procurement.services.errors import ProcurementError
from procurement.services.formatting import (
    format_date_ddmmyyyy,
    number_to_words,
    to_decimal,
    to_int,
)

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("ramexpo.audit")

ZERO = Decimal("0")
HUNDRED = Decimal("100")
KGS_PER_MT = Decimal("1000")

OVER_ACCOUNTED_MESSAGE = "Total accounted weight cannot exceed the Pre-GR Net Weight."

_RESOLVER_RELATED = (
    "pre_gr__po__supplier",
    "pre_gr__po__item",
    "pre_gr__gap_item1",
    "pre_gr__gap_item2",
)

_DEDUCTION_FIELDS = {
    "rot_weight": "rot_weight",
    "doubles_weight": "doubles_weight",
    "sand_weight": "sand_weight",
    "weight_shortage": "weight_shortage",
    "gap_items_weight": "gap_items_weight",
    "podi_weight": "podi_weight",
}
_VOLATILE_FIELDS = (
    "volatile_po_rate",
    "volatile_gap_item_rate",
    "volatile_podi_rate",
    "volatile_wastage_kgs_per_ton",
)
_FINAL_BAG_FIELDS = ("final_podi_bags", "final_gap_item1_bags", "final_gap_item2_bags")


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value or 0))


def _fixed(value: Decimal, places: int) -> str:
    quantum = Decimal(1).scaleb(-places)
    return str(_dec(value).quantize(quantum, rounding=ROUND_HALF_UP))


def round2(value: Decimal) -> Decimal:
    return _dec(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# =============================================================================
# Calculation
# =============================================================================

@dataclass(frozen=True)
class GQRFigures:
    net_wt: Decimal
    export_quality_weight: Decimal
    total_wastage_weight: Decimal
    total_value_received: Decimal
    yield_percentage: Decimal
    weight_difference: Decimal

    @property
    def is_over_accounted(self) -> bool:
        # A derived export weight below zero means the deductions alone exceed net.
        tolerance = rules.WEIGHT_DIFFERENCE_TOLERANCE
        return self.weight_difference < -tolerance or self.export_quality_weight < -tolerance


def pre_gr_net_weight(pre_gr: PreGREntry | None) -> Decimal:
    """Pre-GR net weight, falling back to laden minus empty."""
    if pre_gr is None:
        return ZERO
    return pre_gr.effective_net_wt


def calculate_gqr_figures(
    net_wt,
    rot_weight=ZERO,
    doubles_weight=ZERO,
    sand_weight=ZERO,
    weight_shortage=ZERO,
    gap_items_weight=ZERO,
    podi_weight=ZERO,
    po_rate=ZERO,
    gap_rate=None,
    podi_rate=ZERO,
    export_quality_weight=None,
) -> GQRFigures:
    """
    Split ``net_wt`` into its accounted parts and value the lot.

    Export quality defaults to whatever is left after every deduction. Gap
    items are valued at ``gap_rate`` when set, otherwise at the PO rate.
    """
    net = _dec(net_wt)
    rot, doubles, sand, shortage = (_dec(v) for v in (rot_weight, doubles_weight, sand_weight, weight_shortage))
    gap, podi = _dec(gap_items_weight), _dec(podi_weight)
    po_rate = _dec(po_rate)
    podi_rate = _dec(podi_rate)
    gap_rate = _dec(gap_rate) if gap_rate else po_rate

    wastage = rot + doubles + sand + shortage
    if export_quality_weight is None:
        export = net - (wastage + gap + podi)
    else:
        export = _dec(export_quality_weight)

    value = export * po_rate + gap * gap_rate + podi * podi_rate
    yield_pct = (export / net * HUNDRED) if net > 0 else ZERO
    difference = net - (export + gap + podi + wastage)

    return GQRFigures(
        net_wt=net,
        export_quality_weight=export,
        total_wastage_weight=wastage,
        total_value_received=round2(value),
        yield_percentage=round2(yield_pct),
        weight_difference=difference,
    )


# =============================================================================
# Resolver and serialization
# =============================================================================

def resolver_queryset() -> QuerySet:
    """GQR rows with their Pre-GR, PO, supplier, item and gap items in one query."""
    return GQREntry.objects.select_related(*_RESOLVER_RELATED)


def _serialize_purchase_order_link(po: PurchaseOrder | None) -> Dict[str, Any]:
    if po is None:
        return rules.missing_purchase_order()
    return {
        "id": po.id,
        "vouchernumber": po.vouchernumber,
        "date": po.date.isoformat() if po.date else None,
        "rate": po.rate,
        "podi_rate": po.podi_rate,
        "quantity": po.quantity,
        "cargo": po.cargo,
        "damage_allowed_kgs_ton": po.damage_allowed_kgs_ton,
        "suppliers": (
            {"id": po.supplier.id, "name": po.supplier.name}
            if po.supplier
            else rules.missing_supplier()
        ),
        "item_master": (
            {
                "id": str(po.item.id),
                "item_name": po.item.item_name,
                "hsn_code": po.item.hsn_code,
                "item_unit": po.item.item_unit,
            }
            if po.item
            else rules.missing_item()
        ),
    }


def _serialize_pre_gr_link(pre_gr: PreGREntry | None) -> Dict[str, Any]:
    if pre_gr is None:
        return rules.missing_pre_gr()
    return {
        "id": pre_gr.id,
        "vouchernumber": pre_gr.vouchernumber,
        "date": pre_gr.date.isoformat() if pre_gr.date else None,
        "gr_no": pre_gr.gr_no or rules.MISSING_LABEL,
        "gr_dt": pre_gr.gr_dt.isoformat() if pre_gr.gr_dt else None,
        "vehicle_no": pre_gr.vehicle_no,
        "ladden_wt": pre_gr.ladden_wt,
        "empty_wt": pre_gr.empty_wt,
        "net_wt": pre_gr.net_wt,
        "bags": pre_gr.bags,
        "podi_bags": pre_gr.podi_bags,
        "gap_item1": pre_gr.gap_item1.name if pre_gr.gap_item1 else None,
        "gap_item1_bags": pre_gr.gap_item1_bags,
        "gap_item2": pre_gr.gap_item2.name if pre_gr.gap_item2 else None,
        "gap_item2_bags": pre_gr.gap_item2_bags,
        "purchase_orders": _serialize_purchase_order_link(pre_gr.po),
    }


def serialize_gqr(gqr: GQREntry, detail: bool = False) -> Dict[str, Any]:
    data = {
        "id": gqr.id,
        "pre_gr_id": gqr.pre_gr_id,
        "date": gqr.date.isoformat() if gqr.date else None,
        "created_at": gqr.created_at.isoformat() if gqr.created_at else None,
        "gqr_status": gqr.gqr_status,
        "is_tally_posted": gqr.is_tally_posted,
        "total_value_received": gqr.total_value_received,
        "export_quality_weight": gqr.export_quality_weight,
        "net_wt": gqr.net_wt,
        "rot_weight": gqr.rot_weight,
        "doubles_weight": gqr.doubles_weight,
        "sand_weight": gqr.sand_weight,
        "weight_shortage": gqr.weight_shortage,
        "gap_items_weight": gqr.gap_items_weight,
        "podi_weight": gqr.podi_weight,
        "total_wastage_weight": gqr.total_wastage_weight,
        "volatile_po_rate": gqr.volatile_po_rate,
        "volatile_gap_item_rate": gqr.volatile_gap_item_rate,
        "volatile_podi_rate": gqr.volatile_podi_rate,
        "volatile_wastage_kgs_per_ton": gqr.volatile_wastage_kgs_per_ton,
        "finalized_at": gqr.finalized_at.isoformat() if gqr.finalized_at else None,
        "pre_gr_entry": _serialize_pre_gr_link(gqr.pre_gr),
    }
    if detail:
        pre_gr_link = data["pre_gr_entry"]
        data["total_value_in_words"] = number_to_words(gqr.total_value_received or 0)
        data["date_display"] = format_date_ddmmyyyy(gqr.date)
        data["gr_dt_display"] = format_date_ddmmyyyy(pre_gr_link["gr_dt"])
        data["po_date_display"] = format_date_ddmmyyyy(pre_gr_link["purchase_orders"]["date"])
    return data


def resolve_gqr(gqr_id: Any) -> GQREntry:
    try:
        return resolver_queryset().get(pk=gqr_id)
    except (GQREntry.DoesNotExist, ValueError, TypeError):
        raise ProcurementError("GQR not found.", code="not_found", field="id")


def get_gqr(gqr_id: Any) -> Dict[str, Any]:
    return serialize_gqr(resolve_gqr(gqr_id), detail=True)


def list_gqr(filters: Dict[str, Any] | None = None) -> List[Dict[str, Any]]:
    filters = filters or {}
    queryset = resolver_queryset().order_by("-created_at", "-id")
    if filters.get("status"):
        queryset = queryset.filter(gqr_status=filters["status"])
    if filters.get("posted") is not None:
        queryset = queryset.filter(is_tally_posted=filters["posted"])
    if filters.get("supplier_id"):
        queryset = queryset.filter(pre_gr__po__supplier_id=filters["supplier_id"])
    return [serialize_gqr(gqr) for gqr in queryset]


# =============================================================================
# Writes
# =============================================================================

def _deductions_from_payload(payload: Dict[str, Any], current: GQREntry | None = None) -> Dict[str, Decimal]:
    values: Dict[str, Decimal] = {}
    for key, field_name in _DEDUCTION_FIELDS.items():
        if key in payload:
            values[field_name] = to_decimal(payload.get(key), key, ZERO)
        elif current is not None:
            values[field_name] = getattr(current, field_name) or ZERO
        else:
            values[field_name] = ZERO
    return values


def _apply_final_bags(pre_gr: PreGREntry, payload: Dict[str, Any]) -> List[str]:
    changed = []
    for key in _FINAL_BAG_FIELDS:
        if key in payload:
            field_name = key.replace("final_", "", 1)
            setattr(pre_gr, field_name, to_int(payload.get(key), key) or 0)
            changed.append(field_name)
    return changed


@transaction.atomic
def create_gqr(payload: Dict[str, Any], actor_id: Optional[str]) -> Dict[str, Any]:
    """Create the GQR for an approved Pre-GR and mark the Pre-GR as done."""
    payload = payload or {}
    pre_gr_id = payload.get("pre_gr_id")
    if not pre_gr_id:
        raise ProcurementError("Please select a Pre-GR entry.", code="required", field="pre_gr_id")

    try:
        pre_gr = (
            PreGREntry.objects.select_for_update(of=("self",))
            .select_related("po")
            .get(pk=pre_gr_id)
        )
    except (PreGREntry.DoesNotExist, ValueError, TypeError):
        raise ProcurementError("Pre-GR entry not found.", code="not_found", field="pre_gr_id")

    if not pre_gr.is_admin_approved:
        raise ProcurementError(
            "Pre-GR entry must be approved before a GQR is created.",
            code="not_approved",
            field="pre_gr_id",
        )
    if pre_gr.is_gqr_created or pre_gr.gqr_entries.exists():
        raise ProcurementError(
            "A GQR already exists for this Pre-GR entry.",
            code="already_created",
            field="pre_gr_id",
        )

    po = pre_gr.po
    deductions = _deductions_from_payload(payload)
    # Kept on the GQR so later edits value gap items the same way.
    gap_rate = to_decimal(payload.get("gap_items_rate"), "gap_items_rate")
    figures = calculate_gqr_figures(
        pre_gr_net_weight(pre_gr),
        po_rate=(po.rate if po else None) or ZERO,
        gap_rate=gap_rate,
        podi_rate=(po.podi_rate if po else None) or ZERO,
        **deductions,
    )
    if figures.is_over_accounted:
        raise ProcurementError(OVER_ACCOUNTED_MESSAGE, code="over_accounted", field="weights")

    gqr = GQREntry.objects.create(
        pre_gr=pre_gr,
        date=timezone.localdate(),
        net_wt=figures.net_wt,
        export_quality_weight=figures.export_quality_weight,
        total_wastage_weight=figures.total_wastage_weight,
        total_value_received=figures.total_value_received,
        gqr_status=rules.GQR_STATUS_OPEN,
        volatile_gap_item_rate=gap_rate or None,
        **deductions,
    )

    pre_gr.is_gqr_created = True
    bag_fields = _apply_final_bags(pre_gr, payload)
    pre_gr.save(update_fields=["is_gqr_created", *bag_fields, "updated_at"])

    audit_logger.info(
        "gqr_created",
        extra={
            "event_type": "CREATE",
            "user_id": actor_id,
            "gqr_id": gqr.id,
            "pre_gr_id": pre_gr.id,
            "export_quality_weight": str(figures.export_quality_weight),
            "total_value_received": str(figures.total_value_received),
        },
    )
    return serialize_gqr(resolve_gqr(gqr.id), detail=True)


@transaction.atomic
def update_gqr(gqr_id: Any, payload: Dict[str, Any], actor_id: Optional[str]) -> Dict[str, Any]:
    """Rework an open or closed GQR; volatile rates override the PO rates."""
    payload = payload or {}
    try:
        gqr = (
            GQREntry.objects.select_for_update(of=("self",))
            .select_related("pre_gr__po")
            .get(pk=gqr_id)
        )
    except (GQREntry.DoesNotExist, ValueError, TypeError):
        raise ProcurementError("GQR not found.", code="not_found", field="id")

    if gqr.is_finalized:
        raise ProcurementError(
            "Finalized GQRs cannot be edited.", code="finalized", field="gqr_status"
        )

    from_status = gqr.gqr_status
    if "gqr_status" in payload:
        status = str(payload.get("gqr_status") or "").strip()
        if status not in rules.GQR_EDITABLE_STATUSES:
            raise ProcurementError(
                "GQR status must be Open or Closed.", code="invalid_status_value", field="gqr_status"
            )
        gqr.gqr_status = status

    for field_name in _VOLATILE_FIELDS:
        if field_name in payload:
            setattr(gqr, field_name, to_decimal(payload.get(field_name), field_name))

    deductions = _deductions_from_payload(payload, current=gqr)
    deductions_changed = any(key in payload for key in _DEDUCTION_FIELDS)
    export_weight = None
    if "export_quality_weight" in payload:
        export_weight = to_decimal(payload.get("export_quality_weight"), "export_quality_weight", ZERO)
    elif not deductions_changed and gqr.export_quality_weight is not None:
        export_weight = gqr.export_quality_weight

    pre_gr = gqr.pre_gr
    po = pre_gr.po if pre_gr else None
    net_wt = gqr.net_wt if gqr.net_wt is not None else pre_gr_net_weight(pre_gr)
    figures = calculate_gqr_figures(
        net_wt,
        po_rate=gqr.volatile_po_rate or (po.rate if po else None) or ZERO,
        gap_rate=gqr.volatile_gap_item_rate,
        podi_rate=gqr.volatile_podi_rate or (po.podi_rate if po else None) or ZERO,
        export_quality_weight=export_weight,
        **deductions,
    )
    if figures.is_over_accounted:
        raise ProcurementError(OVER_ACCOUNTED_MESSAGE, code="over_accounted", field="weights")

    for field_name, value in deductions.items():
        setattr(gqr, field_name, value)
    gqr.net_wt = figures.net_wt
    gqr.export_quality_weight = figures.export_quality_weight
    gqr.total_wastage_weight = figures.total_wastage_weight
    gqr.total_value_received = figures.total_value_received
    gqr.save()

    if pre_gr is not None:
        bag_fields = _apply_final_bags(pre_gr, payload)
        if bag_fields:
            pre_gr.save(update_fields=[*bag_fields, "updated_at"])

    audit_logger.info(
        "gqr_updated",
        extra={
            "event_type": "UPDATE",
            "user_id": actor_id,
            "gqr_id": gqr.id,
            "from_status": from_status,
            "to_status": gqr.gqr_status,
            "total_value_received": str(figures.total_value_received),
        },
    )
    return serialize_gqr(resolve_gqr(gqr.id), detail=True)


@transaction.atomic
def update_tally_posted(gqr_id: Any, is_posted: bool) -> GQREntry:
    try:
        gqr = GQREntry.objects.select_for_update().get(pk=gqr_id)
    except (GQREntry.DoesNotExist, ValueError, TypeError):
        raise ProcurementError("GQR not found.", code="not_found", field="gqrId")
    gqr.is_tally_posted = bool(is_posted)
    gqr.save(update_fields=["is_tally_posted", "updated_at"])
    audit_logger.info(
        "gqr_tally_posted_updated",
        extra={"event_type": "STATE_CHANGE", "gqr_id": gqr.id, "is_tally_posted": gqr.is_tally_posted},
    )
    return gqr


@transaction.atomic
def finalize_gqr(gqr_id: Any, decision: str, actor_id: Optional[str]) -> GQREntry:
    if decision not in rules.FINALIZE_DECISIONS:
        raise ProcurementError("Invalid decision", code="invalid_decision", field="decision")
    try:
        gqr = GQREntry.objects.select_for_update().get(pk=gqr_id)
    except (GQREntry.DoesNotExist, ValueError, TypeError):
        raise ProcurementError("GQR not found.", code="not_found", field="gqrId")
    if gqr.is_finalized:
        raise ProcurementError("GQR is already finalized.", code="finalized", field="gqr_status")

    from_status = gqr.gqr_status
    gqr.gqr_status = rules.finalized_status(decision)
    gqr.finalized_at = timezone.now()
    gqr.save(update_fields=["gqr_status", "finalized_at", "updated_at"])

    audit_logger.info(
        "gqr_finalized",
        extra={
            "event_type": "STATE_CHANGE",
            "user_id": actor_id,
            "gqr_id": gqr.id,
            "from_status": from_status,
            "to_status": gqr.gqr_status,
        },
    )
    return gqr


# =============================================================================
# Export feed
# =============================================================================

@dataclass(frozen=True)
class EffectiveTerms:
    cargo_weight: Decimal
    podi_weight: Decimal
    gap_weight: Decimal
    wastage_weight: Decimal
    rate: Decimal
    podi_rate: Decimal
    gap_rate: Decimal
    wastage_kgs_per_ton: Decimal


def effective_terms(gqr: GQREntry, po: PurchaseOrder | None) -> EffectiveTerms:
    """Weights and rates used for external consumption, volatile rates first."""
    po_rate = (po.rate if po else None) or ZERO
    return EffectiveTerms(
        cargo_weight=gqr.export_quality_weight or gqr.net_wt or ZERO,
        podi_weight=gqr.podi_weight or ZERO,
        gap_weight=gqr.gap_items_weight or ZERO,
        wastage_weight=(gqr.rot_weight or ZERO) + (gqr.doubles_weight or ZERO) + (gqr.sand_weight or ZERO),
        rate=gqr.volatile_po_rate or po_rate,
        podi_rate=gqr.volatile_podi_rate or (po.podi_rate if po else None) or ZERO,
        gap_rate=gqr.volatile_gap_item_rate or po_rate,
        wastage_kgs_per_ton=(
            gqr.volatile_wastage_kgs_per_ton
            or (po.damage_allowed_kgs_ton if po else None)
            or rules.DEFAULT_WASTAGE_KGS_PER_TON
        ),
    )


def closed_gqr_queryset(posted: Optional[bool] = None, limit: Optional[int] = None) -> QuerySet:
    queryset = (
        resolver_queryset()
        .filter(gqr_status=rules.GQR_STATUS_CLOSED)
        .order_by("-created_at", "-id")
    )
    if posted is not None:
        queryset = queryset.filter(is_tally_posted=posted)
    if limit is not None:
        queryset = queryset[:limit]
    return queryset


def tally_feed_row(gqr: GQREntry) -> Dict[str, Any] | None:
    """Shape one closed GQR for the accounting import; None when links are missing."""
    pre_gr = gqr.pre_gr
    po = pre_gr.po if pre_gr else None
    if po is None or po.supplier is None or po.item is None:
        return None

    terms = effective_terms(gqr, po)
    cargo_value = terms.cargo_weight * terms.rate
    podi_value = terms.podi_weight * terms.podi_rate
    gap_value = terms.gap_weight * terms.podi_rate
    wastage_value = terms.wastage_weight * terms.rate
    voucher_date = gqr.date or po.date

    return {
        "gqrId": gqr.id,
        "voucherNumber": f"{pre_gr.vouchernumber}-GQR{gqr.id}",
        "voucherDate": voucher_date.isoformat() if voucher_date else None,
        "supplierName": po.supplier.name,
        "itemName": po.item.item_name,
        "itemHSN": po.item.hsn_code,
        "actualCargoWeight": _fixed(terms.cargo_weight / KGS_PER_MT, 3),
        "actualPodiWeight": _fixed(terms.podi_weight / KGS_PER_MT, 3),
        "actualGapWeight": _fixed(terms.gap_weight / KGS_PER_MT, 3),
        "actualWastageWeight": _fixed(terms.wastage_weight / KGS_PER_MT, 3),
        "ratePerKg": terms.rate,
        "podiRatePerKg": terms.podi_rate,
        "wastageKgsPerTon": terms.wastage_kgs_per_ton,
        "cargoValue": _fixed(cargo_value, 2),
        "podiValue": _fixed(podi_value, 2),
        "gapValue": _fixed(gap_value, 2),
        "wastageValue": _fixed(wastage_value, 2),
        "totalValue": _fixed(cargo_value + podi_value + gap_value + wastage_value, 2),
        "poVoucherNumber": po.vouchernumber,
        "poQuantity": po.quantity,
        "poRate": po.rate,
        "poPodiRate": po.podi_rate,
        "poDamageAllowed": po.damage_allowed_kgs_ton,
        "poCargo": po.cargo,
        "gqrStatus": gqr.gqr_status,
        "totalValueReceived": gqr.total_value_received,
        "isTallyPosted": bool(gqr.is_tally_posted),
        "netWeight": gqr.net_wt or ZERO,
        "exportQualityWeight": gqr.export_quality_weight or ZERO,
        "rotWeight": gqr.rot_weight or ZERO,
        "doublesWeight": gqr.doubles_weight or ZERO,
        "sandWeight": gqr.sand_weight or ZERO,
        "createdAt": gqr.created_at.isoformat() if gqr.created_at else None,
        "updatedAt": gqr.updated_at.isoformat() if gqr.updated_at else None,
    }


def tally_feed(posted: Optional[bool] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    rows: Iterable[Dict[str, Any] | None] = (
        tally_feed_row(gqr) for gqr in closed_gqr_queryset(posted=posted, limit=limit)
    )
    return [row for row in rows if row is not None]
