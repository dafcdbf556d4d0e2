"""
Purchase order service.

Voucher numbers are short zero-padded integers ("001", "002", ...). A new
number is the numeric maximum plus one; two concurrent creates can race for
the same number, so creation retries on the unique constraint.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from django.core.exceptions import ValidationError
from django.db import IntegrityError, connection, transaction
from django.db.models import ProtectedError
from django.utils import timezone

from procurement import rules
from procurement.models import ItemMaster, PurchaseOrder, Supplier
from procurement.services.errors import ProcurementError
from procurement.services.formatting import parse_flexible_date, to_decimal

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("ramexpo.audit")

_VOUCHER_RETRY_ATTEMPTS = 3
_VOUCHER_RETRY_BACKOFF_SECONDS = 0.02

_DECIMAL_FIELDS = ("quantity", "rate", "cargo", "damage_allowed_kgs_ton", "podi_rate")

REQUIRED_FIELDS_MESSAGE = "Please fill all required fields."
INVALID_DATE_MESSAGE = "Please enter a valid date in DD/MM/YYYY format."


def next_voucher_number() -> str:
    """Highest purely numeric voucher number plus one, zero padded."""
    queryset = PurchaseOrder.objects.all()
    if connection.vendor == "postgresql":
        queryset = queryset.filter(vouchernumber__regex=r"^\d+$")
    max_seq = 0
    for value in queryset.values_list("vouchernumber", flat=True).iterator():
        value = (value or "").strip()
        if value.isdigit():
            max_seq = max(max_seq, int(value))
    return f"{max_seq + 1:0{rules.VOUCHER_NUMBER_WIDTH}d}"


def _is_vouchernumber_conflict(exc: IntegrityError) -> bool:
    message = str(exc).lower()
    return "vouchernumber" in message and ("unique" in message or "duplicate" in message)


def serialize_purchase_order(po: PurchaseOrder) -> Dict[str, Any]:
    supplier = po.supplier
    item = po.item
    return {
        "id": po.id,
        "vouchernumber": po.vouchernumber,
        "ref_no": po.ref_no,
        "date": po.date.isoformat() if po.date else None,
        "supplier_id": po.supplier_id,
        "supplier_name": supplier.name if supplier else rules.MISSING_LABEL,
        "item_id": str(po.item_id) if po.item_id else None,
        "item_name": item.item_name if item else rules.MISSING_LABEL,
        "quantity": po.quantity,
        "rate": po.rate,
        "cargo": po.cargo,
        "damage_allowed_kgs_ton": po.damage_allowed_kgs_ton,
        "podi_rate": po.podi_rate,
        "tally_posted": po.tally_posted,
        "tally_posted_at": po.tally_posted_at.isoformat() if po.tally_posted_at else None,
        "admin_remark": po.admin_remark,
        "po_closed": po.po_closed,
        "created_at": po.created_at.isoformat() if po.created_at else None,
    }


def _resolve_supplier(supplier_id: Any) -> Supplier:
    try:
        return Supplier.objects.get(pk=int(supplier_id))
    except (Supplier.DoesNotExist, TypeError, ValueError):
        raise ProcurementError("Supplier not found.", code="invalid_supplier", field="supplier_id")


def _resolve_item(item_id: Any) -> ItemMaster:
    try:
        return ItemMaster.objects.get(pk=str(item_id))
    except (ItemMaster.DoesNotExist, ValidationError, TypeError, ValueError):
        raise ProcurementError("Item not found.", code="invalid_item", field="item_id")


def _parse_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for field_name in _DECIMAL_FIELDS:
        if field_name in payload:
            values[field_name] = to_decimal(payload.get(field_name), field_name)
    if "ref_no" in payload:
        values["ref_no"] = str(payload.get("ref_no") or "").strip() or None
    return values


def _get_po(po_id: Any, for_update: bool = False) -> PurchaseOrder:
    queryset = PurchaseOrder.objects.select_related("supplier", "item")
    if for_update:
        queryset = queryset.select_for_update(of=("self",))
    try:
        return queryset.get(pk=po_id)
    except (PurchaseOrder.DoesNotExist, ValueError, TypeError):
        raise ProcurementError("Purchase order not found.", code="not_found", field="id")


@transaction.atomic
def create_purchase_order(payload: Dict[str, Any], actor_id: Optional[str]) -> Dict[str, Any]:
    payload = payload or {}
    if not payload.get("date") or not payload.get("supplier_id") or not payload.get("item_id"):
        raise ProcurementError(REQUIRED_FIELDS_MESSAGE, code="required")

    po_date = parse_flexible_date(payload.get("date"))
    if po_date is None:
        raise ProcurementError(INVALID_DATE_MESSAGE, code="invalid_date", field="date")

    supplier = _resolve_supplier(payload.get("supplier_id"))
    item = _resolve_item(payload.get("item_id"))
    fields = _parse_fields(payload)

    requested_voucher = str(payload.get("vouchernumber") or "").strip()
    po: PurchaseOrder | None = None
    for attempt in range(_VOUCHER_RETRY_ATTEMPTS):
        try:
            # Savepoint so a duplicate voucher can be retried inside the outer transaction.
            with transaction.atomic():
                po = PurchaseOrder.objects.create(
                    vouchernumber=requested_voucher or next_voucher_number(),
                    date=po_date,
                    supplier=supplier,
                    item=item,
                    **fields,
                )
            break
        except IntegrityError as exc:
            if not _is_vouchernumber_conflict(exc):
                raise
            if requested_voucher or attempt >= _VOUCHER_RETRY_ATTEMPTS - 1:
                raise ProcurementError(
                    "Voucher number already exists. Please retry.",
                    code="duplicate_vouchernumber",
                    field="vouchernumber",
                ) from exc
            time.sleep(_VOUCHER_RETRY_BACKOFF_SECONDS * (attempt + 1))

    if po is None:
        raise ProcurementError(
            "Voucher number already exists. Please retry.",
            code="duplicate_vouchernumber",
            field="vouchernumber",
        )

    audit_logger.info(
        "purchase_order_created",
        extra={
            "event_type": "CREATE",
            "user_id": actor_id,
            "po_id": po.id,
            "vouchernumber": po.vouchernumber,
            "supplier_id": supplier.id,
        },
    )
    return serialize_purchase_order(po)


def list_purchase_orders(filters: Dict[str, Any] | None = None) -> List[Dict[str, Any]]:
    filters = filters or {}
    queryset = PurchaseOrder.objects.select_related("supplier", "item").order_by(
        "-date", "-id"
    )
    if filters.get("supplier_id"):
        queryset = queryset.filter(supplier_id=filters["supplier_id"])
    if filters.get("open"):
        queryset = queryset.filter(po_closed=False)
    if filters.get("tally_posted") is not None:
        queryset = queryset.filter(tally_posted=filters["tally_posted"])
    return [serialize_purchase_order(po) for po in queryset]


def get_purchase_order(po_id: Any) -> Dict[str, Any]:
    return serialize_purchase_order(_get_po(po_id))


def get_purchase_order_instance(po_id: Any) -> PurchaseOrder:
    """PO with supplier and item loaded, for callers that post it elsewhere."""
    return _get_po(po_id)


@transaction.atomic
def update_purchase_order(
    po_id: Any, payload: Dict[str, Any], actor_id: Optional[str]
) -> Dict[str, Any]:
    po = _get_po(po_id, for_update=True)
    if po.po_closed:
        raise ProcurementError(
            "Closed purchase orders cannot be edited.", code="po_closed", field="po_closed"
        )

    payload = payload or {}
    update_fields = _parse_fields(payload)
    if "date" in payload:
        po_date = parse_flexible_date(payload.get("date"))
        if po_date is None:
            raise ProcurementError(INVALID_DATE_MESSAGE, code="invalid_date", field="date")
        update_fields["date"] = po_date
    if payload.get("supplier_id"):
        update_fields["supplier"] = _resolve_supplier(payload["supplier_id"])
    if payload.get("item_id"):
        update_fields["item"] = _resolve_item(payload["item_id"])
    if payload.get("vouchernumber"):
        update_fields["vouchernumber"] = str(payload["vouchernumber"]).strip()

    for field_name, value in update_fields.items():
        setattr(po, field_name, value)
    try:
        with transaction.atomic():
            po.save()
    except IntegrityError as exc:
        if _is_vouchernumber_conflict(exc):
            raise ProcurementError(
                "Voucher number already exists.",
                code="duplicate_vouchernumber",
                field="vouchernumber",
            ) from exc
        raise

    audit_logger.info(
        "purchase_order_updated",
        extra={
            "event_type": "UPDATE",
            "user_id": actor_id,
            "po_id": po.id,
            "fields": sorted(update_fields),
        },
    )
    return serialize_purchase_order(po)


@transaction.atomic
def delete_purchase_order(po_id: Any, actor_id: Optional[str]) -> None:
    po = _get_po(po_id, for_update=True)
    if po.po_closed:
        raise ProcurementError(
            "Closed purchase orders cannot be deleted.", code="po_closed", field="po_closed"
        )
    try:
        po.delete()
    except ProtectedError as exc:
        raise ProcurementError(
            "Purchase order has Pre-GR entries and cannot be deleted.", code="in_use"
        ) from exc
    audit_logger.info(
        "purchase_order_deleted",
        extra={"event_type": "DELETE", "user_id": actor_id, "po_id": po_id},
    )


@transaction.atomic
def close_purchase_order(
    po_id: Any, admin_remark: str | None, actor_id: Optional[str]
) -> Dict[str, Any]:
    po = _get_po(po_id, for_update=True)
    if po.po_closed:
        raise ProcurementError(
            "Purchase order is already closed.", code="po_closed", field="po_closed"
        )
    po.po_closed = True
    po.admin_remark = (admin_remark or "").strip() or po.admin_remark
    po.save(update_fields=["po_closed", "admin_remark", "updated_at"])

    audit_logger.info(
        "purchase_order_closed",
        extra={
            "event_type": "STATE_CHANGE",
            "user_id": actor_id,
            "po_id": po.id,
            "closed_at": timezone.now().isoformat(),
        },
    )
    return serialize_purchase_order(po)


@transaction.atomic
def mark_tally_posted(po: PurchaseOrder, tally_response: str) -> PurchaseOrder:
    po.tally_posted = True
    po.tally_posted_at = timezone.now()
    po.tally_response = tally_response
    po.save(update_fields=["tally_posted", "tally_posted_at", "tally_response", "updated_at"])
    return po
