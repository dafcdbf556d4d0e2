"""
Pre-GR (weighbridge receipt) service.

A Pre-GR copies the commercial terms of its purchase order at creation time.
It can be edited or deleted until a GQR is raised against it; after that it is
part of the quality record and only the GQR changes.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from procurement import rules
from procurement.models import GapItem, PreGREntry, PurchaseOrder
from procurement.services.errors import ProcurementError
from procurement.services.formatting import parse_flexible_date, to_decimal, to_int

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("ramexpo.audit")

_WEIGHT_FIELDS = ("ladden_wt", "empty_wt", "weight_shortage", "doubles")
_TEXT_FIELDS = (
    "vehicle_no",
    "loaded_from",
    "weight_bridge_name",
    "prepared_by",
    "gr_no",
    "sieve_no",
    "remarks",
)
_BAG_FIELDS = ("bags", "gap_item1_bags", "gap_item2_bags", "podi_bags")

_SELECT_RELATED = ("po__supplier", "po__item", "gap_item1", "gap_item2")


def _net_weight(ladden: Decimal | None, empty: Decimal | None, shortage: Decimal | None) -> Decimal:
    return (ladden or Decimal("0")) - (empty or Decimal("0")) - (shortage or Decimal("0"))


def _gap_item_data(gap_item: GapItem | None) -> Dict[str, Any] | None:
    if gap_item is None:
        return None
    return {"id": str(gap_item.id), "name": gap_item.name}


def serialize_pre_gr(entry: PreGREntry) -> Dict[str, Any]:
    po = entry.po
    return {
        "id": entry.id,
        "vouchernumber": entry.vouchernumber,
        "date": entry.date.isoformat() if entry.date else None,
        "po_id": entry.po_id,
        "po_vouchernumber": po.vouchernumber if po else rules.MISSING_LABEL,
        "supplier_name": po.supplier.name if po and po.supplier else rules.MISSING_LABEL,
        "item_name": po.item.item_name if po and po.item else rules.MISSING_LABEL,
        "quantity": entry.quantity,
        "rate": entry.rate,
        "cargo": entry.cargo,
        "damage_allowed": entry.damage_allowed,
        "ladden_wt": entry.ladden_wt,
        "empty_wt": entry.empty_wt,
        "net_wt": entry.net_wt,
        "doubles": entry.doubles,
        "weight_shortage": entry.weight_shortage,
        "bags": entry.bags,
        "loaded_from": entry.loaded_from,
        "vehicle_no": entry.vehicle_no,
        "weight_bridge_name": entry.weight_bridge_name,
        "prepared_by": entry.prepared_by,
        "gr_no": entry.gr_no,
        "gr_dt": entry.gr_dt.isoformat() if entry.gr_dt else None,
        "sieve_no": entry.sieve_no,
        "gap_item1": _gap_item_data(entry.gap_item1),
        "gap_item1_bags": entry.gap_item1_bags,
        "gap_item2": _gap_item_data(entry.gap_item2),
        "gap_item2_bags": entry.gap_item2_bags,
        "podi_bags": entry.podi_bags,
        "is_admin_approved": entry.is_admin_approved,
        "admin_remark": entry.admin_remark,
        "advance_paid": entry.advance_paid,
        "admin_approved_advance": entry.admin_approved_advance,
        "is_gqr_created": entry.is_gqr_created,
        "remarks": entry.remarks,
    }


def _get_entry(pre_gr_id: Any, for_update: bool = False) -> PreGREntry:
    queryset = PreGREntry.objects.select_related(*_SELECT_RELATED)
    if for_update:
        queryset = queryset.select_for_update(of=("self",))
    try:
        return queryset.get(pk=pre_gr_id)
    except (PreGREntry.DoesNotExist, ValueError, TypeError):
        raise ProcurementError("Pre-GR entry not found.", code="not_found", field="id")


def _resolve_gap_item(value: Any, field: str) -> GapItem | None:
    if not value:
        return None
    try:
        return GapItem.objects.get(pk=str(value))
    except (GapItem.DoesNotExist, ValidationError, ValueError):
        raise ProcurementError("Gap item not found.", code="invalid_gap_item", field=field)


def _apply_payload(entry: PreGREntry, payload: Dict[str, Any]) -> List[str]:
    """Copy editable fields from the payload onto the entry; returns the names set."""
    changed: List[str] = []
    for field_name in _WEIGHT_FIELDS:
        if field_name in payload:
            setattr(entry, field_name, to_decimal(payload.get(field_name), field_name, Decimal("0")))
            changed.append(field_name)
    for field_name in _TEXT_FIELDS:
        if field_name in payload:
            setattr(entry, field_name, str(payload.get(field_name) or "").strip() or None)
            changed.append(field_name)
    for field_name in _BAG_FIELDS:
        if field_name in payload:
            setattr(entry, field_name, to_int(payload.get(field_name), field_name) or 0)
            changed.append(field_name)
    for field_name in ("gap_item1", "gap_item2"):
        key = f"{field_name}_id"
        if key in payload:
            setattr(entry, field_name, _resolve_gap_item(payload.get(key), key))
            changed.append(field_name)
    for field_name in ("date", "gr_dt"):
        if field_name in payload and payload.get(field_name):
            parsed = parse_flexible_date(payload.get(field_name))
            if parsed is None:
                raise ProcurementError(
                    "Please enter a valid date in DD/MM/YYYY format.",
                    code="invalid_date",
                    field=field_name,
                )
            setattr(entry, field_name, parsed)
            changed.append(field_name)
    if "advance_paid" in payload:
        entry.advance_paid = to_decimal(payload.get("advance_paid"), "advance_paid")
        changed.append("advance_paid")

    if {"ladden_wt", "empty_wt", "weight_shortage"} & set(changed):
        entry.net_wt = _net_weight(entry.ladden_wt, entry.empty_wt, entry.weight_shortage)
        changed.append("net_wt")
    return changed


@transaction.atomic
def create_pre_gr(payload: Dict[str, Any], actor_id: Optional[str]) -> Dict[str, Any]:
    payload = payload or {}
    errors = {}
    for field_name, label in (("po_id", "Purchase order"), ("gr_no", "GR Number"), ("vehicle_no", "Vehicle Number")):
        if not str(payload.get(field_name) or "").strip():
            errors[field_name] = f"Please enter {label}."
    if errors:
        field_name = next(iter(errors))
        raise ProcurementError(errors[field_name], code="required", field=field_name)

    try:
        po = PurchaseOrder.objects.select_related("supplier", "item").get(pk=payload["po_id"])
    except (PurchaseOrder.DoesNotExist, ValueError, TypeError):
        raise ProcurementError("Purchase order not found.", code="not_found", field="po_id")
    if po.po_closed:
        raise ProcurementError(
            "Purchase order is closed.", code="po_closed", field="po_id"
        )

    entry = PreGREntry(
        po=po,
        vouchernumber=po.vouchernumber,
        date=timezone.localdate(),
        supplier_id=po.supplier_id,
        item_id=po.item_id,
        quantity=po.quantity or Decimal("0"),
        rate=po.rate or Decimal("0"),
        cargo=po.cargo or Decimal("0"),
        damage_allowed=po.damage_allowed_kgs_ton or Decimal("0"),
        is_admin_approved=False,
        is_gqr_created=False,
    )
    _apply_payload(entry, payload)
    if entry.net_wt is None:
        entry.net_wt = _net_weight(entry.ladden_wt, entry.empty_wt, entry.weight_shortage)
    entry.save()

    audit_logger.info(
        "pre_gr_created",
        extra={
            "event_type": "CREATE",
            "user_id": actor_id,
            "pre_gr_id": entry.id,
            "po_id": po.id,
            "gr_no": entry.gr_no,
            "net_wt": str(entry.net_wt),
        },
    )
    return serialize_pre_gr(entry)


def list_pre_gr(filters: Dict[str, Any] | None = None) -> List[Dict[str, Any]]:
    filters = filters or {}
    queryset = PreGREntry.objects.select_related(*_SELECT_RELATED).order_by("-date", "-id")
    if filters.get("po_id"):
        queryset = queryset.filter(po_id=filters["po_id"])
    if filters.get("pending_gqr"):
        queryset = queryset.filter(is_gqr_created=False)
    return [serialize_pre_gr(entry) for entry in queryset]


def get_pre_gr(pre_gr_id: Any) -> Dict[str, Any]:
    return serialize_pre_gr(_get_entry(pre_gr_id))


def _ensure_no_gqr(entry: PreGREntry, action: str) -> None:
    if entry.is_gqr_created or entry.gqr_entries.exists():
        raise ProcurementError(
            f"Pre-GR entry already has a GQR and cannot be {action}.",
            code="already_created",
            field="is_gqr_created",
        )


@transaction.atomic
def update_pre_gr(pre_gr_id: Any, payload: Dict[str, Any], actor_id: Optional[str]) -> Dict[str, Any]:
    entry = _get_entry(pre_gr_id, for_update=True)
    _ensure_no_gqr(entry, "edited")
    changed = _apply_payload(entry, payload or {})
    entry.save()

    audit_logger.info(
        "pre_gr_updated",
        extra={
            "event_type": "UPDATE",
            "user_id": actor_id,
            "pre_gr_id": entry.id,
            "fields": sorted(set(changed)),
        },
    )
    return serialize_pre_gr(entry)


@transaction.atomic
def approve_pre_gr(pre_gr_id: Any, payload: Dict[str, Any], actor_id: Optional[str]) -> Dict[str, Any]:
    payload = payload or {}
    entry = _get_entry(pre_gr_id, for_update=True)
    _ensure_no_gqr(entry, "re-approved")

    entry.is_admin_approved = True
    entry.admin_remark = str(payload.get("admin_remark") or "").strip() or entry.admin_remark
    if "admin_approved_advance" in payload:
        entry.admin_approved_advance = to_decimal(
            payload.get("admin_approved_advance"), "admin_approved_advance"
        )
    entry.save(
        update_fields=["is_admin_approved", "admin_remark", "admin_approved_advance", "updated_at"]
    )

    audit_logger.info(
        "pre_gr_approved",
        extra={
            "event_type": "STATE_CHANGE",
            "user_id": actor_id,
            "pre_gr_id": entry.id,
            "admin_approved_advance": str(entry.admin_approved_advance or ""),
        },
    )
    return serialize_pre_gr(entry)


@transaction.atomic
def delete_pre_gr(pre_gr_id: Any, actor_id: Optional[str]) -> None:
    entry = _get_entry(pre_gr_id, for_update=True)
    _ensure_no_gqr(entry, "deleted")
    entry.delete()
    audit_logger.info(
        "pre_gr_deleted",
        extra={"event_type": "DELETE", "user_id": actor_id, "pre_gr_id": pre_gr_id},
    )


def _eligible_row(entry: PreGREntry) -> Dict[str, Any]:
    po = entry.po
    zero = Decimal("0")
    return {
        "pre_gr_id": entry.id,
        "pre_gr_vouchernumber": entry.vouchernumber,
        "date": entry.date.isoformat() if entry.date else None,
        "supplier_name": po.supplier.name if po and po.supplier else rules.MISSING_LABEL,
        "net_wt": entry.net_wt,
        "laden_wt": entry.ladden_wt,
        "empty_wt": entry.empty_wt,
        "po_vouchernumber": po.vouchernumber if po else rules.MISSING_LABEL,
        "item_name": po.item.item_name if po and po.item else rules.MISSING_LABEL,
        "po_date": po.date.isoformat() if po and po.date else None,
        "po_rate": (po.rate if po else None) or zero,
        "po_quantity": (po.quantity if po else None) or zero,
        "podi_rate": (po.podi_rate if po else None) or zero,
        "damage_allowed": (po.damage_allowed_kgs_ton if po else None) or zero,
        "cargo": (po.cargo if po else None) or zero,
        "remarks": entry.remarks or "",
        "gr_no": entry.gr_no or "",
        "gr_dt": entry.gr_dt.isoformat() if entry.gr_dt else "",
    }


def list_eligible_for_gqr() -> List[Dict[str, Any]]:
    """Approved Pre-GR entries that do not yet have a GQR, newest first."""
    queryset = (
        PreGREntry.objects.select_related("po__supplier", "po__item")
        .filter(is_admin_approved=True, is_gqr_created=False)
        .order_by("-date", "-id")
    )
    return [_eligible_row(entry) for entry in queryset]
