"""
Master data (suppliers, items, gap items, sieve sizes, customers, units).

Each kind is a flat table edited field-for-field from the admin screens, so a
single registry drives listing, validation and writes for all of them.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple, Type

from django.core.exceptions import ValidationError
from django.db import models, transaction
from django.db.models import ProtectedError

from procurement.models import Customer, GapItem, ItemMaster, SieveSize, Supplier, Unit
from procurement.services.errors import ProcurementError

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("ramexpo.audit")


@dataclass(frozen=True)
class MasterKind:
    key: str
    model: Type[models.Model]
    fields: Tuple[str, ...]
    required: Tuple[str, ...]
    order_by: str
    label: str


MASTER_KINDS: Dict[str, MasterKind] = {
    kind.key: kind
    for kind in (
        MasterKind(
            "suppliers",
            Supplier,
            ("name", "contact_name", "phone", "address"),
            ("name",),
            "name",
            "Supplier",
        ),
        MasterKind(
            "items",
            ItemMaster,
            ("item_name", "item_unit", "hsn_code"),
            ("item_name",),
            "item_name",
            "Item",
        ),
        MasterKind("gap-items", GapItem, ("name",), ("name",), "name", "Gap item"),
        MasterKind(
            "sieve-sizes",
            SieveSize,
            ("size", "description"),
            ("size",),
            "size",
            "Sieve size",
        ),
        MasterKind(
            "customers",
            Customer,
            ("name", "contact", "mobile", "email", "address", "country"),
            ("name",),
            "name",
            "Customer",
        ),
        MasterKind(
            "units",
            Unit,
            ("quantity", "quantity_type", "uqc_code"),
            ("quantity", "uqc_code"),
            "quantity",
            "Unit",
        ),
    )
}


def get_kind(key: str) -> MasterKind:
    kind = MASTER_KINDS.get(key)
    if kind is None:
        raise ProcurementError(f"Unknown master type '{key}'.", code="not_found", field="kind")
    return kind


def serialize_master(kind: MasterKind, obj: models.Model) -> Dict[str, Any]:
    data: Dict[str, Any] = {"id": str(obj.pk) if isinstance(obj.pk, uuid.UUID) else obj.pk}
    for field_name in kind.fields:
        data[field_name] = getattr(obj, field_name)
    return data


def _clean_payload(kind: MasterKind, payload: Dict[str, Any], partial: bool) -> Dict[str, Any]:
    unknown = sorted(set(payload) - set(kind.fields) - {"id"})
    if unknown:
        raise ProcurementError(
            f"Unknown field(s): {', '.join(unknown)}.", code="unknown_field", field=unknown[0]
        )

    cleaned: Dict[str, Any] = {}
    for field_name in kind.fields:
        if field_name not in payload:
            continue
        value = payload[field_name]
        if isinstance(value, str):
            value = value.strip()
        cleaned[field_name] = value if value != "" else None

    for field_name in kind.required:
        if partial and field_name not in payload:
            continue
        if not cleaned.get(field_name):
            raise ProcurementError(f"{field_name} is required.", code="required", field=field_name)
    return cleaned


def _get_object(kind: MasterKind, object_id: Any) -> models.Model:
    try:
        return kind.model.objects.get(pk=object_id)
    except (kind.model.DoesNotExist, ValidationError, ValueError, TypeError):
        raise ProcurementError(f"{kind.label} not found.", code="not_found", field="id")


def list_masters(key: str, search: str | None = None) -> List[Dict[str, Any]]:
    kind = get_kind(key)
    queryset = kind.model.objects.order_by(kind.order_by)
    if search:
        queryset = queryset.filter(**{f"{kind.order_by}__icontains": search.strip()})
    return [serialize_master(kind, obj) for obj in queryset]


def get_master(key: str, object_id: Any) -> Dict[str, Any]:
    kind = get_kind(key)
    return serialize_master(kind, _get_object(kind, object_id))


@transaction.atomic
def create_master(key: str, payload: Dict[str, Any], actor_id: str | None) -> Dict[str, Any]:
    kind = get_kind(key)
    cleaned = _clean_payload(kind, payload or {}, partial=False)
    obj = kind.model.objects.create(**cleaned)
    audit_logger.info(
        "master_created",
        extra={"event_type": "CREATE", "user_id": actor_id, "master_kind": key, "object_id": str(obj.pk)},
    )
    return serialize_master(kind, obj)


@transaction.atomic
def update_master(
    key: str, object_id: Any, payload: Dict[str, Any], actor_id: str | None, partial: bool = True
) -> Dict[str, Any]:
    kind = get_kind(key)
    obj = _get_object(kind, object_id)
    cleaned = _clean_payload(kind, payload or {}, partial=partial)
    for field_name, value in cleaned.items():
        setattr(obj, field_name, value)
    obj.save()
    audit_logger.info(
        "master_updated",
        extra={
            "event_type": "UPDATE",
            "user_id": actor_id,
            "master_kind": key,
            "object_id": str(obj.pk),
            "fields": sorted(cleaned),
        },
    )
    return serialize_master(kind, obj)


@transaction.atomic
def delete_master(key: str, object_id: Any, actor_id: str | None) -> None:
    kind = get_kind(key)
    obj = _get_object(kind, object_id)
    try:
        obj.delete()
    except ProtectedError as exc:
        logger.info("refusing to delete %s %s: still referenced", key, obj.pk)
        raise ProcurementError(
            f"{kind.label} is used by existing purchase orders or Pre-GR entries.",
            code="in_use",
        ) from exc
    audit_logger.info(
        "master_deleted",
        extra={"event_type": "DELETE", "user_id": actor_id, "master_kind": key, "object_id": str(object_id)},
    )
