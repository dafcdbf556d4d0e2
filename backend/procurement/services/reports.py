from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from procurement.models import GQREntry
from procurement.services.gqr import HUNDRED, ZERO, resolver_queryset, round2

_KGS_PER_TON_TO_PERCENT = Decimal("10")


def _percentage(part: Decimal, whole: Decimal) -> Decimal:
    if not whole or whole <= 0:
        return ZERO
    return part / whole * HUNDRED


def vendor_performance_row(gqr: GQREntry) -> Optional[Dict[str, Any]]:
    """Yield and wastage against the PO promise; None without a supplier."""
    pre_gr = gqr.pre_gr
    po = pre_gr.po if pre_gr else None
    if po is None or po.supplier is None:
        return None

    net = gqr.net_wt or (pre_gr.effective_net_wt if pre_gr else ZERO)
    export = gqr.export_quality_weight or ZERO
    wastage = (gqr.rot_weight or ZERO) + (gqr.doubles_weight or ZERO) + (gqr.sand_weight or ZERO)

    assured_cargo = po.cargo or ZERO
    actual_yield = _percentage(export, net)
    allowed_wastage = (po.damage_allowed_kgs_ton or ZERO) / _KGS_PER_TON_TO_PERCENT
    actual_wastage = _percentage(wastage, net)

    return {
        "gqr_id": gqr.id,
        "supplier_name": po.supplier.name,
        "pre_gr_vouchernumber": pre_gr.vouchernumber,
        "assured_cargo_percentage": round2(assured_cargo),
        "actual_yield_percentage": round2(actual_yield),
        "yield_variance": round2(actual_yield - assured_cargo),
        "allowed_wastage_percentage": round2(allowed_wastage),
        "actual_wastage_percentage": round2(actual_wastage),
        "wastage_variance": round2(allowed_wastage - actual_wastage),
    }


def vendor_performance(supplier_id: Any = None) -> List[Dict[str, Any]]:
    queryset = resolver_queryset().order_by("-created_at", "-id")
    if supplier_id:
        queryset = queryset.filter(pre_gr__po__supplier_id=supplier_id)
    rows = (vendor_performance_row(gqr) for gqr in queryset)
    return [row for row in rows if row is not None]
