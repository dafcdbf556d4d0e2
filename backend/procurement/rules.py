from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict

GQR_STATUS_OPEN = "Open"
GQR_STATUS_CLOSED = "Closed"
GQR_EDITABLE_STATUSES = (GQR_STATUS_OPEN, GQR_STATUS_CLOSED)
GQR_FINALIZED_PREFIX = "Finalized"

FINALIZE_DECISIONS = ("payment", "debit_note")

# Accounted weight may exceed the net weight by rounding noise only.
WEIGHT_DIFFERENCE_TOLERANCE = Decimal("0.01")

DEFAULT_WASTAGE_KGS_PER_TON = Decimal("100")

ONION_PRIMARY_UNIT = "MT"
ONION_ALT_UNIT = "Kgs"

VOUCHER_NUMBER_WIDTH = 3

MISSING_LABEL = "N/A"


def missing_pre_gr() -> Dict[str, Any]:
    """Placeholder for a GQR whose Pre-GR chain could not be resolved."""
    return {
        "gr_no": MISSING_LABEL,
        "gr_dt": None,
        "purchase_orders": missing_purchase_order(),
    }


def missing_purchase_order() -> Dict[str, Any]:
    return {
        "vouchernumber": MISSING_LABEL,
        "date": None,
        "suppliers": missing_supplier(),
        "item_master": missing_item(),
    }


def missing_supplier() -> Dict[str, Any]:
    return {"name": MISSING_LABEL}


def missing_item() -> Dict[str, Any]:
    return {"item_name": MISSING_LABEL}


def finalized_status(decision: str) -> str:
    return f"{GQR_FINALIZED_PREFIX} - {decision}"
