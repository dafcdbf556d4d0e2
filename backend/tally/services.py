from __future__ import annotations

import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from django.conf import settings

from procurement import rules
from procurement.services import gqr as gqr_service
from procurement.services import purchase_orders as po_service
from procurement.services.errors import ProcurementError
from tally.client import (
    TallyClient,
    TallyConnectionError,
    TallyError,
    TallyResponseError,
    TallyTimeoutError,
)
from tally.envelopes import (
    COMPANIES_ENVELOPE,
    PurchaseOrderVoucher,
    parse_companies,
    parse_import_result,
    purchase_order_envelope,
)

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("ramexpo.audit")

STATUS_RUNNING = "Running"
STATUS_NOT_RUNNING = "Not Running"
STATUS_TIMEOUT = "Timeout"
STATUS_ERROR = "Error"

TIMEOUT_MESSAGE = "TallyPrime connection timed out."
REFUSED_MESSAGE = "Connection refused. TallyPrime might not be open."
UNKNOWN_STATUS_MESSAGE = "Unknown error checking Tally status"

_KGS_PER_MT = Decimal("1000")
_CENTS = Decimal("0.01")


def list_companies() -> List[Dict[str, str]]:
    with TallyClient(settings.TALLY_API_URL) as client:
        response = client.post_xml(
            COMPANIES_ENVELOPE, timeout=settings.TALLY_COMPANIES_TIMEOUT, read_only=True
        )
    if not response.ok:
        raise TallyResponseError(
            f"TallyPrime API error: {response.status_code} - {response.reason}"
        )
    if not (response.text or "").strip():
        raise TallyResponseError("Empty response from Tally API")
    companies = parse_companies(response.text)
    logger.info("Fetched %d Tally companies", len(companies))
    return companies


def check_status() -> Dict[str, str]:
    """Ping Tally; never raises, every outcome is a status payload."""
    try:
        with TallyClient(settings.TALLY_API_URL) as client:
            response = client.get(timeout=settings.TALLY_STATUS_TIMEOUT)
    except TallyTimeoutError:
        return {"status": STATUS_TIMEOUT, "message": TIMEOUT_MESSAGE}
    except TallyConnectionError as exc:
        if "refused" in str(exc).lower():
            return {"status": STATUS_NOT_RUNNING, "message": REFUSED_MESSAGE}
        logger.warning("Tally status check failed: %s", exc)
        return {"status": STATUS_ERROR, "message": str(exc) or UNKNOWN_STATUS_MESSAGE}
    except TallyError as exc:
        logger.warning("Tally status check failed: %s", exc)
        return {"status": STATUS_ERROR, "message": str(exc) or UNKNOWN_STATUS_MESSAGE}

    if response.ok and STATUS_RUNNING in (response.text or ""):
        return {"status": STATUS_RUNNING}
    return {"status": STATUS_NOT_RUNNING}


def _units_for(item) -> tuple[Optional[str], Optional[str]]:
    if item.is_onion:
        return rules.ONION_PRIMARY_UNIT, rules.ONION_ALT_UNIT
    return item.item_unit, item.item_unit


def _plain(value: Optional[Decimal]) -> str:
    if value is None:
        return "0"
    return format(value.normalize(), "f")


def build_purchase_order_voucher(po, company: str) -> PurchaseOrderVoucher:
    """Validate a PO for posting and collect its voucher values."""
    supplier = po.supplier
    item = po.item
    if supplier is None or item is None:
        raise ProcurementError("Supplier or Item data not found", code="missing_master")

    primary_unit, alt_unit = _units_for(item)
    if not primary_unit:
        raise ProcurementError(
            f'Item "{item.item_name}" is missing unit data', code="missing_unit"
        )
    if not item.hsn_code:
        raise ProcurementError(
            f'Item "{item.item_name}" is missing HSN code', code="missing_hsn"
        )
    if po.date is None:
        raise ProcurementError(
            "Invalid date format in purchase order", code="invalid_date", field="date"
        )

    quantity = po.quantity or Decimal("0")
    rate = po.rate or Decimal("0")
    amount = (quantity * _KGS_PER_MT * rate).quantize(_CENTS, rounding=ROUND_HALF_UP)
    tally_date = po.date.strftime("%Y%m%d")

    return PurchaseOrderVoucher(
        company=company,
        guid=str(uuid.uuid4()).upper(),
        vouchernumber=po.vouchernumber or str(po.id),
        date=tally_date,
        order_due_date=tally_date,
        supplier_name=supplier.name,
        item_name=item.item_name,
        quantity=_plain(quantity),
        rate=_plain(rate),
        amount=f"{amount:.2f}",
        primary_unit=primary_unit,
        alt_unit=alt_unit,
    )


def post_purchase_order(po_id: Any, company: Optional[str], actor_id: Optional[str]) -> Dict[str, Any]:
    """
    Post one purchase order to Tally as a Purchase Order voucher.

    Validation failures raise ``ProcurementError``. Transport failures and
    import results reporting errors raise ``TallyError``; the PO is only
    flagged as posted once Tally confirms the voucher was created or altered.
    """
    if po_id in (None, ""):
        raise ProcurementError("Purchase Order ID is required", code="required", field="purchaseOrderId")

    po = po_service.get_purchase_order_instance(po_id)
    voucher = build_purchase_order_voucher(po, company or settings.TALLY_DEFAULT_COMPANY)
    envelope = purchase_order_envelope(voucher)

    with TallyClient(settings.TALLY_ENDPOINT) as client:
        response = client.post_xml(envelope, timeout=settings.TALLY_POST_TIMEOUT)
    if not response.ok:
        raise TallyResponseError(f"Tally returned status {response.status_code}")

    result = parse_import_result(response.text)
    if not result.ok:
        logger.warning("Tally rejected PO %s voucher: %s", po.id, result.describe())
        raise TallyResponseError(f"Tally returned an error response: {result.describe()}")

    po_service.mark_tally_posted(po, response.text)
    audit_logger.info(
        "tally_po_posted",
        extra={
            "event_type": "INTEGRATION",
            "user_id": actor_id,
            "po_id": po.id,
            "vouchernumber": voucher.vouchernumber,
            "company": voucher.company,
        },
    )
    return {
        "success": True,
        "message": "Purchase Order posted to TallyPrime successfully",
        "tallyResponse": response.text,
        "purchaseOrderId": po.id,
    }


def finalize_gqr(gqr_id: Any, decision: Optional[str], actor_id: Optional[str]) -> Dict[str, Any]:
    # Payment and debit-note vouchers are not sent yet; only the status moves.
    gqr = gqr_service.finalize_gqr(gqr_id, decision, actor_id)
    return {
        "success": True,
        "message": f"GQR finalized successfully as a {decision}.",
        "gqrId": gqr.id,
        "gqrStatus": gqr.gqr_status,
    }
