import logging

from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from api.authentication import SessionTokenAuthentication
from api.permissions import ProcurementPermission
from api.rbac import PERM_GQR_FINALIZE, PERM_TALLY_POST, PERM_TALLY_VIEW
from procurement.services.errors import ProcurementError
from tally import services as tally_service
from tally.client import TallyError

logger = logging.getLogger(__name__)

METHOD_NOT_ALLOWED_MESSAGE = "Method not allowed. Use POST to submit purchase orders to Tally."


def _actor_id(request):
    return getattr(request.user, "user_id", None) or getattr(request.user, "username", None)


def _failure(message: str, status: int) -> Response:
    return Response({"success": False, "error": message}, status=status)


@api_view(["GET"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def tally_companies(request):
    try:
        companies = tally_service.list_companies()
    except TallyError as exc:
        logger.warning("Tally company list failed: %s", exc)
        return Response({"companies": [], "error": str(exc)}, status=500)
    return Response({"companies": companies})


@api_view(["GET"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def tally_status(request):
    return Response(tally_service.check_status())


@api_view(["GET", "POST", "PUT", "DELETE"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def tally_post_po(request):
    if request.method != "POST":
        return _failure(METHOD_NOT_ALLOWED_MESSAGE, 405)

    payload = request.data or {}
    try:
        body = tally_service.post_purchase_order(
            payload.get("purchaseOrderId"), payload.get("company"), _actor_id(request)
        )
    except ProcurementError as exc:
        return _failure(exc.message, exc.http_status)
    except TallyError as exc:
        logger.error("Tally posting error: %s", exc)
        return _failure(f"Failed to post to TallyPrime: {exc}", 502)
    return Response(body)


@api_view(["POST"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def tally_post_gqr(request):
    payload = request.data or {}
    try:
        body = tally_service.finalize_gqr(
            payload.get("gqrId"), payload.get("decision"), _actor_id(request)
        )
    except ProcurementError as exc:
        return _failure(exc.message, exc.http_status)
    return Response(body)


tally_companies.required_permission = PERM_TALLY_VIEW
tally_status.required_permission = PERM_TALLY_VIEW
tally_post_po.required_permission = PERM_TALLY_POST
tally_post_gqr.required_permission = PERM_GQR_FINALIZE

for view_func in (tally_companies, tally_status, tally_post_po, tally_post_gqr):
    if hasattr(view_func, "cls"):
        view_func.cls.required_permission = view_func.required_permission
