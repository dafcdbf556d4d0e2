from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from api.authentication import SessionTokenAuthentication
from api.permissions import ProcurementPermission
from api.rbac import (
    PERM_GQR_EDIT,
    PERM_GQR_VIEW,
    PERM_MASTERS_EDIT,
    PERM_MASTERS_VIEW,
    PERM_PO_CLOSE,
    PERM_PO_EDIT,
    PERM_PO_VIEW,
    PERM_PRE_GR_APPROVE,
    PERM_PRE_GR_EDIT,
    PERM_PRE_GR_VIEW,
    PERM_REPORTS_VIEW,
)
from procurement.services import gqr as gqr_service
from procurement.services import masters as masters_service
from procurement.services import pre_gr as pre_gr_service
from procurement.services import purchase_orders as po_service
from procurement.services import reports as reports_service
from procurement.services.errors import ProcurementError

_TRUE_VALUES = {"1", "true", "yes", "y"}
_FALSE_VALUES = {"0", "false", "no", "n"}


def _actor_id(request) -> str | None:
    return getattr(request.user, "user_id", None) or getattr(request.user, "username", None)


def _error_response(exc: ProcurementError) -> Response:
    return Response({"errors": exc.as_errors()}, status=exc.http_status)


def _query_bool(request, name: str):
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return None
    normalized = raw.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ProcurementError(f"{name} must be true or false.", code="invalid_filter", field=name)


# =============================================================================
# Master data
# =============================================================================

@api_view(["GET", "POST"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def masters_collection(request, kind: str):
    try:
        if request.method == "POST":
            created = masters_service.create_master(kind, request.data or {}, _actor_id(request))
            return Response(created, status=201)
        results = masters_service.list_masters(kind, search=request.query_params.get("search"))
    except ProcurementError as exc:
        return _error_response(exc)
    return Response({"results": results, "count": len(results)})


@api_view(["GET", "PUT", "PATCH", "DELETE"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def masters_detail(request, kind: str, object_id: str):
    try:
        if request.method == "GET":
            return Response(masters_service.get_master(kind, object_id))
        if request.method == "DELETE":
            masters_service.delete_master(kind, object_id, _actor_id(request))
            return Response(status=204)
        updated = masters_service.update_master(
            kind,
            object_id,
            request.data or {},
            _actor_id(request),
            partial=request.method == "PATCH",
        )
    except ProcurementError as exc:
        return _error_response(exc)
    return Response(updated)


# =============================================================================
# Purchase orders
# =============================================================================

@api_view(["GET", "POST"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def purchase_orders_collection(request):
    try:
        if request.method == "POST":
            created = po_service.create_purchase_order(request.data or {}, _actor_id(request))
            return Response(created, status=201)
        filters = {
            "supplier_id": request.query_params.get("supplier_id"),
            "open": _query_bool(request, "open"),
            "tally_posted": _query_bool(request, "tally_posted"),
        }
        results = po_service.list_purchase_orders(filters)
    except ProcurementError as exc:
        return _error_response(exc)
    return Response({"results": results, "count": len(results)})


@api_view(["GET"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def purchase_order_next_voucher(request):
    return Response({"vouchernumber": po_service.next_voucher_number()})


@api_view(["GET", "PUT", "PATCH", "DELETE"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def purchase_order_detail(request, po_id: int):
    try:
        if request.method == "GET":
            return Response(po_service.get_purchase_order(po_id))
        if request.method == "DELETE":
            po_service.delete_purchase_order(po_id, _actor_id(request))
            return Response(status=204)
        updated = po_service.update_purchase_order(po_id, request.data or {}, _actor_id(request))
    except ProcurementError as exc:
        return _error_response(exc)
    return Response(updated)


@api_view(["POST"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def purchase_order_close(request, po_id: int):
    try:
        closed = po_service.close_purchase_order(
            po_id, (request.data or {}).get("admin_remark"), _actor_id(request)
        )
    except ProcurementError as exc:
        return _error_response(exc)
    return Response(closed)


# =============================================================================
# Pre-GR entries
# =============================================================================

@api_view(["GET", "POST"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def pre_gr_collection(request):
    try:
        if request.method == "POST":
            created = pre_gr_service.create_pre_gr(request.data or {}, _actor_id(request))
            return Response(created, status=201)
        filters = {
            "po_id": request.query_params.get("po_id"),
            "pending_gqr": _query_bool(request, "pending_gqr"),
        }
        results = pre_gr_service.list_pre_gr(filters)
    except ProcurementError as exc:
        return _error_response(exc)
    return Response({"results": results, "count": len(results)})


@api_view(["GET", "PUT", "PATCH", "DELETE"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def pre_gr_detail(request, pre_gr_id: int):
    try:
        if request.method == "GET":
            return Response(pre_gr_service.get_pre_gr(pre_gr_id))
        if request.method == "DELETE":
            pre_gr_service.delete_pre_gr(pre_gr_id, _actor_id(request))
            return Response(status=204)
        updated = pre_gr_service.update_pre_gr(pre_gr_id, request.data or {}, _actor_id(request))
    except ProcurementError as exc:
        return _error_response(exc)
    return Response(updated)


@api_view(["POST"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def pre_gr_approve(request, pre_gr_id: int):
    try:
        approved = pre_gr_service.approve_pre_gr(pre_gr_id, request.data or {}, _actor_id(request))
    except ProcurementError as exc:
        return _error_response(exc)
    return Response(approved)


@api_view(["GET"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def pre_gr_eligible_for_gqr(request):
    results = pre_gr_service.list_eligible_for_gqr()
    return Response({"results": results, "count": len(results)})


# =============================================================================
# GQR entries
# =============================================================================

@api_view(["GET", "POST"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def gqr_collection(request):
    try:
        if request.method == "POST":
            created = gqr_service.create_gqr(request.data or {}, _actor_id(request))
            return Response(created, status=201)
        filters = {
            "status": request.query_params.get("status"),
            "posted": _query_bool(request, "posted"),
            "supplier_id": request.query_params.get("supplier_id"),
        }
        results = gqr_service.list_gqr(filters)
    except ProcurementError as exc:
        return _error_response(exc)
    return Response({"results": results, "count": len(results)})


@api_view(["GET", "PUT", "PATCH"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def gqr_detail(request, gqr_id: int):
    try:
        if request.method == "GET":
            return Response(gqr_service.get_gqr(gqr_id))
        updated = gqr_service.update_gqr(gqr_id, request.data or {}, _actor_id(request))
    except ProcurementError as exc:
        return _error_response(exc)
    return Response(updated)


# =============================================================================
# Reports
# =============================================================================

@api_view(["GET"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([ProcurementPermission])
def vendor_performance_report(request):
    rows = reports_service.vendor_performance(request.query_params.get("supplier_id"))
    return Response({"results": rows, "count": len(rows)})


_MASTERS_PERMISSIONS = {"GET": PERM_MASTERS_VIEW, "*": PERM_MASTERS_EDIT}
_PO_PERMISSIONS = {"GET": PERM_PO_VIEW, "*": PERM_PO_EDIT}
_PRE_GR_PERMISSIONS = {"GET": PERM_PRE_GR_VIEW, "*": PERM_PRE_GR_EDIT}
_GQR_PERMISSIONS = {"GET": PERM_GQR_VIEW, "*": PERM_GQR_EDIT}

masters_collection.required_permission = _MASTERS_PERMISSIONS
masters_detail.required_permission = _MASTERS_PERMISSIONS
purchase_orders_collection.required_permission = _PO_PERMISSIONS
purchase_order_next_voucher.required_permission = [PERM_PO_VIEW, PERM_PO_EDIT]
purchase_order_detail.required_permission = _PO_PERMISSIONS
purchase_order_close.required_permission = PERM_PO_CLOSE
pre_gr_collection.required_permission = _PRE_GR_PERMISSIONS
pre_gr_detail.required_permission = _PRE_GR_PERMISSIONS
pre_gr_approve.required_permission = PERM_PRE_GR_APPROVE
pre_gr_eligible_for_gqr.required_permission = [PERM_PRE_GR_VIEW, PERM_GQR_EDIT]
gqr_collection.required_permission = _GQR_PERMISSIONS
gqr_detail.required_permission = _GQR_PERMISSIONS
vendor_performance_report.required_permission = PERM_REPORTS_VIEW

for view_func in (
    masters_collection,
    masters_detail,
    purchase_orders_collection,
    purchase_order_next_voucher,
    purchase_order_detail,
    purchase_order_close,
    pre_gr_collection,
    pre_gr_detail,
    pre_gr_approve,
    pre_gr_eligible_for_gqr,
    gqr_collection,
    gqr_detail,
    vendor_performance_report,
):
    if hasattr(view_func, "cls"):
        view_func.cls.required_permission = view_func.required_permission
