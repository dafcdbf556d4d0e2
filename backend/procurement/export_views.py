"""
GQR feed consumed outside the app (the accounting import and spreadsheets).

These endpoints keep the ``{"success": ..., "error": ...}`` response shape
their consumers parse. Cross-origin headers come from ``corsheaders``, which
is scoped to ``/api/gqr-data/`` by ``CORS_URLS_REGEX``. When
``EXPORT_API_TOKEN`` is configured a matching bearer token is required.
"""
import hmac
import logging

from django.conf import settings
from django.http import HttpResponse
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from procurement.services import gqr as gqr_service
from procurement.services import gqr_export
from procurement.services.errors import ProcurementError

logger = logging.getLogger(__name__)


def _failure(message: str, status: int) -> Response:
    return Response({"success": False, "error": message}, status=status)


def _token_ok(request) -> bool:
    expected = getattr(settings, "EXPORT_API_TOKEN", "")
    if not expected:
        return True
    auth_header = request.META.get("HTTP_AUTHORIZATION", "")
    if not auth_header.startswith("Bearer "):
        return False
    return hmac.compare_digest(auth_header[len("Bearer "):].strip(), expected)


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _parse_posted(request) -> bool:
    # Unposted rows unless the caller asks for posted=true.
    return (request.query_params.get("posted") or "").strip().lower() == "true"


def _parse_limit(request):
    raw = request.query_params.get("limit")
    if raw is None or raw == "":
        return settings.GQR_EXPORT_DEFAULT_LIMIT
    try:
        limit = int(raw)
    except ValueError:
        return None
    return limit if limit > 0 else None


@api_view(["GET"])
@authentication_classes([])
@permission_classes([])
def gqr_data(request):
    if not _token_ok(request):
        return _failure("Unauthorized", 401)

    limit = _parse_limit(request)
    if limit is None:
        return _failure("limit must be a positive integer", 400)

    rows = gqr_service.tally_feed(posted=_parse_posted(request), limit=limit)
    if not rows:
        return Response({"success": True, "data": [], "message": "No GQR records found", "count": 0})
    return Response(
        {
            "success": True,
            "data": rows,
            "count": len(rows),
            "message": f"Retrieved {len(rows)} GQR records",
        }
    )


@api_view(["POST"])
@authentication_classes([])
@permission_classes([])
def gqr_update_status(request):
    if not _token_ok(request):
        return _failure("Unauthorized", 401)

    payload = request.data or {}
    gqr_id = payload.get("gqrId")
    is_posted = payload.get("isPosted")
    if gqr_id in (None, "") or is_posted is None:
        return _failure("GQR ID and isPosted status are required", 400)

    try:
        gqr = gqr_service.update_tally_posted(gqr_id, _as_bool(is_posted))
    except ProcurementError as exc:
        return _failure(exc.message, exc.http_status)

    # JSON booleans render lower-case, matching what the caller sent.
    posted_text = "true" if gqr.is_tally_posted else "false"
    return Response(
        {
            "success": True,
            "message": f"GQR {gqr.id} tally posted status updated to {posted_text}",
            "gqrId": gqr.id,
            "isTallyPosted": gqr.is_tally_posted,
        }
    )


@api_view(["GET"])
@authentication_classes([])
@permission_classes([])
def gqr_export_xlsx(request):
    if not _token_ok(request):
        return _failure("Unauthorized", 401)

    content = gqr_export.export_closed_gqrs(posted=_parse_posted(request))
    if content is None:
        return Response({"success": True, "message": "No GQR records found to export", "count": 0})

    logger.info("gqr export workbook generated (%d bytes)", len(content))
    response = HttpResponse(content, content_type=gqr_export.CONTENT_TYPE)
    response["Content-Disposition"] = 'attachment; filename="gqr_export.xlsx"'
    return response
