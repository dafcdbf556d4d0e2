import hmac
import logging
import uuid

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from api.auth_admin import AuthAdminClient, AuthAdminConfigError, AuthAdminError
from api.authentication import SessionTokenAuthentication
from api.models import UserProfile
from api.permissions import AdminPermission
from api.rbac import resolve_roles_and_permissions
from procurement.models import PreGREntry

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("ramexpo.audit")

_VALID_PROFILE_ROLES = {choice for choice, _ in UserProfile.ROLE_CHOICES}


def _actor_extra(request) -> dict:
    return {
        "user_id": getattr(request.user, "user_id", None),
        "username": getattr(request.user, "username", None),
    }


def _failure(message: str, status: int) -> Response:
    return Response({"success": False, "error": message}, status=status)


def _provider_status(exc: AuthAdminError) -> int:
    if exc.status_code and 400 <= exc.status_code < 500:
        return exc.status_code
    return 502


def _serialize_profile(profile: UserProfile) -> dict:
    return {
        "id": str(profile.id),
        "full_name": profile.full_name,
        "email": profile.email,
        "role": profile.role,
        "avatar_url": profile.avatar_url,
        "updated_at": profile.updated_at.isoformat() if profile.updated_at else None,
    }


@api_view(["GET"])
def health(request):
    return Response({"status": "ok"})


@api_view(["GET"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([IsAuthenticated])
def whoami(request):
    roles, permissions = resolve_roles_and_permissions(request, request.user)
    return Response(
        {
            "user_id": request.user.user_id,
            "username": request.user.username,
            "email": request.user.email,
            "roles": roles,
            "permissions": sorted(permissions),
        }
    )


@api_view(["GET", "POST"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([AdminPermission])
def admin_users(request):
    if request.method == "GET":
        profiles = UserProfile.objects.order_by("full_name", "email")
        return Response({"users": [_serialize_profile(p) for p in profiles]})

    payload = request.data or {}
    full_name = str(payload.get("full_name") or "").strip()
    username = str(payload.get("username") or "").strip()
    password = str(payload.get("password") or "")
    role = str(payload.get("role") or "").strip().lower()
    if not full_name or not username or not password or not role:
        return _failure("Missing required fields", 400)
    if role not in _VALID_PROFILE_ROLES:
        return _failure("Role must be one of: admin, user.", 400)

    email = f"{username.lower()}@{settings.ADMIN_USER_EMAIL_DOMAIN}"

    try:
        client = AuthAdminClient()
    except AuthAdminConfigError as exc:
        logger.error("admin user create refused: %s", exc.message)
        return _failure(exc.message, 500)

    with client:
        try:
            auth_user = client.create_user(email, password, full_name)
        except AuthAdminError as exc:
            return _failure(exc.message, _provider_status(exc))

        try:
            with transaction.atomic():
                UserProfile.objects.update_or_create(
                    id=uuid.UUID(str(auth_user["id"])),
                    defaults={"full_name": full_name, "email": email, "role": role},
                )
        except (DatabaseError, ValueError) as exc:
            logger.error("profile write failed for %s, rolling back auth user: %s", email, exc)
            try:
                client.delete_user(str(auth_user["id"]))
            except AuthAdminError as cleanup_exc:
                logger.error(
                    "orphaned auth user %s could not be removed: %s",
                    auth_user["id"],
                    cleanup_exc.message,
                )
            return _failure(f"Failed to update user profile: {exc}", 500)

    audit_logger.info(
        "admin_user_created",
        extra={
            "event_type": "CREATE",
            **_actor_extra(request),
            "target_user_id": str(auth_user["id"]),
            "target_email": email,
            "role": role,
        },
    )
    return Response({"success": True, "message": "User created successfully."}, status=201)


@api_view(["PUT", "DELETE"])
@authentication_classes([SessionTokenAuthentication])
@permission_classes([AdminPermission])
def admin_user_detail(request, user_id):
    if request.method == "PUT":
        payload = request.data or {}
        full_name = str(payload.get("full_name") or "").strip()
        email = str(payload.get("email") or "").strip()
        role = str(payload.get("role") or "").strip().lower()
        if not full_name or not email or not role:
            return _failure("Missing required fields", 400)
        if role not in _VALID_PROFILE_ROLES:
            return _failure("Role must be one of: admin, user.", 400)

        updated = UserProfile.objects.filter(id=user_id).update(
            full_name=full_name, email=email, role=role, updated_at=timezone.now()
        )
        if not updated:
            return _failure("User not found.", 404)

        audit_logger.info(
            "admin_user_updated",
            extra={
                "event_type": "UPDATE",
                **_actor_extra(request),
                "target_user_id": str(user_id),
                "role": role,
            },
        )
        return Response({"success": True, "message": "User updated successfully."})

    try:
        client = AuthAdminClient()
    except AuthAdminConfigError as exc:
        logger.error("admin user delete refused: %s", exc.message)
        return _failure(exc.message, 500)

    UserProfile.objects.filter(id=user_id).delete()
    with client:
        try:
            client.delete_user(str(user_id))
        except AuthAdminError as exc:
            return _failure(exc.message, _provider_status(exc))

    audit_logger.info(
        "admin_user_deleted",
        extra={"event_type": "DELETE", **_actor_extra(request), "target_user_id": str(user_id)},
    )
    return Response({"success": True, "message": "User deleted successfully."})


@api_view(["GET"])
@authentication_classes([])
@permission_classes([])
def cron_ping(request):
    secret = settings.CRON_SECRET
    if secret:
        auth_header = request.META.get("HTTP_AUTHORIZATION", "")
        token = auth_header[len("Bearer "):] if auth_header.startswith("Bearer ") else ""
        if not hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
            return _failure("Unauthorized", 401)

    try:
        list(PreGREntry.objects.values_list("id", flat=True)[:1])
    except DatabaseError as exc:
        logger.warning("cron ping database check failed: %s", exc)
        return _failure(str(exc), 500)

    return Response(
        {
            "success": True,
            "message": "Ping successful",
            "timestamp": timezone.now().isoformat(),
        }
    )
