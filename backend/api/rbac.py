from __future__ import annotations

import logging
import uuid
from typing import Iterable, Tuple

from django.conf import settings
from django.db import DatabaseError

from api.authentication import Principal

logger = logging.getLogger(__name__)

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"

PERM_MASTERS_VIEW = "procurement.masters.view"
PERM_MASTERS_EDIT = "procurement.masters.edit"
PERM_PO_VIEW = "procurement.po.view"
PERM_PO_EDIT = "procurement.po.edit"
PERM_PO_CLOSE = "procurement.po.close"
PERM_PRE_GR_VIEW = "procurement.pre_gr.view"
PERM_PRE_GR_EDIT = "procurement.pre_gr.edit"
PERM_PRE_GR_APPROVE = "procurement.pre_gr.approve"
PERM_GQR_VIEW = "procurement.gqr.view"
PERM_GQR_EDIT = "procurement.gqr.edit"
PERM_GQR_FINALIZE = "procurement.gqr.finalize"
PERM_REPORTS_VIEW = "procurement.reports.view"
PERM_TALLY_VIEW = "tally.view"
PERM_TALLY_POST = "tally.post"
PERM_USERS_MANAGE = "admin.users.manage"

_USER_PERMISSIONS = {
    PERM_MASTERS_VIEW,
    PERM_MASTERS_EDIT,
    PERM_PO_VIEW,
    PERM_PO_EDIT,
    PERM_PRE_GR_VIEW,
    PERM_PRE_GR_EDIT,
    PERM_GQR_VIEW,
    PERM_GQR_EDIT,
    PERM_REPORTS_VIEW,
    PERM_TALLY_VIEW,
    PERM_TALLY_POST,
}

_ROLE_PERMISSION_MAP = {
    ROLE_USER: _USER_PERMISSIONS,
    ROLE_ADMIN: _USER_PERMISSIONS
    | {
        PERM_PO_CLOSE,
        PERM_PRE_GR_APPROVE,
        PERM_GQR_FINALIZE,
        PERM_USERS_MANAGE,
    },
}


def _dedupe_preserve_order(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


def resolve_roles_and_permissions(
    request, principal: Principal
) -> Tuple[list[str], list[str]]:
    if hasattr(request, "_rbac_cache"):
        cached = request._rbac_cache
        return cached["roles"], cached["permissions"]

    roles: list[str] = [str(role).upper() for role in (principal.roles or [])]
    permissions: list[str] = list(getattr(principal, "permissions", []) or [])

    if _db_rbac_enabled():
        try:
            profile_role = _fetch_profile_role(principal.user_id)
        except DatabaseError as exc:
            profile_role = None
            logger.warning("RBAC profile lookup failed: %s", exc)
        if profile_role:
            roles = _dedupe_preserve_order(roles + [profile_role.upper()])

    permissions = _dedupe_preserve_order(
        permissions + sorted(_permissions_for_roles(roles))
    )

    request._rbac_cache = {"roles": roles, "permissions": permissions}
    return roles, permissions


def is_admin(request, principal: Principal) -> bool:
    roles, _ = resolve_roles_and_permissions(request, principal)
    return ROLE_ADMIN in roles


def _db_rbac_enabled() -> bool:
    return bool(settings.AUTH_USE_DB_RBAC)


def _fetch_profile_role(user_id: str | None) -> str | None:
    if not user_id:
        return None
    try:
        profile_id = uuid.UUID(str(user_id))
    except ValueError:
        return None

    from api.models import UserProfile

    return (
        UserProfile.objects.filter(id=profile_id)
        .values_list("role", flat=True)
        .first()
    )


def _permissions_for_roles(roles: Iterable[str]) -> set[str]:
    permissions: set[str] = set()
    for role in roles:
        permissions |= _ROLE_PERMISSION_MAP.get(role.upper(), set())
    return permissions
