from rest_framework.exceptions import NotAuthenticated
from rest_framework.permissions import BasePermission

from api.rbac import PERM_USERS_MANAGE, resolve_roles_and_permissions


def _required_permission(request, view):
    required = getattr(view, "required_permission", None)
    if required is None:
        view_cls = getattr(view, "view_class", None) or getattr(view, "cls", None)
        if view_cls is not None:
            required = getattr(view_cls, "required_permission", None)
    if isinstance(required, dict):
        required = required.get(request.method) or required.get("*")
    return required


class ProcurementPermission(BasePermission):
    """Checks the view's ``required_permission`` against resolved RBAC permissions.

    Supports a single code, a list of alternatives, or a method mapping:
    ``required_permission = {"GET": "...view", "POST": "...edit"}``
    """

    message = "Forbidden."

    def has_permission(self, request, view) -> bool:
        required = _required_permission(request, view)
        if not required:
            return False

        user = request.user
        if not getattr(user, "is_authenticated", False):
            return False

        _, permissions = resolve_roles_and_permissions(request, user)
        if isinstance(required, (list, set, tuple)):
            return any(perm in permissions for perm in required)
        return required in permissions


class AdminPermission(BasePermission):
    message = "Forbidden: Admin privileges required."

    def has_permission(self, request, view) -> bool:
        user = request.user
        if not getattr(user, "is_authenticated", False):
            raise NotAuthenticated("Authentication failed: No user session.")

        _, permissions = resolve_roles_and_permissions(request, user)
        return PERM_USERS_MANAGE in permissions
