import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple

import jwt
from jwt import InvalidTokenError, PyJWKClient, PyJWKClientError
from django.conf import settings
from rest_framework.authentication import BaseAuthentication
from rest_framework.exceptions import AuthenticationFailed

logger = logging.getLogger(__name__)

INVALID_TOKEN_MESSAGE = "Invalid bearer token."


@dataclass
class Principal:
    user_id: Optional[str]
    username: Optional[str]
    roles: list[str]
    email: Optional[str] = None
    permissions: list[str] = field(default_factory=list)
    is_authenticated: bool = True


def _signing_key(token: str) -> Tuple[object, list[str]]:
    """Shared secret when configured, else the provider's published key for this token."""
    if settings.AUTH_JWT_SECRET:
        return settings.AUTH_JWT_SECRET, list(settings.AUTH_ALGORITHMS)
    if not settings.AUTH_JWKS_URL:
        raise AuthenticationFailed("JWKS URL is not configured.")
    alg = jwt.get_unverified_header(token).get("alg")
    if not alg:
        raise AuthenticationFailed("JWT alg is missing.")
    signing_key = PyJWKClient(settings.AUTH_JWKS_URL).get_signing_key_from_jwt(token)
    return signing_key.key, [alg]


def decode_session_token(token: str) -> dict:
    """Verify the access token issued by the hosted auth provider and return its claims."""
    issuer = settings.AUTH_ISSUER
    audience = settings.AUTH_AUDIENCE
    try:
        key, algorithms = _signing_key(token)
        payload = jwt.decode(
            token,
            key,
            algorithms=algorithms,
            issuer=issuer or None,
            audience=audience or None,
            options={"verify_aud": bool(audience), "verify_iss": bool(issuer)},
        )
    except (PyJWKClientError, InvalidTokenError, ValueError) as exc:
        logger.warning("Session token rejected: %s", exc)
        raise AuthenticationFailed(INVALID_TOKEN_MESSAGE) from exc
    if not isinstance(payload, dict):
        raise AuthenticationFailed(INVALID_TOKEN_MESSAGE)
    return payload


def _claim_roles(value) -> list[str]:
    # Providers send roles as a list, a single string or a comma separated string.
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(role) for role in value]
    return [role.strip() for role in str(value).split(",") if role.strip()]


def extract_token(request) -> Optional[str]:
    """Bearer header first, then the session cookie set by the login page."""
    auth_header = request.META.get("HTTP_AUTHORIZATION", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.replace("Bearer ", "", 1).strip()
        return token or None
    cookie_token = request.COOKIES.get(settings.AUTH_COOKIE_NAME, "")
    return cookie_token.strip() or None


class SessionTokenAuthentication(BaseAuthentication):
    """
    Verifies the auth provider's access token and exposes it as a Principal.
    Roles are resolved later from user_profiles (see api.rbac).
    """

    def authenticate(self, request) -> Optional[Tuple[Principal, None]]:
        if settings.DEV_AUTH_ENABLED:
            principal = Principal(
                user_id=str(settings.DEV_AUTH_USER_ID),
                username=str(settings.DEV_AUTH_USER_ID),
                roles=list(settings.DEV_AUTH_ROLES),
                permissions=list(settings.DEV_AUTH_PERMISSIONS),
            )
            return principal, None

        if not settings.AUTH_ENABLED:
            return None

        token = extract_token(request)
        if not token:
            raise AuthenticationFailed("Authentication failed: No user session.")

        payload = decode_session_token(token)

        user_id = payload.get(settings.AUTH_USER_ID_CLAIM)
        email = payload.get(settings.AUTH_EMAIL_CLAIM) if settings.AUTH_EMAIL_CLAIM else None
        if user_id is None:
            raise AuthenticationFailed("Token has no user id.")

        roles = []
        if settings.AUTH_ROLES_CLAIM:
            roles = _claim_roles(payload.get(settings.AUTH_ROLES_CLAIM))

        principal = Principal(
            user_id=str(user_id),
            username=str(email) if email else str(user_id),
            email=str(email) if email else None,
            roles=roles,
        )
        return principal, None

    def authenticate_header(self, request) -> str:
        return "Bearer"
