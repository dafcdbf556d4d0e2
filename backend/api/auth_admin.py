"""
Client for the hosted auth provider's admin API.

Only the calls the user-management screens need are wrapped: creating an
account with a confirmed email and deleting one. Every call authenticates with
the service key, which must never reach the browser.
"""

import logging
from typing import Any, Dict, Optional

import requests
from django.conf import settings
from requests.exceptions import RequestException, Timeout

logger = logging.getLogger(__name__)


class AuthAdminError(Exception):
    """Raised when the auth provider rejects or fails an admin call."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class AuthAdminConfigError(AuthAdminError):
    """Raised when the service key or admin URL is not configured."""


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("msg", "message", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"


class AuthAdminClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        service_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        base_url = settings.AUTH_ADMIN_URL if base_url is None else base_url
        service_key = settings.AUTH_SERVICE_KEY if service_key is None else service_key
        if not service_key:
            raise AuthAdminConfigError("Server configuration error: service key is missing.")
        if not base_url:
            raise AuthAdminConfigError("Server configuration error: AUTH_ADMIN_URL is missing.")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.AUTH_ADMIN_TIMEOUT
        self.session = requests.Session()
        self.session.headers.update(
            {
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
                "Accept": "application/json",
            }
        )

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, f"{self.base_url}{path}", **kwargs)
        except Timeout as exc:
            raise AuthAdminError("Auth provider timed out.") from exc
        except RequestException as exc:
            raise AuthAdminError(f"Auth provider request failed: {exc}") from exc

        if not response.ok:
            message = _error_message(response)
            logger.warning(
                "auth admin %s %s failed: %s %s", method, path, response.status_code, message
            )
            raise AuthAdminError(message, status_code=response.status_code)
        return response

    def create_user(self, email: str, password: str, full_name: str) -> Dict[str, Any]:
        response = self._request(
            "POST",
            "/admin/users",
            json={
                "email": email,
                "password": password,
                "email_confirm": True,
                "user_metadata": {"full_name": full_name},
            },
        )
        user = response.json()
        if not isinstance(user, dict) or not user.get("id"):
            raise AuthAdminError("Auth provider returned no user id.")
        return user

    def delete_user(self, user_id: str) -> None:
        self._request("DELETE", f"/admin/users/{user_id}")

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
