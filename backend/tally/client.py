"""
Tally HTTP client
=================

TallyPrime exposes a single XML-over-HTTP endpoint on the accountant's machine.
Every call carries its own timeout. Reads are retried a bounded number of
times and URLs are sanitized before they reach the logs.

Usage:
    with TallyClient(settings.TALLY_API_URL) as client:
        response = client.post_xml(envelope, timeout=15)
"""

import logging
import time
from typing import Optional
from urllib.parse import urlparse

import requests
from django.conf import settings
from requests.exceptions import (
    ConnectionError as RequestsConnectionError,
    RequestException,
    Timeout,
)

logger = logging.getLogger(__name__)

XML_HEADERS = {
    "Content-Type": "application/xml",
    "Accept": "application/xml",
}


class TallyError(Exception):
    """Base exception for Tally transport errors."""


class TallyTimeoutError(TallyError):
    """Raised when Tally does not answer within the call timeout."""


class TallyConnectionError(TallyError):
    """Raised when the Tally endpoint cannot be reached."""


class TallyResponseError(TallyError):
    """Raised when Tally answers with an unusable response."""


def _sanitize_url_for_log(url: str) -> str:
    parsed = urlparse(url)
    safe_url = f"{parsed.scheme}://{parsed.netloc}{parsed.path}"
    if parsed.query:
        safe_url += "?[params_redacted]"
    return safe_url


class TallyClient:
    """
    Session-backed client for one Tally endpoint.

    ``retries`` is the total number of attempts for reads, so the default of 1
    never retries. Imports are sent once because Tally may have applied a
    voucher whose response never arrived. Timeouts and refused connections are
    mapped to ``TallyError`` subclasses; HTTP status handling is left to the
    caller.
    """

    def __init__(self, base_url: str, retries: Optional[int] = None, timeout: float = 30.0):
        self.base_url = base_url
        self.retries = max(1, retries if retries is not None else settings.TALLY_RETRIES)
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update(XML_HEADERS)

    def _make_request(self, method: str, retry: bool = True, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        safe_url = _sanitize_url_for_log(self.base_url)

        attempts = self.retries if retry else 1
        last_error: TallyError = TallyError("Request failed after retries")
        for attempt in range(attempts):
            try:
                logger.debug("Tally request: %s %s (attempt %d)", method, safe_url, attempt + 1)
                response = self.session.request(method, self.base_url, **kwargs)
                logger.debug("Tally response: %s from %s", response.status_code, safe_url)
                return response

            except Timeout:
                last_error = TallyTimeoutError(f"Request timed out after {kwargs['timeout']}s")
                logger.warning("Tally timeout: %s (attempt %d)", safe_url, attempt + 1)

            except RequestsConnectionError as exc:
                last_error = TallyConnectionError(f"Connection failed: {exc}")
                logger.warning("Tally connection error: %s (attempt %d)", safe_url, attempt + 1)

            except RequestException as exc:
                last_error = TallyError(f"Request failed: {exc}")
                logger.warning("Tally error: %s (attempt %d): %s", safe_url, attempt + 1, exc)

            if attempt < attempts - 1:
                time.sleep(2 ** attempt)

        raise last_error

    def get(self, timeout: Optional[float] = None) -> requests.Response:
        return self._make_request("GET", timeout=timeout or self.timeout)

    def post_xml(
        self, envelope: str, timeout: Optional[float] = None, read_only: bool = False
    ) -> requests.Response:
        """POST an envelope. Only read-only exports (``read_only=True``) are retried."""
        return self._make_request(
            "POST",
            retry=read_only,
            data=envelope.encode("utf-8"),
            timeout=timeout or self.timeout,
        )

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
