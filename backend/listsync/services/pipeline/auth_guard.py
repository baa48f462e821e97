"""
Auth Guard.

Tells a dead CRM credential apart from ordinary per-row failures. A dead
credential aborts the sync run; ordinary failures only fail their row.

The CRM client surfaces errors in several shapes (status attributes,
messages, raw response bodies), so classification checks all of them.
"""

import enum
import logging
from typing import Any, Optional

import httpx

from listsync.core.interfaces.crm import CRMProvider

logger = logging.getLogger(__name__)

# Remediation shown on every row when no credential is available at start
MISSING_TOKEN_MESSAGE = (
    "HubSpot OAuth token is missing or expired. "
    "Please reconnect HubSpot in Admin > Integrations."
)

# Remediation written to the failing row and every remaining row on abort
TOKEN_EXPIRED_MESSAGE = (
    "HubSpot OAuth token expired. "
    "Please reconnect HubSpot in Admin > Integrations and try again."
)

EXPIRED_MARKER = "EXPIRED_AUTHENTICATION"

_STATUS_ATTRIBUTES = ("status_code", "code", "status", "statusCode")


class ErrorClass(str, enum.Enum):
    AUTH_EXPIRED = "auth_expired"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


def _status_codes(error: BaseException) -> set:
    codes = set()
    for attribute in _STATUS_ATTRIBUTES:
        value = getattr(error, attribute, None)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            codes.add(value)
        elif isinstance(value, str) and value.isdigit():
            codes.add(int(value))

    response = getattr(error, "response", None)
    status_code = getattr(response, "status_code", None)
    if isinstance(status_code, int):
        codes.add(status_code)
    return codes


def _body_text(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, (bytes, bytearray)):
        return body.decode("utf-8", errors="replace")
    return str(body)


def is_auth_error(error: BaseException) -> bool:
    """True if `error` means the CRM credential is invalid or expired."""
    if 401 in _status_codes(error):
        return True

    text = str(error)
    if "401" in text or EXPIRED_MARKER in text:
        return True

    message = getattr(error, "message", None)
    if isinstance(message, str):
        if "401" in message or "expired" in message or EXPIRED_MARKER in message:
            return True

    body = _body_text(getattr(error, "body", None))
    if EXPIRED_MARKER in body or "expired" in body:
        return True

    return False


def classify_error(error: BaseException) -> ErrorClass:
    """Map an exception raised by a CRM call onto ErrorClass."""
    if is_auth_error(error):
        return ErrorClass.AUTH_EXPIRED

    codes = _status_codes(error)
    if 429 in codes:
        return ErrorClass.RATE_LIMITED
    if 404 in codes:
        return ErrorClass.NOT_FOUND
    if any(500 <= code < 600 for code in codes):
        return ErrorClass.TRANSIENT
    # Client wrappers keep the httpx error as __cause__
    for candidate in (error, error.__cause__):
        if isinstance(candidate, (httpx.TimeoutException, httpx.NetworkError)):
            return ErrorClass.TRANSIENT
    return ErrorClass.UNKNOWN


class AuthGuard:
    """
    Tracks consecutive auth-class failures within one sync run.

    The first failure forces a credential refresh; reaching
    `max_consecutive` means the run must abort. Only a successful row
    resets the streak.
    """

    def __init__(self, provider: CRMProvider, max_consecutive: int = 2):
        self.provider = provider
        self.max_consecutive = max_consecutive
        self.consecutive_failures = 0

    async def ensure_credentials(self) -> bool:
        """Drop cached credentials and check a valid token can be obtained."""
        self.consecutive_failures = 0
        self.provider.reset_client()
        token: Optional[str] = await self.provider.get_valid_access_token()
        if not token:
            logger.error("❌ No valid CRM credential available")
            return False
        return True

    async def record_auth_failure(self) -> bool:
        """
        Register an auth-class failure.

        Returns True when the run must abort.
        """
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.max_consecutive:
            logger.error(
                f"❌ {self.consecutive_failures} consecutive auth failures, aborting sync"
            )
            return True

        logger.warning("⚠️ Auth failure from CRM, forcing credential refresh")
        self.provider.reset_client()
        try:
            await self.provider.get_valid_access_token(force_refresh=True)
        except Exception as e:
            # The next row's call decides whether the credential is really dead
            logger.warning(f"⚠️ Credential refresh failed: {e}")
        return False

    def record_success(self) -> None:
        self.consecutive_failures = 0
