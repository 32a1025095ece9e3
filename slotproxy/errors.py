"""Error taxonomy.

Two layers:

* ``UpstreamError`` and its variants are raised by the calendar provider,
  one class per HTTP status class returned by Cal.com.  ``classify_status``
  is the only place a status code is turned into a variant.
* ``ApiError`` is raised by the request handlers and carries the local
  status code and ``ErrorCode`` that end up in the JSON error envelope.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from slotproxy.dates import format_utc, now


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    EVENT_TYPE_NOT_FOUND = "EVENT_TYPE_NOT_FOUND"
    RESERVATION_NOT_FOUND = "RESERVATION_NOT_FOUND"
    SLOT_UNAVAILABLE = "SLOT_UNAVAILABLE"
    UPDATE_CONFLICT = "UPDATE_CONFLICT"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"


# ── Upstream (Cal.com) failures ──────────────────────────────────────


class UpstreamError(Exception):
    """A Cal.com call that did not return 2xx."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class AuthenticationError(UpstreamError):
    pass


class NotFoundError(UpstreamError):
    pass


class ConflictError(UpstreamError):
    pass


class RateLimitError(UpstreamError):
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = 429,
        details: Any = None,
        retry_after: Optional[int] = None,
    ) -> None:
        super().__init__(message, status_code, details)
        self.retry_after = retry_after


class UpstreamServerError(UpstreamError):
    pass


class NetworkError(UpstreamError):
    """No response was received (connection failure or timeout)."""


class UnknownUpstreamError(UpstreamError):
    pass


def classify_status(
    status: int,
    message: Optional[str] = None,
    retry_after: Optional[int] = None,
    details: Any = None,
) -> UpstreamError:
    """Map a non-2xx Cal.com status to its error variant."""
    if status == 401:
        return AuthenticationError(
            f"Cal.com API authentication failed: {message or 'Please check your API key.'}",
            status, details,
        )
    if status == 403:
        return AuthenticationError(
            f"Cal.com API access forbidden: {message or 'Insufficient permissions.'}",
            status, details,
        )
    if status == 404:
        return NotFoundError(
            f"Cal.com API resource not found: {message or 'Endpoint or resource not found.'}",
            status, details,
        )
    if status == 409:
        return ConflictError(
            f"Cal.com API conflict: {message or 'Resource may already exist or be unavailable.'}",
            status, details,
        )
    if status == 429:
        return RateLimitError(
            f"Cal.com API rate limit exceeded: {message or 'Please try again later.'}",
            status, details, retry_after=retry_after,
        )
    if 500 <= status <= 599:
        return UpstreamServerError(
            f"Cal.com API server error: {message or 'Please try again later.'}",
            status, details,
        )
    return UnknownUpstreamError(
        f"Cal.com API error ({status}): {message or 'Unknown error'}",
        status, details,
    )


# ── Local API errors ─────────────────────────────────────────────────


class ApiError(Exception):
    """Raised by handlers; rendered as the JSON error envelope."""

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        message: str,
        details: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        self.headers = headers or {}


def error_envelope(code: ErrorCode | str, message: str, details: Any = None) -> dict:
    body: dict[str, Any] = {
        "code": code.value if isinstance(code, ErrorCode) else code,
        "message": message,
        "timestamp": format_utc(now()),
    }
    if details is not None:
        body["details"] = details
    return {"error": body}
