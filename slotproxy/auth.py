"""Guard for routes that need the upstream Cal.com credentials.

Behavior matrix:
  CALCOM_API_KEY set    → allow
  CALCOM_API_KEY empty  → 401 AUTHENTICATION_ERROR, no upstream call made

FastAPI resolves route dependencies before it reports body errors, so a
keyless deployment answers 401 even when the body is also malformed.
"""

from __future__ import annotations

import logging

from fastapi import Request

from slotproxy.errors import ApiError, ErrorCode
from slotproxy.tracing import CORRELATION_HEADER, correlated, resolve_correlation_id

log = logging.getLogger("slotproxy.auth")


async def require_upstream_credentials(request: Request) -> None:
    """FastAPI dependency: refuse to proxy when no Cal.com API key is configured."""
    settings = request.app.state.settings
    clog = correlated(
        log, resolve_correlation_id(request.headers.get(CORRELATION_HEADER), "auth")
    )

    if not settings.calcom_api_key:
        clog.error("Cal.com API key not configured")
        raise ApiError(
            401,
            ErrorCode.AUTHENTICATION_ERROR,
            "Cal.com API key not configured",
        )

    clog.debug("Cal.com credentials present")
