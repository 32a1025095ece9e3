"""Cal.com v2 provider implementation.

Talks to the Cal.com REST API with a bearer API key.  The API version is
pinned per request via the ``cal-api-version`` header.  Status codes are
turned into typed errors by ``slotproxy.errors.classify_status``.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from slotproxy.errors import NetworkError, UnknownUpstreamError, UpstreamError, classify_status
from slotproxy.tracing import CORRELATION_HEADER, correlated

from .base import BookingProvider

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.cal.com"
DEFAULT_API_VERSION = "2024-08-13"
DEFAULT_TIMEOUT = 30.0


class CalComClient(BookingProvider):
    """BookingProvider backed by the Cal.com v2 API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "cal-api-version": api_version,
            },
        )
        logger.info("CalComClient initialized (base_url=%s)", self._base_url)

    async def __aenter__(self) -> "CalComClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _error_message(body: Any) -> Optional[str]:
        """Dig the human message out of a Cal.com error body (v1 or v2 shape)."""
        if not isinstance(body, dict):
            return None
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if body.get("message"):
            return str(body["message"])
        if isinstance(error, str):
            return error
        return None

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[int]:
        value = response.headers.get("retry-after", "").strip()
        return int(value) if value.isdigit() else None

    def _to_error(self, response: httpx.Response) -> UpstreamError:
        try:
            body = response.json()
        except ValueError:
            body = response.text or None
        return classify_status(
            response.status_code,
            message=self._error_message(body),
            retry_after=self._retry_after(response),
            details=body,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        correlation_id: Optional[str] = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Send one request and return the parsed JSON body.

        Logs once before dispatch and once after the call resolves.
        """
        clog = correlated(logger, correlation_id)
        headers = {CORRELATION_HEADER: correlation_id} if correlation_id else {}

        clog.debug("Cal.com %s: %s %s", operation, method, path)
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as exc:
            clog.error("Cal.com %s network error: %s", operation, exc)
            raise NetworkError(
                "Cal.com API network error. Please check your connection.",
                details=str(exc) or type(exc).__name__,
            ) from exc

        if response.is_success:
            try:
                body = response.json() if response.content else {}
            except ValueError:
                clog.error(
                    "Cal.com %s returned an unreadable body (%d)", operation, response.status_code
                )
                raise UnknownUpstreamError(
                    f"Cal.com API returned an unreadable response ({response.status_code})",
                    response.status_code,
                    details=response.text,
                ) from None
            clog.info("Cal.com %s succeeded (%d)", operation, response.status_code)
            return body

        error = self._to_error(response)
        clog.error(
            "Cal.com %s failed (%d): %s", operation, response.status_code, error.message
        )
        raise error

    # ------------------------------------------------------------------
    # BookingProvider interface
    # ------------------------------------------------------------------

    async def fetch_slots(
        self,
        event_type_id: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
        timezone: Optional[str] = None,
        *,
        correlation_id: Optional[str] = None,
    ) -> dict[str, Any]:
        params = {"eventTypeId": event_type_id}
        if start:
            params["startTime"] = start
        if end:
            params["endTime"] = end
        if timezone:
            params["timeZone"] = timezone

        return await self._request(
            "GET",
            "/v2/slots/available",
            operation="fetch_slots",
            correlation_id=correlation_id,
            params=params,
        )

    async def create_reservation(
        self, payload: dict[str, Any], *, correlation_id: Optional[str] = None
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/v2/bookings",
            operation="create_reservation",
            correlation_id=correlation_id,
            json=payload,
        )

    async def patch_reservation(
        self,
        reservation_id: str,
        payload: dict[str, Any],
        *,
        correlation_id: Optional[str] = None,
    ) -> dict[str, Any]:
        return await self._request(
            "PATCH",
            f"/v2/bookings/{reservation_id}",
            operation="patch_reservation",
            correlation_id=correlation_id,
            json=payload,
        )

    async def check_auth(self, *, correlation_id: Optional[str] = None) -> dict[str, Any]:
        return await self._request(
            "GET", "/v2/me", operation="check_auth", correlation_id=correlation_id
        )
