"""Abstract base class for booking providers.

Defines the upstream operations the request handlers depend on.  Any
booking backend (Cal.com, Calendly, ...) implements this ABC.  Every
operation takes the caller's correlation token explicitly; providers
must forward it on the outbound request and never keep it as state.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from slotproxy.errors import UpstreamError
from slotproxy.tracing import correlated

logger = logging.getLogger(__name__)


class BookingProvider(ABC):
    """Abstract booking backend.

    Operations return the upstream payload unmodified on success and
    raise an ``UpstreamError`` variant on failure.  No retries.
    """

    @abstractmethod
    async def fetch_slots(
        self,
        event_type_id: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
        timezone: Optional[str] = None,
        *,
        correlation_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Return the upstream slot listing for an event type.

        Args:
            event_type_id: The bookable event template to query.
            start: Beginning of the search window (ISO 8601).
            end: End of the search window (ISO 8601).
            timezone: IANA zone the upstream should group slots by.
            correlation_id: Token forwarded for tracing.
        """

    @abstractmethod
    async def create_reservation(
        self, payload: dict[str, Any], *, correlation_id: Optional[str] = None
    ) -> dict[str, Any]:
        """Create a booking from a provider-shaped payload."""

    @abstractmethod
    async def patch_reservation(
        self,
        reservation_id: str,
        payload: dict[str, Any],
        *,
        correlation_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Partially update an existing booking."""

    @abstractmethod
    async def check_auth(self, *, correlation_id: Optional[str] = None) -> dict[str, Any]:
        """Fetch the identity behind the configured credentials."""

    async def validate_connection(self, *, correlation_id: Optional[str] = None) -> bool:
        """True if the upstream accepts our credentials."""
        clog = correlated(logger, correlation_id)
        try:
            await self.check_auth(correlation_id=correlation_id)
        except UpstreamError as exc:
            clog.error("Upstream connection validation failed: %s", exc)
            return False
        clog.info("Upstream connection validated")
        return True

    async def aclose(self) -> None:
        """Release network resources held by the provider."""
