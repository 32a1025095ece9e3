"""Shared fixtures: an in-memory booking provider and an ASGI test client."""

from typing import Any, Optional

import pytest
from httpx import ASGITransport, AsyncClient

from slotproxy.calendar_providers.base import BookingProvider
from slotproxy.config import Settings


class StubProvider(BookingProvider):
    """Records every call and replays canned responses or errors."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.responses: dict[str, Any] = {
            "fetch_slots": {"status": "success", "data": {"slots": {}}},
            "create_reservation": {},
            "patch_reservation": {},
            "check_auth": {"status": "success", "data": {"id": 1}},
        }
        self.errors: dict[str, Exception] = {}
        self.closed = False

    async def _answer(self, operation: str, **kwargs: Any) -> Any:
        self.calls.append((operation, kwargs))
        if operation in self.errors:
            raise self.errors[operation]
        return self.responses[operation]

    async def fetch_slots(self, event_type_id, start=None, end=None, timezone=None, *, correlation_id=None):
        return await self._answer(
            "fetch_slots",
            event_type_id=event_type_id, start=start, end=end,
            timezone=timezone, correlation_id=correlation_id,
        )

    async def create_reservation(self, payload, *, correlation_id=None):
        return await self._answer("create_reservation", payload=payload, correlation_id=correlation_id)

    async def patch_reservation(self, reservation_id, payload, *, correlation_id=None):
        return await self._answer(
            "patch_reservation",
            reservation_id=reservation_id, payload=payload, correlation_id=correlation_id,
        )

    async def check_auth(self, *, correlation_id: Optional[str] = None):
        return await self._answer("check_auth", correlation_id=correlation_id)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def provider():
    return StubProvider()


@pytest.fixture
def settings():
    return Settings(calcom_api_key="cal_test_key", slot_duration_minutes=15)


@pytest.fixture
async def client(settings, provider):
    from slotproxy.app import create_app

    app = create_app(settings, provider)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
