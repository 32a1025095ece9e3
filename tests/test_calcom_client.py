"""Tests for BookingProvider ABC and CalComClient (mocked transport)."""

import json

import httpx
import pytest

from slotproxy.calendar_providers import BookingProvider, CalComClient
from slotproxy.errors import (
    AuthenticationError,
    ConflictError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    UnknownUpstreamError,
    UpstreamServerError,
)


def make_client(handler, **kwargs):
    """CalComClient whose requests are answered by ``handler``."""
    seen: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = CalComClient(api_key="cal_test_key", transport=httpx.MockTransport(recording), **kwargs)
    return client, seen


# ── ABC contract tests ─────────────────────────────────────────────


class TestBookingProviderABC:
    def test_cannot_instantiate(self):
        with pytest.raises(TypeError):
            BookingProvider()

    def test_calcom_is_a_provider(self):
        client, _ = make_client(lambda request: httpx.Response(200, json={}))
        assert isinstance(client, BookingProvider)


# ── Request shape ──────────────────────────────────────────────────


class TestRequests:
    @pytest.mark.asyncio
    async def test_fetch_slots(self):
        body = {"status": "success", "data": {"slots": {"2023-12-01": []}}}
        client, seen = make_client(lambda request: httpx.Response(200, json=body))
        async with client:
            result = await client.fetch_slots(
                "123",
                start="2023-12-01T00:00:00Z",
                end="2023-12-02T00:00:00Z",
                timezone="America/New_York",
                correlation_id="slots-1",
            )

        assert result == body
        request = seen[0]
        assert request.method == "GET"
        assert request.url.path == "/v2/slots/available"
        assert dict(request.url.params) == {
            "eventTypeId": "123",
            "startTime": "2023-12-01T00:00:00Z",
            "endTime": "2023-12-02T00:00:00Z",
            "timeZone": "America/New_York",
        }
        assert request.headers["authorization"] == "Bearer cal_test_key"
        assert request.headers["cal-api-version"] == "2024-08-13"
        assert request.headers["x-correlation-id"] == "slots-1"

    @pytest.mark.asyncio
    async def test_optional_params_omitted(self):
        client, seen = make_client(lambda request: httpx.Response(200, json={}))
        async with client:
            await client.fetch_slots("123")
        assert dict(seen[0].url.params) == {"eventTypeId": "123"}
        assert "x-correlation-id" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_create_reservation_posts_json(self):
        client, seen = make_client(
            lambda request: httpx.Response(201, json={"status": "success", "data": {"uid": "bk_1"}})
        )
        payload = {"eventTypeId": 123, "start": "2023-12-01T10:00:00Z"}
        async with client:
            result = await client.create_reservation(payload, correlation_id="reserve-1")

        assert result["data"]["uid"] == "bk_1"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/v2/bookings"
        assert json.loads(seen[0].content) == payload

    @pytest.mark.asyncio
    async def test_patch_reservation(self):
        client, seen = make_client(lambda request: httpx.Response(200, json={"data": {}}))
        async with client:
            await client.patch_reservation("bk_1", {"start": "2023-12-01T11:00:00Z"})
        assert seen[0].method == "PATCH"
        assert seen[0].url.path == "/v2/bookings/bk_1"

    @pytest.mark.asyncio
    async def test_empty_body(self):
        client, _ = make_client(lambda request: httpx.Response(204))
        async with client:
            assert await client.patch_reservation("bk_1", {}) == {}

    @pytest.mark.asyncio
    async def test_unreadable_success_body(self):
        client, _ = make_client(
            lambda request: httpx.Response(
                200, text="<html>maintenance</html>", headers={"Content-Type": "text/html"}
            )
        )
        async with client:
            with pytest.raises(UnknownUpstreamError) as exc_info:
                await client.check_auth()
        assert exc_info.value.status_code == 200
        assert exc_info.value.details == "<html>maintenance</html>"

    @pytest.mark.asyncio
    async def test_unreadable_body_fails_validation(self):
        client, _ = make_client(lambda request: httpx.Response(200, text="not json"))
        async with client:
            assert await client.validate_connection() is False

    @pytest.mark.asyncio
    async def test_custom_base_url_and_version(self):
        client, seen = make_client(
            lambda request: httpx.Response(200, json={}),
            base_url="https://cal.internal/",
            api_version="2024-06-14",
        )
        async with client:
            await client.check_auth()
        assert str(seen[0].url) == "https://cal.internal/v2/me"
        assert seen[0].headers["cal-api-version"] == "2024-06-14"


# ── Error mapping ──────────────────────────────────────────────────


class TestErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, expected",
        [
            (401, AuthenticationError),
            (403, AuthenticationError),
            (404, NotFoundError),
            (409, ConflictError),
            (500, UpstreamServerError),
            (418, UnknownUpstreamError),
        ],
    )
    async def test_status_mapping(self, status, expected):
        client, _ = make_client(lambda request: httpx.Response(status, json={}))
        async with client:
            with pytest.raises(expected) as exc_info:
                await client.fetch_slots("123")
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_v2_error_message(self):
        body = {"status": "error", "error": {"code": "Conflict", "message": "Slot taken"}}
        client, _ = make_client(lambda request: httpx.Response(409, json=body))
        async with client:
            with pytest.raises(ConflictError) as exc_info:
                await client.create_reservation({})
        assert exc_info.value.message == "Cal.com API conflict: Slot taken"
        assert exc_info.value.details == body

    @pytest.mark.asyncio
    async def test_flat_error_message(self):
        client, _ = make_client(
            lambda request: httpx.Response(401, json={"message": "Invalid API key"})
        )
        async with client:
            with pytest.raises(AuthenticationError) as exc_info:
                await client.check_auth()
        assert exc_info.value.message.endswith("Invalid API key")

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        client, _ = make_client(lambda request: httpx.Response(502, text="Bad Gateway"))
        async with client:
            with pytest.raises(UpstreamServerError) as exc_info:
                await client.fetch_slots("123")
        assert exc_info.value.details == "Bad Gateway"

    @pytest.mark.asyncio
    async def test_rate_limit_retry_after(self):
        client, _ = make_client(
            lambda request: httpx.Response(429, json={}, headers={"Retry-After": "30"})
        )
        async with client:
            with pytest.raises(RateLimitError) as exc_info:
                await client.fetch_slots("123")
        assert exc_info.value.retry_after == 30

    @pytest.mark.asyncio
    async def test_network_error(self):
        def fail(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = make_client(fail)
        async with client:
            with pytest.raises(NetworkError) as exc_info:
                await client.fetch_slots("123")
        assert exc_info.value.status_code is None
        assert "network error" in exc_info.value.message


# ── validate_connection ────────────────────────────────────────────


class TestValidateConnection:
    @pytest.mark.asyncio
    async def test_connected(self):
        client, seen = make_client(lambda request: httpx.Response(200, json={"data": {"id": 1}}))
        async with client:
            assert await client.validate_connection(correlation_id="health-1") is True
        assert seen[0].url.path == "/v2/me"

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        client, _ = make_client(lambda request: httpx.Response(401, json={}))
        async with client:
            assert await client.validate_connection() is False
