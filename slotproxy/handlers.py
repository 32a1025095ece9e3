"""Request handlers: validate, fill defaults, call the provider, reshape.

Each handler receives already-validated pydantic models.  Upstream
failures arrive as ``UpstreamError`` variants and are translated into
``ApiError`` by exception type, per operation.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import ValidationError

from slotproxy.calendar_providers.base import BookingProvider
from slotproxy.dates import (
    epoch_millis,
    format_in_timezone,
    format_utc,
    is_valid_timezone,
    now,
    resolve_window,
)
from slotproxy.errors import (
    ApiError,
    AuthenticationError,
    ConflictError,
    ErrorCode,
    NotFoundError,
    RateLimitError,
    UpstreamError,
)
from slotproxy.models.booking import (
    AttendeeOut,
    AvailableSlotsQuery,
    DateRange,
    DateResponse,
    EventDetails,
    ReservationRequest,
    ReservationResult,
    SlotOut,
    SlotsResponse,
    UpdateRequest,
)
from slotproxy.slots import count_available, extract_slot_map, normalize_slots
from slotproxy.tracing import correlated

log = logging.getLogger("slotproxy.handlers")

_STATUS_MAP = {
    "success": "confirmed",
    "accepted": "confirmed",
    "confirmed": "confirmed",
    "pending": "pending",
    "cancelled": "cancelled",
    "rejected": "cancelled",
}

# (exception type, status, code, message); first isinstance match wins.
_SLOTS_ERRORS = [
    (AuthenticationError, 401, ErrorCode.AUTHENTICATION_ERROR, "Authentication failed"),
    (NotFoundError, 404, ErrorCode.EVENT_TYPE_NOT_FOUND, "Event type not found"),
]
_RESERVE_ERRORS = [
    (ConflictError, 409, ErrorCode.SLOT_UNAVAILABLE, "The requested slot is no longer available"),
    (AuthenticationError, 401, ErrorCode.AUTHENTICATION_ERROR, "Authentication failed"),
    (NotFoundError, 404, ErrorCode.EVENT_TYPE_NOT_FOUND, "Event type not found"),
]
_UPDATE_ERRORS = [
    (NotFoundError, 404, ErrorCode.RESERVATION_NOT_FOUND, "Reservation not found"),
    (AuthenticationError, 401, ErrorCode.AUTHENTICATION_ERROR, "Authentication failed"),
    (ConflictError, 409, ErrorCode.UPDATE_CONFLICT, "Update conflict - slot may no longer be available"),
]


def map_status(upstream_status: Optional[str]) -> str:
    """Map a Cal.com booking status onto confirmed/pending/cancelled."""
    return _STATUS_MAP.get((upstream_status or "").lower(), "pending")


def translate_upstream_error(exc: UpstreamError, table: list, fallback_message: str) -> ApiError:
    if isinstance(exc, RateLimitError):
        details: dict[str, Any] = {"message": exc.message}
        headers = {}
        if exc.retry_after is not None:
            details["retryAfter"] = exc.retry_after
            headers["Retry-After"] = str(exc.retry_after)
        return ApiError(
            429, ErrorCode.RATE_LIMIT_EXCEEDED, "Rate limit exceeded", details, headers
        )
    for exc_type, status, code, message in table:
        if isinstance(exc, exc_type):
            return ApiError(status, code, message, exc.message)
    return ApiError(500, ErrorCode.INTERNAL_SERVER_ERROR, fallback_message, exc.message)


def _unexpected_reply(clog, exc: ValidationError, message: str) -> ApiError:
    """Error for a 2xx booking reply that does not fit ``ReservationResult``."""
    clog.error("%s: unexpected Cal.com response shape: %s", message, exc)
    return ApiError(
        500,
        ErrorCode.INTERNAL_SERVER_ERROR,
        message,
        "Unexpected response from Cal.com",
    )


def _booking_record(payload: Any) -> dict:
    """Cal.com v2 wraps the booking in ``data``; older shapes are flat."""
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict):
            return data
        return payload
    return {}


def _first(record: Any, *keys: str) -> Any:
    if not isinstance(record, dict):
        return None
    for key in keys:
        value = record.get(key)
        if value not in (None, ""):
            return value
    return None


def _first_attendee(record: dict) -> dict:
    attendees = record.get("attendees")
    if isinstance(attendees, list) and attendees and isinstance(attendees[0], dict):
        return attendees[0]
    return {}


def get_current_date(tz_name: Optional[str] = None, correlation_id: Optional[str] = None) -> DateResponse:
    """Current instant in UTC, plus in ``tz_name`` when it is a valid zone."""
    clog = correlated(log, correlation_id)
    current = now()
    utc_date = format_utc(current)
    formatted = utc_date
    used_timezone = None

    if tz_name:
        if is_valid_timezone(tz_name):
            formatted = format_in_timezone(current, tz_name)
            used_timezone = tz_name
        else:
            clog.warning("Invalid timezone provided, falling back to UTC: %r", tz_name)

    response = DateResponse(
        current_date=formatted,
        timestamp=epoch_millis(current),
        timezone=used_timezone,
        utc_date=utc_date,
    )
    clog.info("Generated date response (timezone=%s)", used_timezone or "UTC")
    return response


class SlotsService:
    """Orchestrates slot listing and booking against a BookingProvider."""

    def __init__(self, provider: BookingProvider, slot_duration_minutes: int = 15) -> None:
        self._provider = provider
        self._slot_duration = slot_duration_minutes

    async def get_available_slots(
        self, query: AvailableSlotsQuery, correlation_id: Optional[str] = None
    ) -> SlotsResponse:
        clog = correlated(log, correlation_id)
        window = resolve_window(query.start, query.end, query.timezone)
        clog.info(
            "Processing available slots request (eventTypeId=%s, %s → %s, timezone=%s)",
            query.event_type_id, window.start, window.end, query.timezone,
        )

        try:
            payload = await self._provider.fetch_slots(
                query.event_type_id,
                start=window.start,
                end=window.end,
                timezone=query.timezone,
                correlation_id=correlation_id,
            )
        except UpstreamError as exc:
            clog.error("Failed to retrieve available slots: %s", exc)
            raise translate_upstream_error(
                exc, _SLOTS_ERRORS, "Failed to retrieve available slots"
            ) from exc

        slots = normalize_slots(extract_slot_map(payload), self._slot_duration)
        clog.info(
            "Returning %d slots (%d available) for eventTypeId=%s",
            len(slots), count_available(slots), query.event_type_id,
        )
        return SlotsResponse(
            slots=[SlotOut(**slot.to_dict()) for slot in slots],
            event_type_id=query.event_type_id,
            date_range=DateRange(start=window.start, end=window.end),
        )

    async def reserve_slot(
        self, request: ReservationRequest, correlation_id: Optional[str] = None
    ) -> ReservationResult:
        clog = correlated(log, correlation_id)
        clog.info(
            "Processing reserve slot request (eventTypeId=%s, start=%s)",
            request.event_type_id, request.start,
        )

        attendee: dict[str, Any] = {
            "name": request.attendee.name,
            "email": request.attendee.email,
            "timeZone": request.attendee.timezone or "UTC",
        }
        event_type_id: Any = request.event_type_id
        if event_type_id.isdigit():
            event_type_id = int(event_type_id)
        payload: dict[str, Any] = {
            "eventTypeId": event_type_id,
            "start": request.start,
            "attendee": attendee,
        }
        if request.metadata:
            payload["metadata"] = request.metadata

        try:
            response = await self._provider.create_reservation(
                payload, correlation_id=correlation_id
            )
        except UpstreamError as exc:
            clog.error("Failed to reserve slot: %s", exc)
            raise translate_upstream_error(exc, _RESERVE_ERRORS, "Failed to reserve slot") from exc

        record = _booking_record(response)
        booked = _first_attendee(record)
        try:
            result = ReservationResult(
                reservation_id=str(_first(record, "uid", "reservationUid", "id") or ""),
                status=map_status(_first(record, "status") or _first(response, "status")),
                event_details=EventDetails(
                    start=_first(record, "start", "startTime", "slotStart") or request.start,
                    end=_first(record, "end", "endTime", "slotEnd") or request.end,
                    event_type_id=request.event_type_id,
                ),
                attendee=AttendeeOut(
                    name=booked.get("name") or request.attendee.name,
                    email=booked.get("email") or request.attendee.email,
                ),
            )
        except ValidationError as exc:
            raise _unexpected_reply(clog, exc, "Failed to reserve slot") from exc
        clog.info(
            "Reserved slot %s (status=%s)", result.reservation_id, result.status
        )
        return result

    async def update_slot(
        self,
        reservation_id: str,
        request: UpdateRequest,
        correlation_id: Optional[str] = None,
    ) -> ReservationResult:
        clog = correlated(log, correlation_id)
        clog.info("Processing update slot request (reservationId=%s)", reservation_id)

        payload: dict[str, Any] = {}
        if request.start:
            payload["start"] = request.start
        if request.end:
            payload["end"] = request.end

        responses: dict[str, Any] = {}
        if request.attendee:
            if request.attendee.name:
                responses["name"] = request.attendee.name
            if request.attendee.email:
                responses["email"] = request.attendee.email
        if request.metadata:
            payload["metadata"] = request.metadata
            for key in ("location", "notes"):
                if request.metadata.get(key):
                    responses[key] = request.metadata[key]
        if responses:
            payload["responses"] = responses

        try:
            response = await self._provider.patch_reservation(
                reservation_id, payload, correlation_id=correlation_id
            )
        except UpstreamError as exc:
            clog.error("Failed to update reservation %s: %s", reservation_id, exc)
            raise translate_upstream_error(exc, _UPDATE_ERRORS, "Failed to update slot") from exc

        record = _booking_record(response)
        booked = _first_attendee(record)
        requested = request.attendee
        event_type_id = _first(record, "eventTypeId")
        try:
            result = ReservationResult(
                reservation_id=str(_first(record, "uid", "reservationUid") or reservation_id),
                status=map_status(_first(record, "status") or _first(response, "status")),
                event_details=EventDetails(
                    start=_first(record, "start", "startTime", "slotStart") or request.start or "",
                    end=_first(record, "end", "endTime", "slotEnd") or request.end or "",
                    event_type_id=str(event_type_id) if event_type_id is not None else "",
                ),
                attendee=AttendeeOut(
                    name=booked.get("name") or (requested.name if requested else None) or "",
                    email=booked.get("email") or (requested.email if requested else None) or "",
                ),
            )
        except ValidationError as exc:
            raise _unexpected_reply(clog, exc, "Failed to update slot") from exc
        clog.info("Updated reservation %s (status=%s)", result.reservation_id, result.status)
        return result

    async def cancel_slot(
        self, reservation_id: str, correlation_id: Optional[str] = None
    ) -> None:
        correlated(log, correlation_id).warning(
            "Cancel requested for %s but cancellation is not supported", reservation_id
        )
        raise ApiError(
            501,
            ErrorCode.NOT_IMPLEMENTED,
            "Cancelling reservations is not implemented",
            {"reservationId": reservation_id},
        )
