"""Pydantic models for the local slots/booking contract.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from slotproxy.dates import parse_instant

# IANA-shaped zone name: "UTC", "EST5EDT", "America/New_York", "America/Argentina/Buenos_Aires", "Etc/GMT+5"
TIMEZONE_PATTERN = re.compile(r"^[A-Za-z0-9_+\-]+(/[A-Za-z0-9_+\-]+)*$")

ReservationStatus = Literal["confirmed", "pending", "cancelled"]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_iso(value: Optional[str], label: str) -> Optional[str]:
    if value is None:
        return value
    try:
        parse_instant(value)
    except ValueError:
        raise ValueError(f"{label} must be a valid ISO 8601 date") from None
    return value


def _check_timezone(value: Optional[str], label: str) -> Optional[str]:
    if value is not None and not TIMEZONE_PATTERN.match(value):
        raise ValueError(f'{label} must be in format like "America/New_York"')
    return value


def _check_order(start: Optional[str], end: Optional[str], label: str) -> None:
    if start and end and parse_instant(end) <= parse_instant(start):
        raise ValueError(f"End {label} must be after start {label}")


def _event_type_to_str(value: Any) -> Any:
    # JSON clients commonly send the numeric id Cal.com uses.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


EventTypeId = Annotated[str, BeforeValidator(_event_type_to_str), Field(min_length=1)]


# ── Requests ────────────────────────────────────────────────────────


class AvailableSlotsQuery(WireModel):
    """Query string of ``GET /api/slots/available``."""

    event_type_id: EventTypeId
    start: Optional[str] = None
    end: Optional[str] = None
    timezone: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def _iso(cls, value, info):
        return _check_iso(value, f"{info.field_name.capitalize()} date")

    @field_validator("timezone")
    @classmethod
    def _zone(cls, value):
        return _check_timezone(value, "Timezone")

    @model_validator(mode="after")
    def _ordered(self):
        _check_order(self.start, self.end, "date")
        return self


class Attendee(WireModel):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    timezone: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def _zone(cls, value):
        return _check_timezone(value, "Attendee timezone")


class ReservationRequest(WireModel):
    """Body of ``POST /api/slots/reserve``."""

    event_type_id: EventTypeId
    start: str
    end: str
    attendee: Attendee
    metadata: Optional[dict[str, Any]] = None

    @field_validator("start", "end")
    @classmethod
    def _iso(cls, value, info):
        return _check_iso(value, f"{info.field_name.capitalize()} time")

    @model_validator(mode="after")
    def _ordered(self):
        _check_order(self.start, self.end, "time")
        return self


class AttendeeUpdate(WireModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None


class UpdateRequest(WireModel):
    """Body of ``PUT /api/slots/{reservationId}``; every field optional."""

    start: Optional[str] = None
    end: Optional[str] = None
    attendee: Optional[AttendeeUpdate] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("start", "end")
    @classmethod
    def _iso(cls, value, info):
        return _check_iso(value, f"{info.field_name.capitalize()} time")

    @model_validator(mode="after")
    def _ordered(self):
        _check_order(self.start, self.end, "time")
        return self


# ── Responses ───────────────────────────────────────────────────────


class SlotOut(WireModel):
    start: str
    end: str
    available: bool


class DateRange(WireModel):
    start: str
    end: str


class SlotsResponse(WireModel):
    slots: list[SlotOut]
    event_type_id: str
    date_range: DateRange


class EventDetails(WireModel):
    start: str
    end: str
    event_type_id: str


class AttendeeOut(WireModel):
    name: str
    email: str


class ReservationResult(WireModel):
    """Result returned after a booking is created or updated."""

    model_config = ConfigDict(frozen=True)

    reservation_id: str
    status: ReservationStatus
    event_details: EventDetails
    attendee: AttendeeOut


class DateResponse(WireModel):
    current_date: str
    timestamp: int
    timezone: Optional[str] = None
    utc_date: str


class HealthResponse(WireModel):
    status: str
    timestamp: str
