"""Data models for the slots/booking API."""

from .booking import (
    AvailableSlotsQuery,
    DateResponse,
    HealthResponse,
    ReservationRequest,
    ReservationResult,
    SlotsResponse,
    UpdateRequest,
)

__all__ = [
    "AvailableSlotsQuery",
    "DateResponse",
    "HealthResponse",
    "ReservationRequest",
    "ReservationResult",
    "SlotsResponse",
    "UpdateRequest",
]
