"""Booking provider abstractions and implementations."""

from .base import BookingProvider
from .calcom import CalComClient

__all__ = ["BookingProvider", "CalComClient"]
