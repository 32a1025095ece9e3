"""Flatten Cal.com's date-grouped slot map into a single ordered list.

Cal.com answers ``GET /v2/slots/available`` with::

    {"data": {"slots": {"2023-12-01": [{"time": "...", "bookingUid": "..."}]}}}

Date keys are walked in the order the upstream emitted them (it already
sends them chronologically) and every record becomes exactly one
``Slot``.  A malformed date bucket is skipped, never fatal.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from slotproxy.dates import shift_timestamp

log = logging.getLogger("slotproxy.slots")


@dataclass(frozen=True)
class Slot:
    """A candidate start time paired with its availability."""

    start: str
    end: str
    available: bool

    def to_dict(self) -> dict:
        return asdict(self)


def extract_slot_map(payload: Any) -> dict:
    """Pull ``data.slots`` out of an upstream response, ``{}`` when absent."""
    if not isinstance(payload, Mapping):
        return {}
    data = payload.get("data")
    if not isinstance(data, Mapping):
        return {}
    slots = data.get("slots")
    return dict(slots) if isinstance(slots, Mapping) else {}


def normalize_slots(slots_by_date: Any, duration_minutes: int) -> list[Slot]:
    """Turn ``{date: [record, ...]}`` into a flat list of ``Slot``.

    Args:
        slots_by_date: Upstream mapping of calendar date to slot records.
        duration_minutes: Fixed slot length used to derive ``end``.

    Returns:
        One ``Slot`` per well-formed record, in upstream order.
    """
    slots: list[Slot] = []
    if not isinstance(slots_by_date, Mapping):
        log.warning("Expected a date-keyed slot map, got %s", type(slots_by_date).__name__)
        return slots

    for date_key, bucket in slots_by_date.items():
        if not isinstance(bucket, (list, tuple)):
            log.warning(
                "Skipping malformed slot bucket for %s (%s)", date_key, type(bucket).__name__
            )
            continue

        for record in bucket:
            start = None
            if isinstance(record, Mapping):
                start = record.get("time") or record.get("start")
            if not isinstance(start, str):
                log.warning("Skipping slot record without a start time on %s", date_key)
                continue
            try:
                end = shift_timestamp(start, duration_minutes)
            except ValueError:
                log.warning("Skipping slot with unparseable start %r on %s", start, date_key)
                continue
            slots.append(
                Slot(start=start, end=end, available=not record.get("bookingUid"))
            )

    return slots


def count_available(slots: list[Slot]) -> int:
    return sum(1 for slot in slots if slot.available)
