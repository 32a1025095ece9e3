"""Timezone-aware date formatting and default query windows.

All instants are handled as aware ``datetime`` objects; naive values are
assumed to be UTC.  Two renderings are used on the wire:

* ``format_utc``         -> ``2023-12-01T10:00:00.000Z``
* ``format_in_timezone`` -> ``2023-12-01T05:00:00-05:00``
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

log = logging.getLogger("slotproxy.dates")

DEFAULT_WINDOW_DAYS = 15
BUSINESS_WINDOW_DAYS = 14
BUSINESS_DAY_START = time(9, 0)
BUSINESS_DAY_END = time(17, 0)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class TimeWindow:
    """A ``[start, end)`` query window, already rendered for the upstream."""

    start: str
    end: str


def now() -> datetime:
    """Current instant in UTC."""
    return datetime.now(tz=timezone.utc)


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def epoch_millis(instant: datetime) -> int:
    return (_as_utc(instant) - _EPOCH) // timedelta(milliseconds=1)


def parse_instant(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted) into an aware datetime.

    Raises ValueError for anything that is not an ISO-8601 date/time.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Not an ISO 8601 timestamp: {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_valid_timezone(name: Optional[str]) -> bool:
    """True iff ``name`` is a loadable IANA timezone identifier."""
    if not name or not isinstance(name, str):
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False
    return True


def format_utc(instant: datetime) -> str:
    """Render ``instant`` as ``YYYY-MM-DDTHH:mm:ss.sssZ``."""
    utc = _as_utc(instant)
    return f"{utc.strftime('%Y-%m-%dT%H:%M:%S')}.{utc.microsecond // 1000:03d}Z"


def format_in_timezone(instant: datetime, tz_name: str) -> str:
    """Render ``instant`` as ``YYYY-MM-DDTHH:mm:ss±HH:MM`` in ``tz_name``.

    Falls back to the UTC rendering when the zone cannot be applied.
    """
    try:
        local = _as_utc(instant).astimezone(ZoneInfo(tz_name))
        offset = local.strftime("%z")
        return f"{local.strftime('%Y-%m-%dT%H:%M:%S')}{offset[:3]}:{offset[3:5]}"
    except Exception as exc:
        log.error("Error formatting date in timezone %r: %s", tz_name, exc)
        return format_utc(instant)


def render_like_source(instant: datetime, zulu: bool = False) -> str:
    """Render ``instant`` keeping its own offset.

    With ``zulu`` the instant is written in UTC with a ``Z`` suffix.
    Milliseconds are only written when the instant has a sub-second part.
    """
    timespec = "milliseconds" if instant.microsecond else "seconds"
    if zulu:
        return _as_utc(instant).replace(tzinfo=None).isoformat(timespec=timespec) + "Z"
    return instant.isoformat(timespec=timespec)


def shift_timestamp(value: str, minutes: int) -> str:
    """Return the ISO timestamp ``minutes`` after ``value``, written the same way.

    ``Z`` stays ``Z`` and a numeric offset (``+00:00`` included) is kept.
    """
    shifted = parse_instant(value) + timedelta(minutes=minutes)
    return render_like_source(shifted, zulu=value.strip().endswith(("Z", "z")))


def compute_default_window(current: datetime, tz_name: Optional[str] = None) -> TimeWindow:
    """Default slot search window.

    Without a timezone: ``[now, now + 15 days]`` in UTC.  With a valid
    timezone: business hours, today 09:00 local through 17:00 local
    fourteen days out.  An invalid timezone degrades to the UTC window.
    """
    if tz_name:
        if is_valid_timezone(tz_name):
            zone = ZoneInfo(tz_name)
            today = _as_utc(current).astimezone(zone).date()
            start = datetime.combine(today, BUSINESS_DAY_START, tzinfo=zone)
            end = datetime.combine(
                today + timedelta(days=BUSINESS_WINDOW_DAYS), BUSINESS_DAY_END, tzinfo=zone
            )
            return TimeWindow(
                start=format_in_timezone(start, tz_name),
                end=format_in_timezone(end, tz_name),
            )
        log.warning("Invalid timezone %r for default window, falling back to UTC", tz_name)

    start = _as_utc(current)
    return TimeWindow(
        start=format_utc(start),
        end=format_utc(start + timedelta(days=DEFAULT_WINDOW_DAYS)),
    )


def resolve_window(
    start: Optional[str],
    end: Optional[str],
    tz_name: Optional[str] = None,
    current: Optional[datetime] = None,
) -> TimeWindow:
    """Fill whichever ends the caller left out; explicit values always win.

    A missing end is measured from the caller's start, and a missing start
    is moved back when the default one would not precede the caller's end,
    so the result always satisfies ``end > start``.
    """
    if start and end:
        return TimeWindow(start=start, end=end)
    if start:
        anchored = compute_default_window(parse_instant(start), tz_name)
        return TimeWindow(start=start, end=anchored.end)

    default = compute_default_window(current or now(), tz_name)
    if not end:
        return default

    end_instant = parse_instant(end)
    if parse_instant(default.start) < end_instant:
        return TimeWindow(start=default.start, end=end)
    earlier = end_instant - timedelta(days=DEFAULT_WINDOW_DAYS)
    if tz_name and is_valid_timezone(tz_name):
        return TimeWindow(start=format_in_timezone(earlier, tz_name), end=end)
    return TimeWindow(start=format_utc(earlier), end=end)
