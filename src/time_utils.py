"""Time helpers for UTC timestamps and event creation times."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Convert a datetime to UTC, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso8601(value: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC string with millisecond precision."""
    return to_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def range_start(hours: int, *, now: datetime | None = None) -> str:
    """Return the ISO-8601 start of a lookback window ending at ``now``."""
    reference = to_utc(now) if now is not None else utc_now()
    return to_iso8601(reference - timedelta(hours=hours))


def creation_time_ms() -> float:
    """Return the current wall clock in epoch milliseconds."""
    return time.time() * 1000.0
