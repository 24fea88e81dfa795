"""Shared constants for event ingestion and reconciliation."""

from __future__ import annotations

from enum import Enum
from typing import Sequence


class EventType(str, Enum):
    """Upstream event kinds that mutate the user mirror."""

    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"

    @classmethod
    def parse(cls, value: str) -> "EventType | None":
        """Return the matching event type, or None for kinds the mirror ignores."""
        try:
            return cls(value)
        except ValueError:
            return None


DEFAULT_EVENT_TYPES: Sequence[str] = tuple(member.value for member in EventType)
"""Event types always requested from the feed."""

DEFAULT_INITIAL_RANGE_HOURS = 168
"""Lookback window for the very first live run (seven days)."""

BACKFILL_CHECKPOINT_KEY = "backfill"
"""Primary key of the singleton reconciliation checkpoint row."""

INGEST_SLOT = "ingest"
"""Run slot name owned by the live puller."""

DEBUG_LOG_LEVEL = "DEBUG"

INGEST_TASK = "sync.ingest"
BACKFILL_TASK = "sync.backfill"


def merge_event_types(extra: Sequence[str] | None) -> tuple[str, ...]:
    """Combine the default allow-list with caller-supplied types, keeping order."""
    merged: list[str] = list(DEFAULT_EVENT_TYPES)
    for event_type in extra or ():
        if event_type not in merged:
            merged.append(event_type)
    return tuple(merged)
