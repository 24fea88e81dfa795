"""Append-only event log used for deduplication and the live cursor."""

from __future__ import annotations

from typing import Iterable

from sqlalchemy.orm import Session

from models import SyncEvent
from sync.schema import FeedEvent
from time_utils import creation_time_ms


def event_exists(session: Session, event_id: str) -> bool:
    """Return True when the upstream event id has already been recorded."""
    return (
        session.query(SyncEvent.id).filter(SyncEvent.event_id == event_id).first()
        is not None
    )


def record_event(
    session: Session,
    event: FeedEvent,
    *,
    creation_time: float | None = None,
) -> SyncEvent:
    """Insert the event record and flush so the unique constraint is enforced now.

    Raises:
        sqlalchemy.exc.IntegrityError: If another unit of work recorded the
            same event id first.
    """
    record = SyncEvent(
        event_id=event.id,
        event_type=event.event_type,
        recorded_updated_at=event.updated_at,
        creation_time=creation_time if creation_time is not None else creation_time_ms(),
    )
    session.add(record)
    session.flush()
    return record


def latest_event_id(session: Session) -> str | None:
    """Return the most recently inserted event id, which is the live cursor."""
    row = session.query(SyncEvent.event_id).order_by(SyncEvent.id.desc()).first()
    return row.event_id if row is not None else None


def get_creation_time(session: Session, event_id: str) -> float | None:
    """Return the local creation time of a recorded event."""
    row = (
        session.query(SyncEvent.creation_time).filter(SyncEvent.event_id == event_id).first()
    )
    return row.creation_time if row is not None else None


def find_missing_event_ids(
    session: Session,
    event_ids: Iterable[str],
    *,
    after_creation_time: float,
) -> set[str]:
    """Return the ids absent among events recorded after ``after_creation_time``.

    Events recorded at or before that time are covered by the reconciliation
    checkpoint and are not scanned.
    """
    candidates = {event_id for event_id in event_ids}
    if not candidates:
        return set()
    rows = (
        session.query(SyncEvent.event_id)
        .filter(
            SyncEvent.creation_time > after_creation_time,
            SyncEvent.event_id.in_(candidates),
        )
        .all()
    )
    return candidates - {row.event_id for row in rows}
