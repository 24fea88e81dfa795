"""Reconciliation checkpoint storage."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from models import SyncCheckpoint
from sync.constants import BACKFILL_CHECKPOINT_KEY


@dataclass(frozen=True)
class Checkpoint:
    """Last verified event id and its local creation time."""

    event_id: str | None
    creation_time: float

    @classmethod
    def empty(cls) -> "Checkpoint":
        """Return the checkpoint used when no reconciliation has completed."""
        return cls(event_id=None, creation_time=0.0)


def load_checkpoint(session: Session, key: str = BACKFILL_CHECKPOINT_KEY) -> Checkpoint:
    """Return the stored checkpoint or the empty checkpoint."""
    row = session.get(SyncCheckpoint, key)
    if row is None:
        return Checkpoint.empty()
    return Checkpoint(event_id=row.event_id, creation_time=row.creation_time)


def advance_checkpoint(
    session: Session,
    event_id: str,
    creation_time: float,
    *,
    key: str = BACKFILL_CHECKPOINT_KEY,
    now: datetime | None = None,
) -> Checkpoint:
    """Move the checkpoint to ``event_id`` unless it was recorded before the stored one.

    The id and creation time always move together, so an older candidate leaves
    the checkpoint where it is and the next pass rescans from there.
    """
    timestamp = now or datetime.now(timezone.utc)
    row = session.get(SyncCheckpoint, key, with_for_update=True)
    if row is None:
        row = SyncCheckpoint(
            key=key,
            event_id=event_id,
            creation_time=creation_time,
            updated_at=timestamp,
        )
        session.add(row)
    elif creation_time >= row.creation_time:
        row.event_id = event_id
        row.creation_time = creation_time
        row.updated_at = timestamp
    session.flush()
    return Checkpoint(event_id=row.event_id, creation_time=row.creation_time)
