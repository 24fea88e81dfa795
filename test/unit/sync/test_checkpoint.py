"""Unit tests for the reconciliation checkpoint store."""

from __future__ import annotations

from contextlib import closing

from sync.checkpoint import Checkpoint, advance_checkpoint, load_checkpoint


def test_load_checkpoint_defaults_to_full_scan(sqlite_session_factory) -> None:
    """A missing checkpoint means scanning from the beginning."""
    with closing(sqlite_session_factory()) as session:
        assert load_checkpoint(session) == Checkpoint(event_id=None, creation_time=0.0)


def test_advance_checkpoint_creates_then_updates(sqlite_session_factory) -> None:
    """Advancing stores the event id and its creation time."""
    with closing(sqlite_session_factory()) as session:
        advance_checkpoint(session, "evt_1", 100.0)
        session.commit()
    with closing(sqlite_session_factory()) as session:
        advance_checkpoint(session, "evt_2", 200.0)
        session.commit()
    with closing(sqlite_session_factory()) as session:
        assert load_checkpoint(session) == Checkpoint(event_id="evt_2", creation_time=200.0)


def test_advance_checkpoint_never_regresses_creation_time(sqlite_session_factory) -> None:
    """An older candidate leaves both the id and the creation time in place."""
    with closing(sqlite_session_factory()) as session:
        advance_checkpoint(session, "evt_2", 200.0)
        session.commit()
    with closing(sqlite_session_factory()) as session:
        checkpoint = advance_checkpoint(session, "evt_3", 150.0)
        session.commit()
    assert checkpoint.event_id == "evt_2"
    assert checkpoint.creation_time == 200.0
