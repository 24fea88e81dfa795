"""Unit tests for the idempotent event applier."""

from __future__ import annotations

from contextlib import closing
import logging

import pytest

from config import HandlerFailurePolicy
from feed_stub import make_event, user_payload
from models import SyncEvent, User
from sync import event_store
from sync.applier import EventApplier
from sync.entrypoints import get_user
from sync.errors import EventHandlerFailed
from sync.schema import ApplyOutcome, EventNotification, MirrorAction, SyncOptions

T0 = "2026-03-01T10:00:00.000Z"
T1 = "2026-03-01T11:00:00.000Z"
T2 = "2026-03-01T12:00:00.000Z"


def _event_count(session_factory, event_id: str | None = None) -> int:
    with closing(session_factory()) as session:
        query = session.query(SyncEvent)
        if event_id is not None:
            query = query.filter(SyncEvent.event_id == event_id)
        return query.count()


def _created(event_id: str = "evt_created", user_id: str = "user_1", updated_at: str = T0):
    return make_event(event_id, "user.created", user_payload(user_id, updated_at))


def test_created_event_inserts_user(sqlite_session_factory) -> None:
    """A created event records the event and inserts the mirror row."""
    applier = EventApplier(sqlite_session_factory)

    result = applier.apply(_created(), SyncOptions())

    assert result.outcome is ApplyOutcome.APPLIED
    assert result.mirror_action is MirrorAction.INSERTED
    record = get_user("user_1", session_factory=sqlite_session_factory)
    assert record is not None
    assert record.email == "user_1@example.com"
    assert record.updated_at == T0


@pytest.mark.parametrize(
    ("event_type", "data"),
    [
        ("user.created", user_payload("user_2", T1)),
        ("user.updated", user_payload("user_1", T1, first_name="Grace")),
        ("user.deleted", user_payload("user_1", T1)),
    ],
)
def test_applying_same_event_twice_is_a_no_op(sqlite_session_factory, event_type, data) -> None:
    """The second application of an event id changes nothing."""
    applier = EventApplier(sqlite_session_factory)
    applier.apply(_created(), SyncOptions())
    event = make_event("evt_twice", event_type, data)

    first = applier.apply(event, SyncOptions())
    with closing(sqlite_session_factory()) as session:
        snapshot = sorted((user.id, user.updated_at, user.first_name) for user in session.query(User))
    second = applier.apply(event, SyncOptions())

    assert first.outcome is ApplyOutcome.APPLIED
    assert second.outcome is ApplyOutcome.DUPLICATE
    assert _event_count(sqlite_session_factory, "evt_twice") == 1
    with closing(sqlite_session_factory()) as session:
        after = sorted((user.id, user.updated_at, user.first_name) for user in session.query(User))
    assert after == snapshot


@pytest.mark.parametrize("order", [("evt_1", "evt_2"), ("evt_2", "evt_1")])
def test_last_writer_wins_regardless_of_order(sqlite_session_factory, order) -> None:
    """The update with the newer timestamp prevails in either arrival order."""
    applier = EventApplier(sqlite_session_factory)
    applier.apply(_created(), SyncOptions())
    updates = {
        "evt_1": make_event("evt_1", "user.updated", user_payload("user_1", T1, first_name="One")),
        "evt_2": make_event("evt_2", "user.updated", user_payload("user_1", T2, first_name="Two")),
    }

    results = [applier.apply(updates[event_id], SyncOptions()) for event_id in order]

    record = get_user("user_1", session_factory=sqlite_session_factory)
    assert record.first_name == "Two"
    assert record.updated_at == T2
    if order[0] == "evt_2":
        assert results[1].mirror_action is MirrorAction.SKIPPED_STALE
    assert _event_count(sqlite_session_factory) == 3


def test_update_with_equal_timestamp_is_stale(sqlite_session_factory, caplog) -> None:
    """An update that is not strictly newer is recorded but not applied."""
    applier = EventApplier(sqlite_session_factory)
    applier.apply(_created(updated_at=T1), SyncOptions())
    caplog.set_level(logging.WARNING, logger="sync.applier")

    result = applier.apply(
        make_event("evt_same", "user.updated", user_payload("user_1", T1, first_name="Same")),
        SyncOptions(),
    )

    assert result.mirror_action is MirrorAction.SKIPPED_STALE
    assert get_user("user_1", session_factory=sqlite_session_factory).first_name == "Ada"
    assert "user already updated for event evt_same" in caplog.text


def test_created_for_existing_user_is_not_overwritten(sqlite_session_factory, caplog) -> None:
    """A second created event for the same user leaves the row alone."""
    applier = EventApplier(sqlite_session_factory)
    applier.apply(_created(), SyncOptions())
    caplog.set_level(logging.WARNING, logger="sync.applier")

    result = applier.apply(
        make_event("evt_again", "user.created", user_payload("user_1", T2, first_name="New")),
        SyncOptions(),
    )

    assert result.mirror_action is MirrorAction.SKIPPED_EXISTS
    assert get_user("user_1", session_factory=sqlite_session_factory).first_name == "Ada"
    assert "user already exists user_1" in caplog.text


def test_update_before_create_reports_error_and_continues(sqlite_session_factory, caplog) -> None:
    """An update for an unknown user is recorded, reported, and not applied."""
    applier = EventApplier(sqlite_session_factory)
    caplog.set_level(logging.WARNING, logger="sync.applier")

    result = applier.apply(
        make_event("evt_update", "user.updated", user_payload("user_1", "t0")),
        SyncOptions(create_user_on_update=False),
    )

    assert result.outcome is ApplyOutcome.APPLIED
    assert result.mirror_action is MirrorAction.SKIPPED_MISSING
    assert get_user("user_1", session_factory=sqlite_session_factory) is None
    assert _event_count(sqlite_session_factory, "evt_update") == 1
    assert any(record.levelno == logging.ERROR for record in caplog.records)

    follow_up = applier.apply(_created(updated_at="t1"), SyncOptions())
    assert follow_up.mirror_action is MirrorAction.INSERTED


def test_update_before_create_can_create_user(sqlite_session_factory) -> None:
    """With create_user_on_update the missing user is created from the update."""
    applier = EventApplier(sqlite_session_factory)

    result = applier.apply(
        make_event("evt_update", "user.updated", user_payload("user_1", T1, first_name="Late")),
        SyncOptions(create_user_on_update=True),
    )

    assert result.mirror_action is MirrorAction.INSERTED
    assert get_user("user_1", session_factory=sqlite_session_factory).first_name == "Late"


def test_delete_removes_user_and_missing_delete_warns(sqlite_session_factory, caplog) -> None:
    """Deletes remove the row; deleting an unknown user only warns."""
    applier = EventApplier(sqlite_session_factory)
    applier.apply(_created(), SyncOptions())
    caplog.set_level(logging.WARNING, logger="sync.applier")

    removed = applier.apply(
        make_event("evt_delete", "user.deleted", user_payload("user_1", T1)), SyncOptions()
    )
    missing = applier.apply(
        make_event("evt_delete_2", "user.deleted", user_payload("user_9", T1)), SyncOptions()
    )

    assert removed.mirror_action is MirrorAction.DELETED
    assert missing.mirror_action is MirrorAction.SKIPPED_MISSING
    assert get_user("user_1", session_factory=sqlite_session_factory) is None
    assert "user not found user_9" in caplog.text
    assert all(record.levelno < logging.ERROR for record in caplog.records)


def test_unknown_event_type_is_recorded_and_ignored(sqlite_session_factory) -> None:
    """Unrecognized kinds are recorded for dedup but leave the mirror untouched."""
    applier = EventApplier(sqlite_session_factory)

    result = applier.apply(
        make_event("evt_org", "organization.created", {"id": "org_1", "name": "Acme"}),
        SyncOptions(),
    )

    assert result.outcome is ApplyOutcome.APPLIED
    assert result.mirror_action is MirrorAction.IGNORED
    assert _event_count(sqlite_session_factory, "evt_org") == 1


def test_handler_runs_after_no_op_mutations(sqlite_session_factory) -> None:
    """The handler sees every applied event, including skipped mutations."""
    seen: list[EventNotification] = []
    applier = EventApplier(sqlite_session_factory)
    options = SyncOptions(on_event=lambda session, notification: seen.append(notification))

    applier.apply(
        make_event("evt_delete", "user.deleted", user_payload("user_1", T1)), options
    )
    applier.apply(
        make_event("evt_delete", "user.deleted", user_payload("user_1", T1)), options
    )

    assert [notification.event_type for notification in seen] == ["user.deleted"]
    assert seen[0].data["id"] == "user_1"


def test_handler_failure_at_most_once_keeps_event_recorded(sqlite_session_factory) -> None:
    """With the default policy a failed handler is not re-invoked on retry."""
    calls: list[str] = []

    def failing(session, notification) -> None:
        calls.append(notification.event_type)
        raise RuntimeError("boom")

    applier = EventApplier(sqlite_session_factory)
    options = SyncOptions(on_event=failing)

    with pytest.raises(EventHandlerFailed, match="evt_created"):
        applier.apply(_created(), options)

    assert _event_count(sqlite_session_factory, "evt_created") == 1
    assert get_user("user_1", session_factory=sqlite_session_factory) is not None
    retried = applier.apply(_created(), options)
    assert retried.outcome is ApplyOutcome.DUPLICATE
    assert calls == ["user.created"]


def test_handler_failure_retry_policy_rolls_back_event(sqlite_session_factory) -> None:
    """With the retry policy a failed handler leaves the event unrecorded."""
    calls: list[str] = []

    def flaky(session, notification) -> None:
        calls.append(notification.event_type)
        if len(calls) == 1:
            raise RuntimeError("transient")

    applier = EventApplier(sqlite_session_factory)
    options = SyncOptions(on_event=flaky, handler_failure_policy=HandlerFailurePolicy.RETRY)

    with pytest.raises(EventHandlerFailed):
        applier.apply(_created(), options)

    assert _event_count(sqlite_session_factory, "evt_created") == 0
    assert get_user("user_1", session_factory=sqlite_session_factory) is None

    retried = applier.apply(_created(), options)
    assert retried.outcome is ApplyOutcome.APPLIED
    assert calls == ["user.created", "user.created"]
    assert get_user("user_1", session_factory=sqlite_session_factory) is not None


def test_concurrent_duplicate_is_absorbed_by_unique_constraint(
    sqlite_session_factory, monkeypatch
) -> None:
    """An apply that races past the existence check fails its insert and is a duplicate."""
    calls: list[str] = []
    applier = EventApplier(sqlite_session_factory)
    options = SyncOptions(on_event=lambda session, notification: calls.append(notification.event_type))
    event = make_event("evt_race", "user.updated", user_payload("user_1", T1, first_name="Race"))
    applier.apply(_created(), SyncOptions())

    monkeypatch.setattr(event_store, "event_exists", lambda session, event_id: False)
    first = applier.apply(event, options)
    second = applier.apply(event, options)

    assert first.outcome is ApplyOutcome.APPLIED
    assert second.outcome is ApplyOutcome.DUPLICATE
    assert calls == ["user.updated"]
    assert _event_count(sqlite_session_factory, "evt_race") == 1


def test_debug_log_level_logs_each_event_at_info(sqlite_session_factory, caplog) -> None:
    """The DEBUG option promotes per-event logging to INFO."""
    applier = EventApplier(sqlite_session_factory)
    caplog.set_level(logging.INFO, logger="sync.applier")

    applier.apply(_created(), SyncOptions(log_level="DEBUG"))

    assert any(
        record.levelno == logging.INFO and "processing event" in record.getMessage()
        for record in caplog.records
    )


@pytest.mark.parametrize(
    ("event_type", "options"),
    [
        ("user.created", SyncOptions()),
        ("user.updated", SyncOptions(create_user_on_update=True)),
    ],
)
def test_insert_without_updated_at_is_recorded_and_skipped(
    sqlite_session_factory, caplog, event_type, options
) -> None:
    """A payload the mirror cannot store is recorded so it is never refetched."""
    applier = EventApplier(sqlite_session_factory)
    data = user_payload("user_bad", T0)
    del data["updated_at"]
    caplog.set_level(logging.ERROR, logger="sync.applier")

    result = applier.apply(make_event("evt_bad", event_type, data), options)

    assert result.outcome is ApplyOutcome.APPLIED
    assert result.mirror_action is MirrorAction.SKIPPED_INVALID
    assert _event_count(sqlite_session_factory, "evt_bad") == 1
    assert get_user("user_bad", session_factory=sqlite_session_factory) is None
    assert "user user_bad has no updated_at (event evt_bad)" in caplog.text
