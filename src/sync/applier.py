"""Idempotent application of upstream events to the user mirror."""

from __future__ import annotations

from contextlib import closing
import logging
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import HandlerFailurePolicy
from services.database import get_sync_session
from sync import event_store, user_mirror
from sync.constants import EventType
from sync.errors import EventHandlerFailed
from sync.handlers import EventHandler, resolve_handler
from sync.schema import (
    ApplyOutcome,
    ApplyResult,
    EventNotification,
    FeedEvent,
    MirrorAction,
    SyncOptions,
)

logger = logging.getLogger(__name__)


class _DuplicateEvent(Exception):
    """Internal signal that a concurrent apply recorded the event first."""


class EventApplier:
    """Apply one feed event per unit of work, at most once per event id.

    The event record is inserted before the mirror is touched. A unique
    constraint on the event id makes the existence check and the insert
    atomic: a concurrent duplicate fails its insert, rolls back, and is
    reported as a duplicate without mutating the mirror.
    """

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        """Initialize the applier with a database session factory."""
        self._session_factory = session_factory or get_sync_session

    def apply(self, event: FeedEvent, options: SyncOptions) -> ApplyResult:
        """Record the event and apply it to the mirror unless already recorded."""
        _log_processing(event, options)
        handler = resolve_handler(options.on_event)
        notification = EventNotification(event_type=event.event_type, data=dict(event.data))
        in_transaction = options.handler_failure_policy is HandlerFailurePolicy.RETRY

        def handler_fn(session: Session) -> MirrorAction | None:
            if event_store.event_exists(session, event.id):
                return None
            try:
                event_store.record_event(session, event)
            except IntegrityError as exc:
                raise _DuplicateEvent(event.id) from exc
            action = apply_to_mirror(session, event, options)
            if handler is not None and in_transaction:
                _invoke_handler(handler, session, event.id, notification)
            return action

        try:
            action = self._execute(handler_fn)
        except _DuplicateEvent:
            logger.info("event %s recorded concurrently, skipping", event.id)
            return ApplyResult(event_id=event.id, outcome=ApplyOutcome.DUPLICATE)

        if action is None:
            logger.info("event already processed %s", event.id)
            return ApplyResult(event_id=event.id, outcome=ApplyOutcome.DUPLICATE)

        if handler is not None and not in_transaction:
            self._execute(
                lambda session: _invoke_handler(handler, session, event.id, notification)
            )
        return ApplyResult(event_id=event.id, outcome=ApplyOutcome.APPLIED, mirror_action=action)

    def _execute(self, handler):
        """Execute work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result


def apply_to_mirror(session: Session, event: FeedEvent, options: SyncOptions) -> MirrorAction:
    """Dispatch the event to its mirror mutation; unknown kinds are ignored."""
    event_type = EventType.parse(event.event_type)
    if event_type is None:
        return MirrorAction.IGNORED
    user_id = event.data.get("id")
    if not user_id:
        logger.error("event %s (%s) has no user id, skipping", event.id, event.event_type)
        return MirrorAction.IGNORED
    return _MIRROR_MUTATIONS[event_type](session, event, str(user_id), options)


def _apply_created(
    session: Session, event: FeedEvent, user_id: str, options: SyncOptions
) -> MirrorAction:
    if user_mirror.load_user(session, user_id) is not None:
        logger.warning("user already exists %s", user_id)
        return MirrorAction.SKIPPED_EXISTS
    return _insert_user(session, event, user_id)


def _apply_updated(
    session: Session, event: FeedEvent, user_id: str, options: SyncOptions
) -> MirrorAction:
    user = user_mirror.load_user(session, user_id)
    if user is None:
        if options.create_user_on_update:
            logger.warning("user not found for update, creating: %s", user_id)
            return _insert_user(session, event, user_id)
        logger.error("user not found %s (event %s)", user_id, event.id)
        return MirrorAction.SKIPPED_MISSING
    incoming = event.updated_at
    if incoming is None or user.updated_at >= incoming:
        logger.warning("user already updated for event %s, skipping", event.id)
        return MirrorAction.SKIPPED_STALE
    user_mirror.patch_user(session, user, event.data)
    return MirrorAction.PATCHED


def _insert_user(session: Session, event: FeedEvent, user_id: str) -> MirrorAction:
    if not event.updated_at:
        logger.error("user %s has no updated_at (event %s), skipping", user_id, event.id)
        return MirrorAction.SKIPPED_INVALID
    user_mirror.insert_user(session, event.data)
    return MirrorAction.INSERTED


def _apply_deleted(
    session: Session, event: FeedEvent, user_id: str, options: SyncOptions
) -> MirrorAction:
    user = user_mirror.load_user(session, user_id)
    if user is None:
        logger.warning("user not found %s (event %s)", user_id, event.id)
        return MirrorAction.SKIPPED_MISSING
    user_mirror.delete_user(session, user)
    return MirrorAction.DELETED


_MIRROR_MUTATIONS: dict[
    EventType, Callable[[Session, FeedEvent, str, SyncOptions], MirrorAction]
] = {
    EventType.USER_CREATED: _apply_created,
    EventType.USER_UPDATED: _apply_updated,
    EventType.USER_DELETED: _apply_deleted,
}


def _invoke_handler(
    handler: EventHandler,
    session: Session,
    event_id: str,
    notification: EventNotification,
) -> None:
    try:
        handler(session, notification)
    except Exception as exc:
        raise EventHandlerFailed(event_id, exc) from exc


def _log_processing(event: FeedEvent, options: SyncOptions) -> None:
    payload: dict[str, Any] = {
        "id": event.id,
        "event": event.event_type,
        "created_at": event.created_at,
    }
    if options.debug:
        logger.info("processing event %s data=%s", payload, event.data)
    else:
        logger.debug("processing event %s", payload)
