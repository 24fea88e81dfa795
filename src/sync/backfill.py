"""Backfill reconciliation that repairs gaps left by the live puller."""

from __future__ import annotations

from contextlib import closing
import logging
from typing import Callable

from opentelemetry import trace
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from services.database import get_sync_session
from services.workos_events import EventFeed, WorkOSEventsClient
from sync import event_store
from sync.applier import EventApplier
from sync.checkpoint import Checkpoint, advance_checkpoint, load_checkpoint
from sync.schema import BackfillResult, SyncOptions

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class BackfillReconciler:
    """Walk the feed from the verified checkpoint and apply only missing events.

    The checkpoint is advanced once, after the walk reaches the end of the
    feed. An aborted walk keeps every event it applied but leaves the
    checkpoint where it was, so the next pass rescans the same range and
    finds those events present.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        *,
        feed: EventFeed | None = None,
        applier: EventApplier | None = None,
    ) -> None:
        """Initialize the reconciler with its persistence, feed, and applier."""
        self._session_factory = session_factory or get_sync_session
        self._feed = feed or WorkOSEventsClient()
        self._applier = applier or EventApplier(self._session_factory)

    def run(self, api_key: str, options: SyncOptions) -> BackfillResult:
        """Reconcile the event store against the feed and advance the checkpoint."""
        checkpoint = self._read(load_checkpoint)
        event_types = options.feed_event_types
        after = checkpoint.event_id
        result = BackfillResult()
        logger.info(
            "backfill starting: checkpoint=%s creation_time=%s",
            checkpoint.event_id,
            checkpoint.creation_time,
        )

        with tracer.start_as_current_span(
            "sync.backfill",
            attributes={"sync.checkpoint": checkpoint.event_id or ""},
        ) as span:
            while True:
                page = self._feed.list_events(api_key, event_types, after=after)
                if not page.data:
                    break
                page_ids = [event.id for event in page.data]
                missing = self._read(
                    lambda session: event_store.find_missing_event_ids(
                        session,
                        page_ids,
                        after_creation_time=checkpoint.creation_time,
                    )
                )
                for event in page.data:
                    if event.id in missing:
                        if self._applier.apply(event, options).applied:
                            result.processed += 1
                        else:
                            result.skipped += 1
                    else:
                        result.skipped += 1
                    result.last_event_id = event.id
                if not page.after:
                    break
                after = page.after

            span.set_attribute("sync.processed", result.processed)
            span.set_attribute("sync.skipped", result.skipped)

        if result.last_event_id is not None:
            advanced = self._advance(result.last_event_id)
            if advanced is not None:
                logger.info(
                    "backfill checkpoint advanced to %s (creation_time=%s)",
                    advanced.event_id,
                    advanced.creation_time,
                )
        logger.info(
            "backfill finished: processed=%s skipped=%s last_event_id=%s",
            result.processed,
            result.skipped,
            result.last_event_id,
        )
        return result

    def _advance(self, event_id: str) -> Checkpoint | None:
        def handler(session: Session) -> Checkpoint | None:
            creation_time = event_store.get_creation_time(session, event_id)
            if creation_time is None:
                logger.warning("checkpoint candidate %s is not recorded, not advancing", event_id)
                return None
            return advance_checkpoint(session, event_id, creation_time)

        try:
            return self._execute(handler)
        except IntegrityError:
            # A concurrent pass created the checkpoint row first; update it instead.
            return self._execute(handler)

    def _read(self, query):
        with closing(self._session_factory()) as session:
            return query(session)

    def _execute(self, handler):
        """Execute checkpoint work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result
