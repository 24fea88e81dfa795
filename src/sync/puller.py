"""Live catch-up puller that drains the remote feed from the persisted cursor."""

from __future__ import annotations

from contextlib import closing
from datetime import datetime
import logging
from typing import Callable

from opentelemetry import trace
from sqlalchemy.orm import Session

from services.database import get_sync_session
from services.workos_events import EventFeed, WorkOSEventsClient
from sync import event_store
from sync.applier import EventApplier
from sync.schema import PullResult, SyncOptions
from sync.supervisor import RunToken
from time_utils import range_start, utc_now

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class LiveSyncPuller:
    """Walk the feed forward from the latest recorded event, applying each one."""

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        *,
        feed: EventFeed | None = None,
        applier: EventApplier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the puller with its persistence, feed, and applier."""
        self._session_factory = session_factory or get_sync_session
        self._feed = feed or WorkOSEventsClient()
        self._applier = applier or EventApplier(self._session_factory)
        self._clock = clock

    def load_cursor(self) -> str | None:
        """Return the id of the most recently recorded event, or None."""
        with closing(self._session_factory()) as session:
            return event_store.latest_event_id(session)

    def run(
        self,
        api_key: str,
        options: SyncOptions,
        *,
        token: RunToken | None = None,
    ) -> PullResult:
        """Drain the feed until it reports no continuation token.

        Raises:
            RunSuperseded: If ``token`` goes stale; no further events are applied.
            FeedError: If the feed cannot be read. Events already applied stay
                recorded, so the next run resumes from them.
            EventHandlerFailed: If the configured event handler fails.
        """
        cursor = self.load_cursor()
        start = None if cursor else range_start(options.initial_range_hours, now=self._clock())
        event_types = options.feed_event_types
        result = PullResult(cursor=cursor)
        logger.info(
            "live sync starting: cursor=%s range_start=%s types=%s",
            cursor,
            start,
            ",".join(event_types),
        )

        with tracer.start_as_current_span(
            "sync.live_pull",
            attributes={
                "sync.cursor": cursor or "",
                "sync.generation": token.generation if token is not None else 0,
            },
        ) as span:
            while True:
                if token is not None:
                    token.ensure_current()
                page = self._feed.list_events(
                    api_key,
                    event_types,
                    after=cursor,
                    range_start=start,
                )
                result.pages += 1
                for event in page.data:
                    if token is not None:
                        token.ensure_current()
                    applied = self._applier.apply(event, options)
                    if applied.applied:
                        result.applied += 1
                    else:
                        result.duplicates += 1
                cursor = page.after
                start = None
                if not cursor:
                    break
                result.cursor = cursor

            span.set_attribute("sync.pages", result.pages)
            span.set_attribute("sync.applied", result.applied)

        logger.info(
            "live sync finished: pages=%s applied=%s duplicates=%s",
            result.pages,
            result.applied,
            result.duplicates,
        )
        return result
