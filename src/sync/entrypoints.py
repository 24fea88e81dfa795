"""Entry points exposed to the webhook, scheduler, and read-path collaborators."""

from __future__ import annotations

from contextlib import closing
import logging
from typing import Any, Callable, Sequence

from sqlalchemy.orm import Session

from config import settings
from services.database import get_sync_session
from services.workos_events import EventFeed
from sync import user_mirror
from sync.backfill import BackfillReconciler
from sync.constants import INGEST_TASK
from sync.errors import SyncConfigurationError
from sync.puller import LiveSyncPuller
from sync.schema import BackfillResult, PullResult, SyncOptions, UserRecord
from sync.supervisor import SingleFlightSupervisor, generation_token

logger = logging.getLogger(__name__)


def _get_celery_app():
    """Import the Celery app lazily to avoid import cycles."""
    from sync.celery_app import celery_app

    return celery_app


def resolve_api_key(api_key: str | None) -> str:
    """Return the explicit API key or the configured one."""
    resolved = api_key or settings.workos.api_key
    if not resolved:
        raise SyncConfigurationError("no WorkOS API key supplied or configured")
    return resolved


def build_ingest_supervisor(
    *,
    session_factory: Callable[[], Session] | None = None,
    send_task: Callable[..., object] | None = None,
    revoke: Callable[[str], None] | None = None,
) -> SingleFlightSupervisor:
    """Create the supervisor that owns live puller runs."""

    def submit(generation: int, kwargs: dict[str, Any]) -> str | None:
        sender = send_task or _get_celery_app().send_task
        async_result = sender(
            INGEST_TASK,
            kwargs={**kwargs, "generation": generation},
            queue=settings.celery.ingest_queue,
        )
        return getattr(async_result, "id", None)

    def default_revoke(task_id: str) -> None:
        _get_celery_app().control.revoke(task_id)

    return SingleFlightSupervisor(
        session_factory or get_sync_session,
        submit=submit,
        revoke=revoke or default_revoke,
    )


def enqueue_ingest(
    api_key: str | None = None,
    event_types: Sequence[str] | None = None,
    log_level: str | None = None,
    initial_range_hours: int | None = None,
    create_user_on_update: bool | None = None,
    on_event: str | None = None,
    *,
    session_factory: Callable[[], Session] | None = None,
    send_task: Callable[..., object] | None = None,
    revoke: Callable[[str], None] | None = None,
) -> int:
    """Cancel any in-flight live run and dispatch a fresh one.

    Returns the generation assigned to the new run. Failures of the run
    itself surface in the worker, never here.
    """
    supervisor = build_ingest_supervisor(
        session_factory=session_factory,
        send_task=send_task,
        revoke=revoke,
    )
    generation = supervisor.trigger(
        api_key=api_key,
        event_types=list(event_types) if event_types is not None else None,
        log_level=log_level,
        initial_range_hours=initial_range_hours,
        create_user_on_update=create_user_on_update,
        on_event=on_event,
    )
    logger.info("live sync enqueued: generation=%s", generation)
    return generation


def run_ingest(
    api_key: str | None = None,
    event_types: Sequence[str] | None = None,
    log_level: str | None = None,
    initial_range_hours: int | None = None,
    create_user_on_update: bool | None = None,
    on_event: str | Callable[..., Any] | None = None,
    *,
    generation: int | None = None,
    session_factory: Callable[[], Session] | None = None,
    feed: EventFeed | None = None,
) -> PullResult:
    """Run the live puller in the current process.

    When ``generation`` is given, the run stops with ``RunSuperseded`` as soon
    as a newer generation has been claimed for the ingest slot.
    """
    session_factory = session_factory or get_sync_session
    options = SyncOptions.from_settings(
        event_types=event_types,
        log_level=log_level,
        initial_range_hours=initial_range_hours,
        create_user_on_update=create_user_on_update,
        on_event=on_event,
    )
    token = generation_token(session_factory, generation) if generation is not None else None
    puller = LiveSyncPuller(session_factory, feed=feed)
    return puller.run(resolve_api_key(api_key), options, token=token)


def run_backfill(
    api_key: str | None = None,
    event_types: Sequence[str] | None = None,
    log_level: str | None = None,
    create_user_on_update: bool | None = None,
    on_event: str | Callable[..., Any] | None = None,
    *,
    session_factory: Callable[[], Session] | None = None,
    feed: EventFeed | None = None,
) -> BackfillResult:
    """Run one reconciliation pass and return its counts."""
    options = SyncOptions.from_settings(
        event_types=event_types,
        log_level=log_level,
        create_user_on_update=create_user_on_update,
        on_event=on_event,
    )
    reconciler = BackfillReconciler(session_factory, feed=feed)
    return reconciler.run(resolve_api_key(api_key), options)


def get_user(
    user_id: str,
    *,
    session_factory: Callable[[], Session] | None = None,
) -> UserRecord | None:
    """Return the mirrored user, or None when absent."""
    session_factory = session_factory or get_sync_session
    with closing(session_factory()) as session:
        user = user_mirror.load_user(session, user_id)
        return user_mirror.to_record(user) if user is not None else None
