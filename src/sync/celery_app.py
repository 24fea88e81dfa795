"""Celery entry point for live sync and backfill tasks.

Run live sync on its own queue with a single worker process so that at
most one puller executes at a time::

    celery -A sync.celery_app worker -Q sync-ingest -c 1
    celery -A sync.celery_app worker -Q sync-backfill
    celery -A sync.celery_app beat
"""

from __future__ import annotations

from dataclasses import asdict
import logging
from typing import Any

from celery import Celery
from celery.signals import setup_logging, worker_init

from config import settings
from services.database import check_connection, run_migrations_sync
from sync.constants import BACKFILL_TASK, INGEST_TASK
from sync.entrypoints import run_backfill, run_ingest
from sync.errors import RunSuperseded

LOGGER = logging.getLogger(__name__)

celery_app = Celery("usersync.sync")
celery_app.conf.broker_url = settings.celery.broker_url
celery_app.conf.result_backend = settings.celery.result_backend
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.enable_utc = True
celery_app.conf.timezone = "UTC"
celery_app.conf.task_routes = {
    INGEST_TASK: {"queue": settings.celery.ingest_queue},
    BACKFILL_TASK: {"queue": settings.celery.backfill_queue},
}

beat_schedule = celery_app.conf.get("beat_schedule")
if beat_schedule is None:
    beat_schedule = {}
if settings.sync.backfill_interval_seconds > 0:
    beat_schedule[BACKFILL_TASK] = {
        "task": BACKFILL_TASK,
        "schedule": float(settings.sync.backfill_interval_seconds),
    }
celery_app.conf.beat_schedule = beat_schedule


def configure_logging() -> None:
    """Apply the configured root log level and format."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@setup_logging.connect
def _on_setup_logging(**kwargs: Any) -> None:
    configure_logging()


@worker_init.connect
def _on_worker_init(**kwargs: Any) -> None:
    if not check_connection():
        LOGGER.error("Database unavailable at worker start; skipping migrations")
        return
    run_migrations_sync()


@celery_app.task(
    bind=True,
    name=INGEST_TASK,
    acks_late=True,
    reject_on_worker_lost=True,
)
def ingest(
    self,
    api_key: str | None = None,
    event_types: list[str] | None = None,
    log_level: str | None = None,
    initial_range_hours: int | None = None,
    create_user_on_update: bool | None = None,
    on_event: str | None = None,
    generation: int | None = None,
) -> dict[str, Any]:
    """Drain the event feed for one generation of the ingest slot."""
    try:
        result = run_ingest(
            api_key=api_key,
            event_types=event_types,
            log_level=log_level,
            initial_range_hours=initial_range_hours,
            create_user_on_update=create_user_on_update,
            on_event=on_event,
            generation=generation,
        )
    except RunSuperseded as exc:
        LOGGER.info(
            "Live sync superseded: generation=%s task=%s",
            exc.generation,
            getattr(self.request, "id", None),
        )
        return {"status": "superseded", "generation": exc.generation}
    LOGGER.info(
        "Live sync completed: generation=%s pages=%s applied=%s",
        generation,
        result.pages,
        result.applied,
    )
    return {"status": "complete", "generation": generation, **asdict(result)}


@celery_app.task(name=BACKFILL_TASK)
def backfill(
    api_key: str | None = None,
    event_types: list[str] | None = None,
    log_level: str | None = None,
    create_user_on_update: bool | None = None,
    on_event: str | None = None,
) -> dict[str, Any]:
    """Run one reconciliation pass (beat-scheduled or manual)."""
    result = run_backfill(
        api_key=api_key,
        event_types=event_types,
        log_level=log_level,
        create_user_on_update=create_user_on_update,
        on_event=on_event,
    )
    return {"status": "complete", **asdict(result)}
