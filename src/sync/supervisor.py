"""Single-flight supervision of live puller runs.

A run slot holds a generation counter. Triggering the slot bumps the
generation, revokes the previously dispatched task, and dispatches a new one
tagged with the new generation. Running work holds a ``RunToken`` and checks
it before committing further state, so a superseded run stops at the next
event boundary and the new run resumes from the persisted cursor.
"""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import SyncRunSlot
from sync.constants import INGEST_SLOT
from sync.errors import RunSuperseded

logger = logging.getLogger(__name__)

SubmitFn = Callable[[int, dict[str, Any]], str | None]
RevokeFn = Callable[[str], None]


def current_generation(session: Session, name: str = INGEST_SLOT) -> int:
    """Return the slot's current generation (0 when never triggered)."""
    slot = session.get(SyncRunSlot, name)
    return slot.generation if slot is not None else 0


def claim_generation(
    session: Session,
    name: str = INGEST_SLOT,
    *,
    now: datetime | None = None,
) -> tuple[int, str | None]:
    """Bump the slot generation and return it with the previously dispatched task id."""
    timestamp = now or datetime.now(timezone.utc)
    slot = session.get(SyncRunSlot, name, with_for_update=True)
    if slot is None:
        slot = SyncRunSlot(name=name, generation=0, task_id=None, updated_at=timestamp)
        session.add(slot)
    previous_task_id = slot.task_id
    slot.generation = (slot.generation or 0) + 1
    slot.task_id = None
    slot.updated_at = timestamp
    session.flush()
    return slot.generation, previous_task_id


def record_task_id(session: Session, generation: int, task_id: str, name: str = INGEST_SLOT) -> None:
    """Attach a dispatched task id to the slot if the generation is still current."""
    slot = session.get(SyncRunSlot, name)
    if slot is None or slot.generation != generation:
        return
    slot.task_id = task_id
    session.flush()


@dataclass(frozen=True)
class RunToken:
    """Cancellation token for one generation of a run slot."""

    generation: int
    is_current: Callable[[], bool]

    def ensure_current(self) -> None:
        """Raise ``RunSuperseded`` when a newer generation has been claimed."""
        if not self.is_current():
            raise RunSuperseded(self.generation)


def generation_token(
    session_factory: Callable[[], Session],
    generation: int,
    name: str = INGEST_SLOT,
) -> RunToken:
    """Build a token that re-reads the slot each time it is checked."""

    def is_current() -> bool:
        with closing(session_factory()) as session:
            return current_generation(session, name) == generation

    return RunToken(generation=generation, is_current=is_current)


class SingleFlightSupervisor:
    """Capacity-one run slot that replaces, rather than queues, on trigger."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        submit: SubmitFn,
        revoke: RevokeFn | None = None,
        name: str = INGEST_SLOT,
    ) -> None:
        """Initialize the supervisor with dispatch and revoke callables."""
        self._session_factory = session_factory
        self._submit = submit
        self._revoke = revoke
        self._name = name

    def trigger(self, **kwargs: Any) -> int:
        """Supersede any in-flight run and dispatch a new one; return its generation."""
        generation, previous_task_id = self._execute(
            lambda session: claim_generation(session, self._name)
        )
        if previous_task_id and self._revoke is not None:
            logger.info(
                "superseding run slot %s task %s with generation %s",
                self._name,
                previous_task_id,
                generation,
            )
            self._revoke(previous_task_id)
        task_id = self._submit(generation, kwargs)
        if task_id:
            self._execute(lambda session: record_task_id(session, generation, task_id, self._name))
        return generation

    def token(self, generation: int) -> RunToken:
        """Return a token that reports whether ``generation`` is still current."""
        return generation_token(self._session_factory, generation, self._name)

    def _execute(self, handler):
        """Execute slot bookkeeping inside a managed session."""
        for attempt in range(2):
            with closing(self._session_factory()) as session:
                session.expire_on_commit = False
                try:
                    result = handler(session)
                    session.commit()
                    return result
                except IntegrityError:
                    # Two first-ever triggers raced to create the slot row.
                    session.rollback()
                    if attempt:
                        raise
                except Exception:
                    session.rollback()
                    raise
