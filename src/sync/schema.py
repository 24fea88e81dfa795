"""Typed payloads exchanged between the feed, the applier, and callers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Sequence

from pydantic import BaseModel, ConfigDict, Field

from config import HandlerFailurePolicy, settings
from sync.constants import DEBUG_LOG_LEVEL, DEFAULT_INITIAL_RANGE_HOURS, merge_event_types


class FeedEvent(BaseModel):
    """A single event as delivered by the remote feed."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    event_type: str = Field(alias="event")
    created_at: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def updated_at(self) -> str | None:
        """Return the source-provided update timestamp carried in the payload."""
        value = self.data.get("updated_at")
        return str(value) if value is not None else None


class EventPage(BaseModel):
    """One page of the remote feed plus its continuation token."""

    model_config = ConfigDict(frozen=True)

    data: list[FeedEvent] = Field(default_factory=list)
    after: str | None = None


class UserRecord(BaseModel):
    """Read-only view of a mirrored user."""

    model_config = ConfigDict(frozen=True)

    id: str
    updated_at: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email_verified: bool | None = None
    profile_picture_url: str | None = None
    external_id: str | None = None
    last_sign_in_at: str | None = None
    locale: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class EventNotification:
    """Payload handed to the caller-supplied event handler."""

    event_type: str
    data: dict[str, Any]


@dataclass(frozen=True)
class SyncOptions:
    """Per-run options shared by live ingestion and backfill."""

    event_types: tuple[str, ...] = ()
    log_level: str | None = None
    initial_range_hours: int = DEFAULT_INITIAL_RANGE_HOURS
    create_user_on_update: bool = False
    on_event: str | Callable[..., Any] | None = None
    handler_failure_policy: HandlerFailurePolicy = HandlerFailurePolicy.AT_MOST_ONCE

    @property
    def debug(self) -> bool:
        """Return True when per-event debug logging is requested."""
        return self.log_level == DEBUG_LOG_LEVEL

    @property
    def feed_event_types(self) -> tuple[str, ...]:
        """Return the allow-list sent to the feed."""
        return merge_event_types(self.event_types)

    @classmethod
    def from_settings(
        cls,
        *,
        event_types: Sequence[str] | None = None,
        log_level: str | None = None,
        initial_range_hours: int | None = None,
        create_user_on_update: bool | None = None,
        on_event: str | Callable[..., Any] | None = None,
        handler_failure_policy: HandlerFailurePolicy | str | None = None,
    ) -> "SyncOptions":
        """Build options from configured defaults, overridden by non-None arguments."""
        defaults = settings.sync
        if initial_range_hours is not None and initial_range_hours < 1:
            raise ValueError("initial_range_hours must be >= 1")
        resolved_log_level = log_level or defaults.log_level
        return cls(
            event_types=tuple(event_types if event_types is not None else defaults.event_types),
            log_level=resolved_log_level.upper() if resolved_log_level else None,
            initial_range_hours=(
                initial_range_hours
                if initial_range_hours is not None
                else defaults.initial_range_hours
            ),
            create_user_on_update=(
                create_user_on_update
                if create_user_on_update is not None
                else defaults.create_user_on_update
            ),
            on_event=on_event if on_event is not None else defaults.on_event,
            handler_failure_policy=HandlerFailurePolicy(
                handler_failure_policy or defaults.handler_failure_policy
            ),
        )


class ApplyOutcome(str, Enum):
    """Whether an apply call recorded the event or found it already recorded."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"


class MirrorAction(str, Enum):
    """What an applied event did to the user mirror."""

    INSERTED = "inserted"
    PATCHED = "patched"
    DELETED = "deleted"
    SKIPPED_EXISTS = "skipped_exists"
    SKIPPED_STALE = "skipped_stale"
    SKIPPED_MISSING = "skipped_missing"
    SKIPPED_INVALID = "skipped_invalid"
    IGNORED = "ignored"
    NONE = "none"


@dataclass(frozen=True)
class ApplyResult:
    """Result of applying a single event."""

    event_id: str
    outcome: ApplyOutcome
    mirror_action: MirrorAction = MirrorAction.NONE

    @property
    def applied(self) -> bool:
        """Return True when this call recorded the event."""
        return self.outcome is ApplyOutcome.APPLIED


@dataclass
class PullResult:
    """Summary of a live puller run."""

    pages: int = 0
    applied: int = 0
    duplicates: int = 0
    cursor: str | None = None


@dataclass
class BackfillResult:
    """Summary of a reconciliation pass."""

    processed: int = 0
    skipped: int = 0
    last_event_id: str | None = None
