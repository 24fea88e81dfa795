"""Error types for event ingestion and reconciliation."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for sync failures."""


class SyncConfigurationError(SyncError):
    """Raised when a run cannot start because configuration is incomplete."""


class RunSuperseded(SyncError):
    """Raised inside a live run whose generation token was replaced."""

    def __init__(self, generation: int) -> None:
        """Initialize the error with the stale generation."""
        super().__init__(f"run generation {generation} was superseded")
        self.generation = generation


class FeedError(SyncError):
    """Raised when the remote event feed cannot be read."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize the error with an optional HTTP status code."""
        super().__init__(message)
        self.status_code = status_code


class HandlerResolutionError(SyncError):
    """Raised when an event handler reference cannot be imported."""


class EventHandlerFailed(SyncError):
    """Raised when the caller-supplied event handler fails for an event."""

    def __init__(self, event_id: str, cause: BaseException) -> None:
        """Initialize the error with the event id and underlying failure."""
        super().__init__(f"event handler failed for {event_id}: {cause}")
        self.event_id = event_id
        self.cause = cause
