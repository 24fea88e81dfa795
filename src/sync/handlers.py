"""Resolution of caller-supplied event handlers."""

from __future__ import annotations

import importlib
from typing import Callable, Protocol

from sqlalchemy.orm import Session

from sync.errors import HandlerResolutionError
from sync.schema import EventNotification


class EventHandler(Protocol):
    """Callable invoked after each applied event."""

    def __call__(self, session: Session, notification: EventNotification) -> None:
        """Handle an event notification inside the given session."""


def resolve_handler(reference: str | Callable | None) -> EventHandler | None:
    """Resolve a ``module.path:attribute`` reference to a callable.

    Callables are returned unchanged so in-process callers can skip the import
    indirection; Celery tasks always pass the string form.
    """
    if reference is None:
        return None
    if callable(reference):
        return reference
    module_path, sep, attribute = reference.partition(":")
    if not sep or not module_path or not attribute:
        raise HandlerResolutionError(
            f"handler reference must look like 'package.module:callable': {reference!r}"
        )
    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise HandlerResolutionError(f"cannot import handler module {module_path!r}") from exc
    target = module
    for part in attribute.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise HandlerResolutionError(
                f"handler {attribute!r} not found in {module_path!r}"
            ) from exc
    if not callable(target):
        raise HandlerResolutionError(f"handler {reference!r} is not callable")
    return target
