"""Client for the WorkOS events API."""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

import httpx
from pydantic import ValidationError

from config import settings
from services.http_client import HttpClient, RetryConfig
from sync.errors import FeedError
from sync.schema import EventPage, FeedEvent

logger = logging.getLogger(__name__)


class EventFeed(Protocol):
    """Forward-only paginated event source."""

    def list_events(
        self,
        api_key: str,
        event_types: Sequence[str],
        *,
        after: str | None = None,
        range_start: str | None = None,
    ) -> EventPage:
        """Return the next page of events after the cursor."""


class WorkOSEventsClient:
    """Read pages from ``GET /events`` ordered by creation time."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        page_size: int | None = None,
        http_client: HttpClient | None = None,
    ) -> None:
        """Initialize the client from configured defaults."""
        self._base_url = (base_url or settings.workos.base_url).rstrip("/")
        self._page_size = page_size or settings.workos.page_size
        self._http = http_client or HttpClient(
            retry_config=RetryConfig(max_attempts=settings.http.max_attempts)
        )

    def list_events(
        self,
        api_key: str,
        event_types: Sequence[str],
        *,
        after: str | None = None,
        range_start: str | None = None,
    ) -> EventPage:
        """Fetch one page of events, starting after ``after`` or at ``range_start``."""
        params: list[tuple[str, str | int]] = [("events", name) for name in event_types]
        params.append(("limit", self._page_size))
        if after:
            params.append(("after", after))
        if range_start:
            params.append(("range_start", range_start))
        url = f"{self._base_url}/events"
        try:
            response = self._http.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {api_key}"},
            )
        except httpx.HTTPStatusError as exc:
            raise FeedError(
                f"event feed returned {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise FeedError(f"event feed request failed: {exc}") from exc
        return parse_event_page(response)


def parse_event_page(response: httpx.Response) -> EventPage:
    """Parse a list response body into an ``EventPage``."""
    try:
        payload = response.json()
    except ValueError as exc:
        raise FeedError("event feed returned a non-JSON body") from exc
    if not isinstance(payload, dict):
        raise FeedError("event feed returned an unexpected body")
    metadata = payload.get("list_metadata") or {}
    try:
        events = [FeedEvent.model_validate(item) for item in payload.get("data") or []]
    except ValidationError as exc:
        raise FeedError(f"event feed returned a malformed event: {exc}") from exc
    logger.debug("fetched %s events, after=%s", len(events), metadata.get("after"))
    return EventPage(data=events, after=metadata.get("after"))
