"""HTTP client wrapper with error logging and retry logic.

Remote feed calls go through ``HttpClient`` so that timeouts and retries for
transient failures are configured in one place instead of in every caller.
A request that still fails is logged and its httpx error is raised.

Usage Examples:

    # Default behavior: raise on errors, no retries
    client = HttpClient()
    response = client.get("https://api.workos.com/events", params={...})

    # Retry transient failures with exponential backoff
    client = HttpClient(retry_config=RetryConfig(max_attempts=3))
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

import httpx

from config import settings

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry logic with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (including initial attempt)
        retry_status_codes: HTTP status codes that should trigger a retry
        backoff_factor: Multiplier for exponential backoff (delay = backoff_factor * 2^attempt)
        max_backoff: Maximum backoff delay in seconds
        retry_exceptions: Exception types that should trigger a retry
    """

    max_attempts: int = 3
    retry_status_codes: set[int] = field(default_factory=lambda: {429, 500, 502, 503, 504})
    backoff_factor: float = 1.0
    max_backoff: float = 30.0
    retry_exceptions: tuple[type[Exception], ...] = (
        httpx.ConnectError,
        httpx.ReadTimeout,
        httpx.PoolTimeout,
    )

    def delay_for(self, attempt: int) -> float:
        """Return the backoff delay after a zero-based attempt index."""
        return min(self.backoff_factor * (2**attempt), self.max_backoff)


class HttpClient:
    """Synchronous HTTP client with error logging and optional retries.

    Args:
        timeout: Request timeout in seconds (default: settings.http.timeout)
        connect_timeout: Connection timeout in seconds (default: settings.http.connect_timeout)
        retry_config: Retry configuration (None = no retries)
        transport: Optional httpx transport, used by tests to stub the network
        sleep: Sleep function used between retries
    """

    def __init__(
        self,
        timeout: int | None = None,
        connect_timeout: int | None = None,
        retry_config: RetryConfig | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the synchronous HTTP client."""
        self.timeout = timeout if timeout is not None else settings.http.timeout
        self.connect_timeout = (
            connect_timeout if connect_timeout is not None else settings.http.connect_timeout
        )
        self.retry_config = retry_config
        self._transport = transport
        self._sleep = sleep

    def get(self, url: str, **kwargs) -> httpx.Response:
        """Perform a synchronous GET request.

        Raises:
            httpx.HTTPError: If the request fails after any configured retries
        """
        return self._request("GET", url, **kwargs)

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with error logging and optional retries."""
        max_attempts = self.retry_config.max_attempts if self.retry_config else 1
        last_exception: Exception | None = None

        for attempt in range(max_attempts):
            try:
                return self._send(method, url, **kwargs)
            except httpx.HTTPStatusError as e:
                last_exception = e
                if not self._is_retryable(e) or attempt + 1 >= max_attempts:
                    break
                reason = f"status {e.response.status_code}"
            except httpx.RequestError as e:
                last_exception = e
                if not self._is_retryable(e) or attempt + 1 >= max_attempts:
                    break
                reason = type(e).__name__

            assert self.retry_config is not None
            delay = self.retry_config.delay_for(attempt)
            logger.warning(
                "HTTP %s %s failed with %s, retrying in %.1fs (attempt %s/%s)",
                method,
                url,
                reason,
                delay,
                attempt + 1,
                max_attempts,
            )
            self._sleep(delay)

        assert last_exception is not None
        self._log_error(last_exception, method, url)
        raise last_exception

    def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        with httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
            transport=self._transport,
        ) as client:
            response = client.request(method, url, **kwargs)
            response.raise_for_status()
            return response

    def _is_retryable(self, error: Exception) -> bool:
        if self.retry_config is None:
            return False
        if isinstance(error, httpx.HTTPStatusError):
            return error.response.status_code in self.retry_config.retry_status_codes
        return isinstance(error, self.retry_config.retry_exceptions)

    def _log_error(self, error: Exception, method: str, url: str) -> None:
        logger.error("HTTP %s %s failed: %s", method, url, error)
