"""
backend/app/providers/http_client.py

Purpose:
    Shared outbound HTTP layer for the score feeds: bounded retries with
    exponential backoff, Retry-After support and a per-feed circuit breaker.

Dependencies:
    - httpx
    - app.config
"""

import asyncio
import logging
import time
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from app.config import settings
from app.providers.base import ProviderError

logger = logging.getLogger("pronofoot.http_client")

RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
NETWORK_ERRORS = (httpx.TimeoutException, httpx.ConnectError, httpx.RemoteProtocolError)
MAX_BACKOFF_SECONDS = 60.0
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
}


class CircuitBreaker:
    """Opens after `failure_threshold` failed calls in a row.

    While open, calls are refused until `recovery_timeout` seconds have passed
    since the last failure; the next call is then let through (half-open) and
    its outcome closes or re-arms the breaker.
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 120):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.is_open = False

    def record_success(self) -> None:
        if self.is_open:
            logger.info("Circuit closed after successful call")
        self.failure_count = 0
        self.is_open = False

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if not self.is_open and self.failure_count >= self.failure_threshold:
            self.is_open = True
            logger.warning("Circuit opened after %d consecutive failures", self.failure_count)

    def can_attempt(self) -> bool:
        if not self.is_open:
            return True
        cooled_down = (
            self.last_failure_time is not None
            and time.monotonic() - self.last_failure_time > self.recovery_timeout
        )
        if cooled_down:
            logger.info("Circuit half-open, letting one call through")
        return cooled_down


def _retry_after(response: httpx.Response) -> Optional[float]:
    for header in ("retry-after", "x-ratelimit-retry-after"):
        raw = response.headers.get(header)
        if raw is None:
            continue
        try:
            return float(raw)
        except ValueError:
            continue
    return None


def _loggable(url: str) -> str:
    # Query strings may carry API keys
    parts = urlparse(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


class ResilientClient:
    """One httpx.AsyncClient per feed.

    Live scores must never come from a cache, so every request is sent with
    no-cache headers on top of the feed's auth headers.
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        base_delay: float | None = None,
    ):
        self._name = name
        self._base_url = base_url.rstrip("/")
        self._headers = {**NO_CACHE_HEADERS, **(headers or {})}
        self._client = httpx.AsyncClient(
            timeout=settings.HTTP_TIMEOUT_SECONDS if timeout is None else timeout,
        )
        self._max_retries = settings.HTTP_MAX_RETRIES if max_retries is None else max_retries
        self._base_delay = settings.HTTP_BASE_DELAY_SECONDS if base_delay is None else base_delay
        self.circuit = CircuitBreaker()

    def _backoff(self, attempt: int, response: Optional[httpx.Response] = None) -> float:
        delay = _retry_after(response) if response is not None else None
        if delay is None:
            delay = self._base_delay * (2 ** attempt)
        return min(delay, MAX_BACKOFF_SECONDS)

    async def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request, retrying transient failures.

        Returns the last response once retries are exhausted on a retryable
        status; raises ProviderError when the circuit is open or every attempt
        failed at the network level.
        """
        url = f"{self._base_url}{path}"
        if not self.circuit.can_attempt():
            raise ProviderError(f"[{self._name}] circuit open, skipping {_loggable(url)}")

        headers = {**self._headers, **kwargs.pop("headers", {})}
        attempts = self._max_retries + 1
        response: Optional[httpx.Response] = None
        error: Optional[Exception] = None

        for attempt in range(attempts):
            response, error = None, None
            try:
                response = await self._client.request(method, url, headers=headers, **kwargs)
            except NETWORK_ERRORS as exc:
                error = exc
            else:
                if response.status_code not in RETRY_STATUSES:
                    self.circuit.record_success()
                    return response

            logger.warning(
                "[%s] %s %s failed on attempt %d/%d: %s",
                self._name, method, _loggable(url), attempt + 1, attempts,
                f"HTTP {response.status_code}" if response is not None else repr(error),
            )
            if attempt + 1 < attempts:
                await asyncio.sleep(self._backoff(attempt, response))

        self.circuit.record_failure()
        if response is not None:
            logger.error(
                "[%s] giving up on %s %s after %d attempts (HTTP %d)",
                self._name, method, _loggable(url), attempts, response.status_code,
            )
            return response
        logger.error(
            "[%s] giving up on %s %s after %d attempts: %s",
            self._name, method, _loggable(url), attempts, error,
        )
        raise ProviderError(f"[{self._name}] network failure on {_loggable(url)}") from error

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """GET a JSON object; HTTP errors and non-object bodies raise ProviderError."""
        response = await self.request("GET", path, params=params)
        if response.is_error:
            raise ProviderError(
                f"[{self._name}] HTTP {response.status_code} for {path}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(f"[{self._name}] non-JSON body for {path}: {response.text[:80]!r}") from exc
        if not isinstance(payload, dict):
            raise ProviderError(f"[{self._name}] invalid response format for {path}")
        return payload

    async def aclose(self) -> None:
        await self._client.aclose()
