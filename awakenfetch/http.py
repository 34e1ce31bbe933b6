"""
Resilient HTTP fetch shared by every adapter.

fetch_json() issues one request and retries transient failures with
exponential backoff (base_delay * 2**attempt):

- HTTP 429 and 5xx are retryable. A numeric Retry-After header on a 429
  replaces the computed delay, capped at RATE_LIMIT_MAX_DELAY.
- Transport failures (timeout, DNS, connection reset) are retryable.
- Any other 4xx fails immediately with ProviderClientError, carrying the
  provider's own error message when the body has one.

Design decisions:
- No module-level state; the caller owns the httpx.AsyncClient (and so the
  per-call timeout) and, optionally, a RequestThrottle.
- Retries sleep only the calling task.
- Every final error message is prefixed with error_label.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from awakenfetch.exceptions import (
    APIError,
    ConnectionFailedError,
    InvalidAPIKeyError,
    NetworkTimeoutError,
    ProviderClientError,
    RateLimitError,
    ServerError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0
RATE_LIMIT_MAX_DELAY = 8.0

# Keys probed (in order) when digging an error message out of a JSON body
_ERROR_KEYS = ("message", "error", "detail", "error_description", "errors", "msg")


@dataclass
class RetryPolicy:
    """How many times to retry, and how long to wait between attempts."""

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY

    def delay_for(self, attempt: int, error: TransientProviderError) -> float:
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            return min(error.retry_after, RATE_LIMIT_MAX_DELAY)
        return self.base_delay * (2 ** attempt)


class RequestThrottle:
    """Token bucket limiting how fast one adapter may call its provider."""

    def __init__(self, calls: int, period: float) -> None:
        self._calls = calls
        self._period = period
        self._tokens: float = float(calls)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_refill
            self._tokens = min(self._calls, self._tokens + (elapsed / self._period) * self._calls)
            self._last_refill = now

            if self._tokens < 1:
                await asyncio.sleep((1 - self._tokens) * (self._period / self._calls))
                self._tokens = 0
            else:
                self._tokens -= 1


def new_client(timeout: float = DEFAULT_TIMEOUT) -> httpx.AsyncClient:
    """AsyncClient with the per-call timeout every adapter uses."""
    return httpx.AsyncClient(timeout=timeout, headers={"accept": "application/json"})


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    method: str = "GET",
    params: dict[str, Any] | list[tuple[str, Any]] | None = None,
    headers: dict[str, str] | None = None,
    json_body: Any = None,
    error_label: str = "API",
    retry: RetryPolicy | None = None,
    throttle: RequestThrottle | None = None,
) -> Any:
    """
    Fetch url and return the decoded JSON body.

    Raises:
        ProviderClientError: 4xx other than 429 (InvalidAPIKeyError on 401/403).
        RateLimitError / ServerError / NetworkError: retries exhausted.
        APIError: 2xx response whose body is not JSON.
    """
    policy = retry or RetryPolicy()
    attempt = 0
    error: TransientProviderError

    while True:
        if throttle is not None:
            await throttle.acquire()
        try:
            response = await client.request(
                method, url, params=params, headers=headers, json=json_body
            )
        except httpx.TimeoutException as e:
            error = NetworkTimeoutError(f"{error_label}: request timed out ({e})")
        except httpx.TransportError as e:
            error = ConnectionFailedError(f"{error_label}: connection failed ({e})")
        else:
            status = response.status_code
            if status == 429:
                error = RateLimitError(
                    f"{error_label}: rate limit exceeded (HTTP 429)",
                    retry_after=_retry_after(response),
                )
            elif status >= 500:
                error = ServerError(
                    f"{error_label}: HTTP {status} {response.reason_phrase}".rstrip(),
                    status_code=status,
                )
            elif status >= 400:
                raise _client_error(response, error_label)
            else:
                try:
                    return response.json()
                except ValueError as e:
                    raise APIError(f"{error_label}: response is not valid JSON") from e

        if attempt >= policy.max_retries:
            raise error

        delay = policy.delay_for(attempt, error)
        logger.warning(
            "%s (attempt %d/%d), retrying in %.2fs",
            error.message,
            attempt + 1,
            policy.max_retries + 1,
            delay,
        )
        await asyncio.sleep(delay)
        attempt += 1


# ──────────────────────────────────────────────────────────────
# Private helpers
# ──────────────────────────────────────────────────────────────


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _client_error(response: httpx.Response, error_label: str) -> ProviderClientError:
    status = response.status_code
    detail = error_detail(response)
    message = f"{error_label}: HTTP {status}"
    if detail:
        message = f"{message}: {detail}"
    error_cls = InvalidAPIKeyError if status in (401, 403) else ProviderClientError
    return error_cls(message, status_code=status, details={"provider_detail": detail})


def error_detail(response: httpx.Response) -> str | None:
    """Best-effort extraction of a provider's error message from a response body."""
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:200] or None
    return _find_message(body)


def _find_message(body: Any) -> str | None:
    if isinstance(body, str):
        return body or None
    if isinstance(body, list):
        return _find_message(body[0]) if body else None
    if isinstance(body, dict):
        for key in _ERROR_KEYS:
            found = _find_message(body.get(key))
            if found:
                return found
    return None
