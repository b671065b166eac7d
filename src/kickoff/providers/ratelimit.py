from __future__ import annotations
import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, TypeVar

import httpx

log = logging.getLogger(__name__)

T = TypeVar("T")

# Network errors worth retrying (DNS, connect, reset, timeout)
TRANSIENT_ERRORS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    ConnectionResetError,
)

_DEFAULT_BACKOFF = (2.0, 5.0, 10.0, 20.0)


class RateLimiter:
    """Sliding-window limiter: at most max_calls per period_seconds."""

    def __init__(self, max_calls: int, period_seconds: float):
        self.max_calls = max_calls
        self.period = period_seconds
        self.calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            now = time.monotonic()
            while self.calls and now - self.calls[0] > self.period:
                self.calls.popleft()
            if len(self.calls) >= self.max_calls:
                sleep_for = self.period - (now - self.calls[0]) + 0.01
                await asyncio.sleep(max(0.0, sleep_for))
            self.calls.append(time.monotonic())


async def retry_request(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 4,
    backoff: tuple[float, ...] = _DEFAULT_BACKOFF,
    label: str = "HTTP",
) -> T:
    """Await *fn()*, retrying on transient network errors.

    Args:
        fn: zero-arg coroutine factory performing the request
        max_retries: total attempts (including first)
        backoff: sleep durations between retries
        label: provider name for log messages

    Raises:
        The last exception if all retries are exhausted.
    """
    last_exc: Exception | None = None
    for attempt in range(max_retries):
        try:
            return await fn()
        except TRANSIENT_ERRORS as exc:
            last_exc = exc
            if attempt == max_retries - 1:
                break
            wait = backoff[min(attempt, len(backoff) - 1)]
            log.warning("%s transient error (attempt %d/%d): %s, retrying in %.1fs",
                        label, attempt + 1, max_retries, exc, wait)
            await asyncio.sleep(wait)
    raise last_exc  # type: ignore[misc]
