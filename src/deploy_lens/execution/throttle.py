"""Bounded-concurrency request pacing and the retry policy around it."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
from botocore.exceptions import BotoCoreError, ClientError

from deploy_lens.errors import ExternalServiceError, RateLimitedError, is_rate_limit_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestThrottler:
    """FIFO dispatcher that caps in-flight calls and spaces out dispatches.

    Waiters are released in arrival order (``asyncio.Semaphore`` and
    ``asyncio.Lock`` are both FIFO). A failed call is not retried here.
    """

    def __init__(
        self,
        max_concurrent: int = 2,
        min_interval_seconds: float = 0.5,
        *,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must not be negative")
        self.name = name
        self.max_concurrent = max_concurrent
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._dispatch_lock = asyncio.Lock()
        self._counter_lock = threading.Lock()
        self._last_dispatch: float | None = None
        self._in_flight = 0
        self._dispatched = 0

    @property
    def in_flight(self) -> int:
        with self._counter_lock:
            return self._in_flight

    @property
    def dispatched(self) -> int:
        with self._counter_lock:
            return self._dispatched

    async def run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        async with self._semaphore:
            await self._wait_for_slot()
            try:
                result = fn(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                return result
            finally:
                with self._counter_lock:
                    self._in_flight -= 1

    async def _wait_for_slot(self) -> None:
        async with self._dispatch_lock:
            if self._last_dispatch is not None:
                elapsed = self._clock() - self._last_dispatch
                remaining = self.min_interval_seconds - elapsed
                if remaining > 0:
                    await self._sleep(remaining)
            self._last_dispatch = self._clock()
            with self._counter_lock:
                self._in_flight += 1
                self._dispatched += 1

    def stats(self) -> dict[str, object]:
        with self._counter_lock:
            return {
                "name": self.name,
                "max_concurrent": self.max_concurrent,
                "min_interval_seconds": self.min_interval_seconds,
                "in_flight": self._in_flight,
                "dispatched": self._dispatched,
            }


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    base_delay_seconds: float = 0.5
    timeout_seconds: float = 30.0


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, ClientError):
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return isinstance(status, int) and status >= 500
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(
        exc,
        (BotoCoreError, httpx.TransportError, asyncio.TimeoutError, TimeoutError, ConnectionError),
    )


async def call_external(
    throttler: RequestThrottler,
    policy: RetryPolicy,
    service: str,
    operation: str,
    fn: Callable[[], Awaitable[T]],
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run *fn* through *throttler* with a timeout and bounded retries.

    Rate-limit failures raise :class:`RateLimitedError` straight away;
    transient failures are retried with exponential delay and end in
    :class:`ExternalServiceError` once the budget is spent.
    """

    async def _timed() -> T:
        return await asyncio.wait_for(fn(), timeout=policy.timeout_seconds)

    attempt = 0
    while True:
        try:
            return await throttler.run(_timed)
        except (KeyboardInterrupt, SystemExit, MemoryError, asyncio.CancelledError):
            raise
        except RateLimitedError:
            raise
        except Exception as exc:
            if is_rate_limit_error(exc):
                logger.warning("%s.%s rate limited: %s", service, operation, exc)
                raise RateLimitedError(service, str(exc)) from exc
            if not _is_transient(exc):
                raise ExternalServiceError(service, operation, str(exc)) from exc
            if attempt >= policy.max_retries:
                logger.warning(
                    "%s.%s failed after %d attempts: %s", service, operation, attempt + 1, exc
                )
                raise ExternalServiceError(service, operation, str(exc) or type(exc).__name__) from exc
            backoff = policy.base_delay_seconds * (2**attempt)
            logger.debug(
                "%s.%s transient failure (attempt %d), retrying in %.2fs: %s",
                service,
                operation,
                attempt + 1,
                backoff,
                exc,
            )
            await sleep(backoff)
            attempt += 1
