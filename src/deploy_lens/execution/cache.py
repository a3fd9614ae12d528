"""Short-lived memoization for expensive external lookups."""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    expires_at: float | None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class TTLCache:
    """Async TTL cache with LRU bound and single-flight loading.

    Concurrent callers asking for the same missing key share one load.
    Failed loads are not cached. A stale entry can only cost an extra
    external call, never a wrong answer, so eviction is lazy plus
    :meth:`evict_expired` for explicit sweeps.
    """

    def __init__(
        self,
        default_ttl_seconds: float | None = 1800,
        max_entries: int = 1000,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._default_ttl = default_ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[Hashable, CacheEntry] = OrderedDict()
        self._in_flight: dict[Hashable, asyncio.Future[Any]] = {}
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0

    async def get_or_load(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[Any]],
        *,
        ttl_seconds: float | None = None,
    ) -> Any:
        async with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is not None:
                if not entry.is_expired(now):
                    self._entries.move_to_end(key)
                    self._hits += 1
                    return entry.value
                del self._entries[key]

            self._misses += 1
            in_flight = self._in_flight.get(key)
            if in_flight is None:
                in_flight = asyncio.get_running_loop().create_future()
                self._in_flight[key] = in_flight
                should_load = True
            else:
                should_load = False

        if not should_load:
            return await asyncio.shield(in_flight)

        try:
            value = await loader()
        except BaseException as exc:
            async with self._lock:
                future = self._in_flight.pop(key, None)
                if future and not future.done():
                    if isinstance(exc, asyncio.CancelledError):
                        future.cancel()
                    else:
                        future.set_exception(exc)
                        # Mark retrieved so an unobserved failure does not warn.
                        future.exception()
            raise

        async with self._lock:
            self._store(key, value, ttl_seconds)
            future = self._in_flight.pop(key, None)
            if future and not future.done():
                future.set_result(value)

        return value

    async def get(self, key: Hashable) -> Any | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.value

    async def set(self, key: Hashable, value: Any, *, ttl_seconds: float | None = None) -> None:
        async with self._lock:
            self._store(key, value, ttl_seconds)

    async def evict_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict[str, int]:
        now = self._clock()
        expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
        return {
            "total": len(self._entries),
            "expired": expired,
            "active": len(self._entries) - expired,
            "pending": len(self._in_flight),
            "hits": self._hits,
            "misses": self._misses,
        }

    def _store(self, key: Hashable, value: Any, ttl_seconds: float | None) -> None:
        now = self._clock()
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        # ttl <= 0 means the value never expires (commit metadata is immutable)
        expires_at = now + ttl if ttl is not None and ttl > 0 else None
        self._entries[key] = CacheEntry(value=value, stored_at=now, expires_at=expires_at)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
