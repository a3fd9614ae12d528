from __future__ import annotations

import asyncio

import pytest

from deploy_lens.execution.cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _counting_loader(value: object = "value"):
    calls = {"count": 0}

    async def loader() -> object:
        calls["count"] += 1
        return value

    return loader, calls


@pytest.mark.asyncio
async def test_get_or_load_caches_value() -> None:
    cache = TTLCache(default_ttl_seconds=60)
    loader, calls = _counting_loader({"sha": "abc"})

    first = await cache.get_or_load("commit", loader)
    second = await cache.get_or_load("commit", loader)

    assert first == second == {"sha": "abc"}
    assert calls["count"] == 1
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["active"] == 1


@pytest.mark.asyncio
async def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache = TTLCache(default_ttl_seconds=10, clock=clock)
    loader, calls = _counting_loader()

    await cache.get_or_load("key", loader)
    clock.now += 11
    assert cache.stats()["expired"] == 1
    await cache.get_or_load("key", loader)

    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_non_positive_ttl_never_expires() -> None:
    clock = FakeClock()
    cache = TTLCache(default_ttl_seconds=10, clock=clock)
    loader, calls = _counting_loader()

    await cache.get_or_load("commit", loader, ttl_seconds=0)
    clock.now += 10_000
    await cache.get_or_load("commit", loader, ttl_seconds=0)

    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_load() -> None:
    cache = TTLCache()
    gate = asyncio.Event()
    calls = {"count": 0}

    async def slow_loader() -> str:
        calls["count"] += 1
        await gate.wait()
        return "loaded"

    first = asyncio.create_task(cache.get_or_load("key", slow_loader))
    second = asyncio.create_task(cache.get_or_load("key", slow_loader))
    for _ in range(5):
        await asyncio.sleep(0)
    assert cache.stats()["pending"] == 1

    gate.set()

    assert await asyncio.gather(first, second) == ["loaded", "loaded"]
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_failed_loads_are_not_cached() -> None:
    cache = TTLCache()
    attempts = {"count": 0}

    async def flaky() -> str:
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise RuntimeError("github down")
        return "recovered"

    with pytest.raises(RuntimeError):
        await cache.get_or_load("key", flaky)

    assert await cache.get_or_load("key", flaky) == "recovered"
    assert cache.stats()["pending"] == 0


@pytest.mark.asyncio
async def test_waiters_see_the_loader_failure() -> None:
    cache = TTLCache()
    gate = asyncio.Event()

    async def failing() -> str:
        await gate.wait()
        raise RuntimeError("boom")

    first = asyncio.create_task(cache.get_or_load("key", failing))
    second = asyncio.create_task(cache.get_or_load("key", failing))
    for _ in range(5):
        await asyncio.sleep(0)
    gate.set()

    results = await asyncio.gather(first, second, return_exceptions=True)

    assert all(isinstance(result, RuntimeError) for result in results)


@pytest.mark.asyncio
async def test_lru_bound_evicts_least_recently_used() -> None:
    cache = TTLCache(max_entries=2)
    await cache.set("a", 1)
    await cache.set("b", 2)
    assert await cache.get("a") == 1

    await cache.set("c", 3)

    assert await cache.get("b") is None
    assert await cache.get("a") == 1
    assert await cache.get("c") == 3


@pytest.mark.asyncio
async def test_evict_expired_sweeps_only_stale_entries() -> None:
    clock = FakeClock()
    cache = TTLCache(default_ttl_seconds=5, clock=clock)
    await cache.set("short", 1)
    await cache.set("long", 2, ttl_seconds=60)
    clock.now += 6

    assert await cache.evict_expired() == 1
    assert await cache.get("long") == 2

    cache.clear()
    assert cache.stats()["total"] == 0
