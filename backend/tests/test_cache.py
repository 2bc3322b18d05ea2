"""
Unit tests for the lifecycle-tiered, single-flight cache and its Redis store.

Run: pytest backend/tests/test_cache.py -v
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from shared.config import Settings
from shared.errors import UpstreamUnavailable
from shared.models.domain import ExternalMatchRecord
from shared.models.enums import LifecycleCategory
from shared.utils.redis_manager import RedisManager
from resolver.cache import CacheEntry, RedisCacheStore, TieredCache
from resolver.lifecycle import classify


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def status_of(value: dict[str, str]) -> LifecycleCategory:
    return classify(value.get("status"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> TieredCache[dict[str, str]]:
    return TieredCache(classify_fn=status_of, upcoming_ttl_s=300.0, clock=clock)


# ── Storage policy ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_finished_value_is_fetched_once(cache: TieredCache[dict[str, str]]) -> None:
    fetch = AsyncMock(return_value={"status": "Over", "score": "2-1"})

    first = await cache.get_or_fetch(("L1", "M1"), fetch)
    second = await cache.get_or_fetch(("L1", "M1"), fetch)

    assert first == second == {"status": "Over", "score": "2-1"}
    assert fetch.await_count == 1


@pytest.mark.asyncio
async def test_live_value_is_refetched_every_call(cache: TieredCache[dict[str, str]]) -> None:
    fetch = AsyncMock(return_value={"status": "Live"})

    await cache.get_or_fetch(("L1", "M1"), fetch)
    await cache.get_or_fetch(("L1", "M1"), fetch)

    assert fetch.await_count == 2
    assert (await cache.stats())["entries"] == 0


@pytest.mark.asyncio
async def test_upcoming_value_expires_after_ttl(
    cache: TieredCache[dict[str, str]],
    clock: FakeClock,
) -> None:
    fetch = AsyncMock(return_value={"status": "Scheduled"})

    await cache.get_or_fetch(("L1", "M1"), fetch)
    clock.advance(299)
    await cache.get_or_fetch(("L1", "M1"), fetch)
    assert fetch.await_count == 1

    clock.advance(2)
    await cache.get_or_fetch(("L1", "M1"), fetch)
    assert fetch.await_count == 2


@pytest.mark.asyncio
async def test_other_value_is_not_stored(cache: TieredCache[dict[str, str]]) -> None:
    fetch = AsyncMock(return_value={"status": "Postponed"})

    await cache.get_or_fetch(("L1", "M1"), fetch)
    await cache.get_or_fetch(("L1", "M1"), fetch)

    assert fetch.await_count == 2


@pytest.mark.asyncio
async def test_category_hint_applies_only_to_other(cache: TieredCache[dict[str, str]]) -> None:
    unknown = AsyncMock(return_value={"status": "???"})
    await cache.get_or_fetch(("L1", "M1"), unknown, category_hint=LifecycleCategory.FINISHED)
    await cache.get_or_fetch(("L1", "M1"), unknown, category_hint=LifecycleCategory.FINISHED)
    assert unknown.await_count == 1

    live = AsyncMock(return_value={"status": "Live"})
    await cache.get_or_fetch(("L1", "M2"), live, category_hint=LifecycleCategory.FINISHED)
    await cache.get_or_fetch(("L1", "M2"), live, category_hint=LifecycleCategory.FINISHED)
    assert live.await_count == 2


@pytest.mark.asyncio
async def test_none_result_is_not_stored(cache: TieredCache[dict[str, str]]) -> None:
    fetch = AsyncMock(return_value=None)

    assert await cache.get_or_fetch(("L1", "M1"), fetch) is None
    assert await cache.get_or_fetch(("L1", "M1"), fetch) is None
    assert fetch.await_count == 2


@pytest.mark.asyncio
async def test_failure_is_not_cached(cache: TieredCache[dict[str, str]]) -> None:
    fetch = AsyncMock(side_effect=[UpstreamUnavailable("smc", "timeout"), {"status": "Over"}])

    with pytest.raises(UpstreamUnavailable):
        await cache.get_or_fetch(("L1", "M1"), fetch)

    assert await cache.get_or_fetch(("L1", "M1"), fetch) == {"status": "Over"}
    assert fetch.await_count == 2


@pytest.mark.asyncio
async def test_keys_are_independent(cache: TieredCache[dict[str, str]]) -> None:
    fetch = AsyncMock(return_value={"status": "Over"})

    await cache.get_or_fetch(("L1", "M1"), fetch)
    await cache.get_or_fetch(("L1", "M2"), fetch)

    assert fetch.await_count == 2


# ── Single flight ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_concurrent_callers_share_one_fetch(cache: TieredCache[dict[str, str]]) -> None:
    calls = 0
    release = asyncio.Event()

    async def slow_fetch() -> Optional[dict[str, str]]:
        nonlocal calls
        calls += 1
        await release.wait()
        return {"status": "Live"}

    waiters = [asyncio.create_task(cache.get_or_fetch(("L1", "M1"), slow_fetch)) for _ in range(10)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*waiters)

    assert calls == 1
    assert all(r == {"status": "Live"} for r in results)


@pytest.mark.asyncio
async def test_concurrent_failure_reaches_every_waiter(cache: TieredCache[dict[str, str]]) -> None:
    calls = 0
    release = asyncio.Event()

    async def failing_fetch() -> Optional[dict[str, str]]:
        nonlocal calls
        calls += 1
        await release.wait()
        raise UpstreamUnavailable("smc", "server error 503", status_code=503)

    waiters = [asyncio.create_task(cache.get_or_fetch(("L1", "M1"), failing_fetch)) for _ in range(5)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)

    assert calls == 1
    assert all(isinstance(r, UpstreamUnavailable) for r in results)
    assert (await cache.stats())["in_flight"] == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_fetch(cache: TieredCache[dict[str, str]]) -> None:
    release = asyncio.Event()
    fetch_calls = 0

    async def slow_fetch() -> Optional[dict[str, str]]:
        nonlocal fetch_calls
        fetch_calls += 1
        await release.wait()
        return {"status": "Over"}

    impatient = asyncio.create_task(cache.get_or_fetch(("L1", "M1"), slow_fetch))
    patient = asyncio.create_task(cache.get_or_fetch(("L1", "M1"), slow_fetch))
    await asyncio.sleep(0)
    impatient.cancel()
    release.set()

    assert await patient == {"status": "Over"}
    assert fetch_calls == 1


# ── Reset ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_reset_drops_stored_entries(cache: TieredCache[dict[str, str]]) -> None:
    fetch = AsyncMock(return_value={"status": "Over"})
    await cache.get_or_fetch(("L1", "M1"), fetch)

    await cache.reset()
    await cache.get_or_fetch(("L1", "M1"), fetch)

    assert fetch.await_count == 2


# ── Lock bookkeeping ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_per_key_locks_are_released_after_each_lookup(cache: TieredCache[dict[str, str]]) -> None:
    fetch = AsyncMock(return_value={"status": "Live"})

    for i in range(200):
        await cache.get_or_fetch(("L1", f"M{i}"), fetch)

    stats = await cache.stats()
    assert stats["locks"] == 0
    assert stats["in_flight"] == 0


@pytest.mark.asyncio
async def test_locks_are_released_after_concurrent_and_failed_lookups(
    cache: TieredCache[dict[str, str]],
) -> None:
    release = asyncio.Event()

    async def slow_fetch() -> Optional[dict[str, str]]:
        await release.wait()
        return {"status": "Over"}

    failing = AsyncMock(side_effect=UpstreamUnavailable("smc", "timeout"))

    waiters = [asyncio.create_task(cache.get_or_fetch(("L1", "M1"), slow_fetch)) for _ in range(5)]
    await asyncio.sleep(0)
    release.set()
    await asyncio.gather(*waiters)
    with pytest.raises(UpstreamUnavailable):
        await cache.get_or_fetch(("L1", "M2"), failing)

    assert (await cache.stats())["locks"] == 0


# ── Redis store ─────────────────────────────────────────────────────────

@pytest.fixture
def redis_manager() -> MagicMock:
    redis = MagicMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete_prefix = AsyncMock(return_value=0)
    redis.count_prefix = AsyncMock(return_value=0)
    redis.disconnect = AsyncMock()
    return redis


@pytest.fixture
def redis_store(redis_manager: MagicMock, clock: FakeClock) -> RedisCacheStore[ExternalMatchRecord]:
    return RedisCacheStore(redis_manager, ExternalMatchRecord, namespace="test:match", clock=clock)


RECORD = ExternalMatchRecord(
    match_id="M1",
    league_id="L1",
    status="Scheduled",
    kickoff=datetime(2025, 6, 1, 13, 0, tzinfo=timezone.utc),
    goals_home=0,
)


@pytest.mark.asyncio
async def test_redis_store_round_trips_entry(
    redis_store: RedisCacheStore[ExternalMatchRecord],
    redis_manager: MagicMock,
    clock: FakeClock,
) -> None:
    entry = CacheEntry(
        value=RECORD,
        category=LifecycleCategory.UPCOMING,
        created_at=clock(),
        expires_at=clock() + 300.0,
    )

    await redis_store.put(("L1", "M1"), entry)

    key, payload = redis_manager.set.await_args.args
    assert key == "test:match:L1:M1"
    assert redis_manager.set.await_args.kwargs["ttl_s"] == 300.0

    redis_manager.get.return_value = payload
    loaded = await redis_store.get(("L1", "M1"))

    assert loaded is not None
    assert loaded.value == RECORD
    assert loaded.value.kickoff == RECORD.kickoff
    assert loaded.category == LifecycleCategory.UPCOMING
    assert loaded.expires_at == entry.expires_at


@pytest.mark.asyncio
async def test_redis_store_finished_entry_has_no_ttl(
    redis_store: RedisCacheStore[ExternalMatchRecord],
    redis_manager: MagicMock,
    clock: FakeClock,
) -> None:
    finished = RECORD.model_copy(update={"status": "Over"})
    await redis_store.put(("L1", "M1"), CacheEntry(finished, LifecycleCategory.FINISHED, clock()))

    assert redis_manager.set.await_args.kwargs["ttl_s"] is None


@pytest.mark.asyncio
async def test_redis_store_corrupt_entry_is_a_miss(
    redis_store: RedisCacheStore[ExternalMatchRecord],
    redis_manager: MagicMock,
) -> None:
    redis_manager.get.return_value = "not json"
    assert await redis_store.get(("L1", "M1")) is None

    redis_manager.get.return_value = '{"value": {"status": "Over"}, "category": "finished", "created_at": 1}'
    assert await redis_store.get(("L1", "M1")) is None


@pytest.mark.asyncio
async def test_redis_errors_degrade_without_raising(
    redis_store: RedisCacheStore[ExternalMatchRecord],
    redis_manager: MagicMock,
    clock: FakeClock,
) -> None:
    down = RedisConnectionError("connection refused")
    redis_manager.get.side_effect = down
    redis_manager.set.side_effect = down
    redis_manager.delete_prefix.side_effect = down
    redis_manager.count_prefix.side_effect = down

    assert await redis_store.get(("L1", "M1")) is None
    await redis_store.put(("L1", "M1"), CacheEntry(RECORD, LifecycleCategory.UPCOMING, clock(), clock() + 60))
    await redis_store.clear()
    assert await redis_store.size() == 0


@pytest.mark.asyncio
async def test_tiered_cache_over_unavailable_redis_still_fetches(
    redis_store: RedisCacheStore[ExternalMatchRecord],
    redis_manager: MagicMock,
    clock: FakeClock,
) -> None:
    redis_manager.get.side_effect = RedisConnectionError("connection refused")
    redis_manager.count_prefix.side_effect = RedisConnectionError("connection refused")
    cache: TieredCache[ExternalMatchRecord] = TieredCache(
        classify_fn=lambda r: classify(r.status), store=redis_store, clock=clock
    )
    fetch = AsyncMock(return_value=RECORD)

    assert await cache.get_or_fetch(("L1", "M1"), fetch) == RECORD
    assert await cache.stats() == {"entries": 0, "in_flight": 0, "locks": 0}
    await cache.reset()


@pytest.mark.asyncio
async def test_redis_manager_sets_millisecond_expiry_only_with_ttl(settings: Settings) -> None:
    client = MagicMock()
    client.set = AsyncMock(return_value=True)
    manager = RedisManager(settings, client=client)

    await manager.set("k1", "v", ttl_s=300.0)
    await manager.set("k2", "v", ttl_s=0.0001)
    await manager.set("k3", "v")

    assert client.set.await_args_list[0].kwargs == {"px": 300_000}
    assert client.set.await_args_list[1].kwargs == {"px": 1}
    assert client.set.await_args_list[2].kwargs == {}
