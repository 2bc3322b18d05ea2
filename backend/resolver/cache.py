"""
Lifecycle-tiered cache with single-flight fetch coalescing.

Storage policy is chosen after the fetch, from the category of the value just
fetched:

    finished  -> stored permanently (results are immutable)
    upcoming  -> stored with a TTL
    live/other -> delivered to every waiter, never stored

Concurrent callers for one key share a single in-flight fetch, success or
failure. Failures and not-found results are never stored.
"""
from __future__ import annotations

import abc
import asyncio
import json
import time
from dataclasses import dataclass
from functools import partial
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError

from shared.models.enums import LifecycleCategory
from shared.utils.logging import get_logger
from shared.utils.metrics import CACHE_ENTRIES, CACHE_LOOKUPS, CACHE_STORES
from shared.utils.redis_manager import RedisManager

logger = get_logger(__name__)

T = TypeVar("T")
CacheKey = tuple[str, str]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    category: LifecycleCategory
    created_at: float
    expires_at: Optional[float] = None

    def is_fresh(self, now: float) -> bool:
        return self.expires_at is None or now < self.expires_at


class CacheStore(abc.ABC, Generic[T]):
    """Storage backend. Only TieredCache writes to it."""

    @abc.abstractmethod
    async def get(self, key: CacheKey) -> Optional[CacheEntry[T]]:
        ...

    @abc.abstractmethod
    async def put(self, key: CacheKey, entry: CacheEntry[T]) -> None:
        ...

    @abc.abstractmethod
    async def clear(self) -> None:
        ...

    @abc.abstractmethod
    async def size(self) -> int:
        ...

    async def close(self) -> None:
        return None


class MemoryCacheStore(CacheStore[T]):
    """Process-local dict store. Expired entries are dropped on read."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._entries: dict[CacheKey, CacheEntry[T]] = {}
        self._clock = clock

    async def get(self, key: CacheKey) -> Optional[CacheEntry[T]]:
        entry = self._entries.get(key)
        if entry is not None and not entry.is_fresh(self._clock()):
            del self._entries[key]
            CACHE_ENTRIES.set(len(self._entries))
            return None
        return entry

    async def put(self, key: CacheKey, entry: CacheEntry[T]) -> None:
        self._entries[key] = entry
        CACHE_ENTRIES.set(len(self._entries))

    async def clear(self) -> None:
        self._entries.clear()
        CACHE_ENTRIES.set(0)

    async def size(self) -> int:
        return len(self._entries)


class RedisCacheStore(CacheStore[T]):
    """
    Redis-backed store shared across API workers. Values are pydantic models
    stored as JSON; Redis expiry mirrors the entry TTL. Redis errors degrade
    to a cache miss rather than failing the request.
    """

    def __init__(
        self,
        redis: RedisManager,
        model: type[BaseModel],
        namespace: str = "mc:match",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self._model = model
        self._namespace = namespace
        self._clock = clock

    def _key(self, key: CacheKey) -> str:
        return f"{self._namespace}:{key[0]}:{key[1]}"

    async def get(self, key: CacheKey) -> Optional[CacheEntry[T]]:
        try:
            raw = await self._redis.get(self._key(key))
        except RedisError as exc:
            logger.warning("cache_redis_get_failed", key=self._key(key), error=str(exc))
            return None
        if raw is None:
            return None
        try:
            doc = json.loads(raw)
            value = self._model.model_validate(doc["value"])
            return CacheEntry(
                value=value,  # type: ignore[arg-type]
                category=LifecycleCategory(doc["category"]),
                created_at=float(doc["created_at"]),
                expires_at=doc.get("expires_at"),
            )
        except (ValueError, KeyError, ValidationError) as exc:
            logger.warning("cache_redis_entry_corrupt", key=self._key(key), error=str(exc))
            return None

    async def put(self, key: CacheKey, entry: CacheEntry[T]) -> None:
        value = entry.value
        doc = {
            "value": value.model_dump(mode="json") if isinstance(value, BaseModel) else value,
            "category": entry.category.value,
            "created_at": entry.created_at,
            "expires_at": entry.expires_at,
        }
        ttl = None if entry.expires_at is None else entry.expires_at - self._clock()
        try:
            await self._redis.set(self._key(key), json.dumps(doc), ttl_s=ttl)
        except RedisError as exc:
            logger.warning("cache_redis_put_failed", key=self._key(key), error=str(exc))

    async def clear(self) -> None:
        try:
            await self._redis.delete_prefix(f"{self._namespace}:")
        except RedisError as exc:
            logger.warning("cache_redis_clear_failed", namespace=self._namespace, error=str(exc))

    async def size(self) -> int:
        try:
            return await self._redis.count_prefix(f"{self._namespace}:")
        except RedisError as exc:
            logger.warning("cache_redis_size_failed", namespace=self._namespace, error=str(exc))
            return 0

    async def close(self) -> None:
        await self._redis.disconnect()


class TieredCache(Generic[T]):
    """
    Single-flight, lifecycle-tiered cache keyed by (league id, match id).

    ``classify_fn`` maps a fetched value to its lifecycle category. It runs
    once per successful fetch and decides the storage policy.
    """

    def __init__(
        self,
        classify_fn: Callable[[T], LifecycleCategory],
        store: CacheStore[T] | None = None,
        upcoming_ttl_s: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._classify = classify_fn
        self._clock = clock
        self._store: CacheStore[T] = store if store is not None else MemoryCacheStore(clock=clock)
        self._upcoming_ttl_s = upcoming_ttl_s
        self._locks: dict[CacheKey, asyncio.Lock] = {}
        self._lock_refs: dict[CacheKey, int] = {}
        self._inflight: dict[CacheKey, asyncio.Task[Optional[T]]] = {}

    def _lock_for(self, key: CacheKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_refs[key] = self._lock_refs.get(key, 0) + 1
        return lock

    def _release_lock(self, key: CacheKey) -> None:
        # Dropped once no caller holds or waits on it.
        refs = self._lock_refs[key] - 1
        if refs:
            self._lock_refs[key] = refs
        else:
            del self._lock_refs[key]
            del self._locks[key]

    async def get_or_fetch(
        self,
        key: CacheKey,
        fetch_fn: Callable[[], Awaitable[Optional[T]]],
        category_hint: Optional[LifecycleCategory] = None,
    ) -> Optional[T]:
        """
        Return the stored value for ``key`` or run ``fetch_fn`` once for all
        concurrent callers. Exceptions from ``fetch_fn`` reach every waiter
        and leave nothing behind, so the next call fetches again.

        ``category_hint`` only applies when the fetched value classifies as
        OTHER; it never overrides a definite classification.
        """
        lock = self._lock_for(key)
        try:
            async with lock:
                entry = await self._store.get(key)
                if entry is not None and entry.is_fresh(self._clock()):
                    CACHE_LOOKUPS.labels(result="hit").inc()
                    return entry.value

                flight = self._inflight.get(key)
                if flight is None:
                    CACHE_LOOKUPS.labels(result="miss").inc()
                    flight = asyncio.ensure_future(self._fetch_and_store(key, fetch_fn, category_hint))
                    self._inflight[key] = flight
                    flight.add_done_callback(partial(self._flight_done, key))
                else:
                    CACHE_LOOKUPS.labels(result="coalesced").inc()
        finally:
            self._release_lock(key)

        # A waiter's cancellation must not cancel the fetch others depend on.
        return await asyncio.shield(flight)

    def _flight_done(self, key: CacheKey, task: asyncio.Task[Optional[T]]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("cache_fetch_failed", key=key, error=str(task.exception()))

    async def _fetch_and_store(
        self,
        key: CacheKey,
        fetch_fn: Callable[[], Awaitable[Optional[T]]],
        category_hint: Optional[LifecycleCategory],
    ) -> Optional[T]:
        value = await fetch_fn()
        if value is None:
            return None

        category = self._classify(value)
        if category == LifecycleCategory.OTHER and category_hint is not None:
            category = category_hint

        now = self._clock()
        if category == LifecycleCategory.FINISHED:
            await self._store.put(key, CacheEntry(value=value, category=category, created_at=now))
            stored = True
        elif category == LifecycleCategory.UPCOMING:
            await self._store.put(
                key,
                CacheEntry(
                    value=value,
                    category=category,
                    created_at=now,
                    expires_at=now + self._upcoming_ttl_s,
                ),
            )
            stored = True
        else:
            stored = False

        CACHE_STORES.labels(category=category.value, stored=str(stored).lower()).inc()
        logger.debug("cache_policy_applied", key=key, category=category.value, stored=stored)
        return value

    async def reset(self) -> None:
        """Drop every entry. Teardown and test isolation only."""
        await self._store.clear()
        logger.info("cache_reset")

    async def stats(self) -> dict[str, int]:
        return {
            "entries": await self._store.size(),
            "in_flight": len(self._inflight),
            "locks": len(self._locks),
        }

    async def close(self) -> None:
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
        await self._store.close()
