"""
Service container for the API process.

Owns every long-lived object: source adapters and their HTTP pools, the
tiered cache and its store, the resolver and the page builders. Built from
Settings, started in the FastAPI lifespan and closed on shutdown.
"""
from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from redis.exceptions import RedisError

from shared.config import CacheBackend, Settings, get_settings
from shared.models.domain import ExternalMatchRecord
from shared.utils.logging import get_logger
from shared.utils.redis_manager import RedisManager

from builder.live import LiveSnapshotBuilder
from builder.match_list import MatchListBuilder
from builder.team_page import TeamPageBuilder
from ingest.providers.frontspace import FrontspaceSource
from ingest.providers.smc import SMCSource
from ingest.providers.sportomedia import SportomediaSource
from resolver.cache import CacheStore, MemoryCacheStore, RedisCacheStore, TieredCache
from resolver.service import MatchResolver, external_category
from scheduler.engine.polling import AdaptivePollingEngine

logger = get_logger(__name__)


class ServiceContainer:
    def __init__(
        self,
        settings: Settings | None = None,
        cms: FrontspaceSource | None = None,
        external: SMCSource | None = None,
        feed: SportomediaSource | None = None,
        store: CacheStore[ExternalMatchRecord] | None = None,
        now_fn: Callable[[], datetime] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or get_settings()
        s = self.settings
        now = now_fn or (lambda: datetime.now(timezone.utc))
        finished_after = timedelta(hours=s.finished_after_kickoff_h)

        self.redis: RedisManager | None = None
        if store is None and s.cache_backend == CacheBackend.REDIS:
            self.redis = RedisManager(s)
            store = RedisCacheStore(self.redis, ExternalMatchRecord, namespace=s.cache_namespace, clock=clock)

        self.cms = cms or FrontspaceSource(s)
        self.external = external or SMCSource(s)
        self.feed = feed or SportomediaSource(s)

        self.cache: TieredCache[ExternalMatchRecord] = TieredCache(
            classify_fn=lambda record: external_category(record, now(), finished_after),
            store=store if store is not None else MemoryCacheStore(clock=clock),
            upcoming_ttl_s=s.cache_upcoming_ttl_s,
            clock=clock,
        )
        self.resolver = MatchResolver(
            self.cms,
            self.external,
            self.feed,
            self.cache,
            finished_after=finished_after,
            now_fn=now,
        )
        self.live = LiveSnapshotBuilder(self.resolver, self.external, self.feed, now_fn=now)
        self.match_list = MatchListBuilder(s, self.external, now_fn=now, clock=clock)
        self.team_page = TeamPageBuilder(s, self.cms, self.feed)
        self.polling = AdaptivePollingEngine(s)
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        if self.redis is not None:
            await self.redis.connect()
        for source in (self.cms, self.external, self.feed):
            await source.start()
        self._started = True
        logger.info("container_started", cache_backend=self.settings.cache_backend.value)

    async def close(self) -> None:
        for source in (self.cms, self.external, self.feed):
            await source.close()
        await self.cache.close()
        await self.match_list.close()
        self._started = False
        logger.info("container_closed")

    async def reset(self) -> None:
        """Drop cached match records and league lists. Teardown and test isolation only."""
        await self.cache.reset()
        await self.match_list.reset()

    async def ready(self) -> dict[str, bool]:
        """Readiness of the shared infrastructure."""
        redis_ok = True
        if self.redis is not None:
            try:
                await self.redis.client.ping()
            except (RedisError, OSError) as exc:
                logger.warning("readiness_redis_failed", error=str(exc))
                redis_ok = False
        return {"started": self._started, "redis": redis_ok}
