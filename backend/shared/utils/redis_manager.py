"""
Redis connection manager for Matchcenter.
Provides the async connection pool and the small key helpers the Redis cache
store needs.
"""
from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class RedisManager:
    """Manages the async Redis connection pool."""

    def __init__(self, settings: Settings | None = None, client: Redis | None = None) -> None:
        self._settings = settings or get_settings()
        self._pool: Optional[Redis] = client

    async def connect(self) -> None:
        """Initialize the connection pool and verify it with a PING."""
        if self._pool is None:
            self._pool = aioredis.from_url(
                self._settings.redis_url_str,
                max_connections=self._settings.redis_max_connections,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_keepalive=True,
                retry_on_timeout=True,
            )
        await self._pool.ping()
        logger.info("redis_connected", url=self._settings.redis_url_str)

    async def disconnect(self) -> None:
        """Graceful shutdown."""
        if self._pool:
            await self._pool.aclose()
            self._pool = None
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, data: str, ttl_s: Optional[float] = None) -> None:
        """Store ``data``; without ``ttl_s`` the key never expires."""
        if ttl_s is None:
            await self.client.set(key, data)
        else:
            await self.client.set(key, data, px=max(int(ttl_s * 1000), 1))

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key under ``prefix``; returns the number removed."""
        removed = 0
        async for key in self.client.scan_iter(match=f"{prefix}*", count=200):
            removed += await self.client.delete(key)
        return removed

    async def count_prefix(self, prefix: str) -> int:
        count = 0
        async for _ in self.client.scan_iter(match=f"{prefix}*", count=200):
            count += 1
        return count
