"""
Redis connection manager for the fantasy live services.
Provides the async connection pool and the key/value, sorted-set and lease
primitives the cache and the news detector are built on.
"""
from __future__ import annotations

from typing import Optional, Union

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
KEY_PREFIX = "fl"
NEWS_SNAPSHOT_KEY = "fl:news:snapshot"
NEWS_EVENTS_KEY = "fl:news:events"
NEWS_LAST_CHECKED_KEY = "fl:news:last_checked"
NEWS_LEASE_KEY = "fl:news:lease"

ScoreBound = Union[int, float, str]


class RedisManager:
    """Manages the async Redis connection pool and exposes the store contract."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._pool: Optional[Redis] = None

    async def connect(self) -> None:
        """Initialize the connection pool."""
        self._pool = aioredis.from_url(
            self._settings.redis_url_str,
            max_connections=self._settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
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

    # ── Key/value ───────────────────────────────────────────────────────
    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_s: int | None = None) -> None:
        """SET, with EX when a TTL is given. Last writer wins."""
        await self.client.set(key, value, ex=ttl_s)

    # ── Sorted sets ─────────────────────────────────────────────────────
    async def zadd(self, key: str, members: dict[str, float]) -> int:
        """Add members with their scores. Returns the number of new members."""
        if not members:
            return 0
        return await self.client.zadd(key, members)

    async def zrangebyscore(self, key: str, min_score: ScoreBound, max_score: ScoreBound) -> list[str]:
        """Members with min <= score <= max, ascending. Bounds accept "(" exclusivity and "-inf"/"+inf"."""
        return await self.client.zrangebyscore(key, min_score, max_score)

    async def zremrangebyscore(self, key: str, min_score: ScoreBound, max_score: ScoreBound) -> int:
        return await self.client.zremrangebyscore(key, min_score, max_score)

    # ── Leases ──────────────────────────────────────────────────────────

    # Lua script: atomically delete only if we hold the lease
    _RELEASE_LEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    redis.call("del", KEYS[1])
    return 1
end
return 0
"""

    async def try_acquire_lease(self, key: str, holder: str, ttl_s: int) -> bool:
        """Acquire a lease with SET NX EX. The TTL bounds a crashed holder."""
        return bool(await self.client.set(key, holder, nx=True, ex=ttl_s))

    async def release_lease(self, key: str, holder: str) -> bool:
        """Atomically release the lease only if ``holder`` still owns it."""
        result = await self.client.eval(self._RELEASE_LEASE_SCRIPT, 1, key, holder)
        return bool(result)
