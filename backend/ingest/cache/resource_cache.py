"""
Cache-aside access to upstream resources.

Reads go to the store first; a miss triggers exactly one upstream call whose
result is written back with the resource's fixed TTL. Upstream failures are
never written, so the next read simply tries again.
"""
from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Protocol

from ingest.cache.keys import CacheKey, IdPart
from ingest.providers.fantasy import FantasyApiClient
from shared.models.enums import ResourceType
from shared.utils.logging import get_logger
from shared.utils.metrics import CACHE_REQUESTS

logger = get_logger(__name__)


class CacheStore(Protocol):
    """The key/value subset of RedisManager this module depends on."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_s: int | None = None) -> None: ...


Fetcher = Callable[..., Awaitable[Any]]


def _fetchers(client: FantasyApiClient) -> dict[ResourceType, Fetcher]:
    return {
        ResourceType.CATALOG: client.fetch_catalog,
        ResourceType.ENTRANT: client.fetch_entrant,
        ResourceType.ENTRANT_HISTORY: client.fetch_entrant_history,
        ResourceType.PICKS: client.fetch_picks,
        ResourceType.LIVE_ROUND: client.fetch_live_round,
        ResourceType.FIXTURES: client.fetch_fixtures,
        ResourceType.LEAGUE_STANDINGS: client.fetch_league_standings,
        ResourceType.SEASON_FIXTURES: client.fetch_season_fixtures,
    }


class ResourceCache:
    def __init__(self, store: CacheStore, client: FantasyApiClient) -> None:
        self._store = store
        self._fetchers = _fetchers(client)

    async def get(self, resource: ResourceType, ids: tuple[IdPart, ...] = ()) -> Any:
        """
        Return the cached value for ``(resource, ids)``, filling it on miss.

        Raises:
            UpstreamUnavailable: The value was not cached and the upstream failed.
            ValueError: ``ids`` does not fit the resource's key shape.
        """
        key = CacheKey(resource, tuple(ids))
        rendered = key.render()

        raw = await self._store.get(rendered)
        if raw is not None:
            try:
                value = json.loads(raw)
            except ValueError:
                # Unreadable entry: refill it like a miss.
                CACHE_REQUESTS.labels(resource=resource.value, result="corrupt").inc()
                logger.warning("cache_entry_corrupt", key=rendered)
            else:
                CACHE_REQUESTS.labels(resource=resource.value, result="hit").inc()
                logger.debug("cache_hit", key=rendered)
                return value
        else:
            CACHE_REQUESTS.labels(resource=resource.value, result="miss").inc()
            logger.debug("cache_miss", key=rendered)

        value = await self._fetchers[resource](*key.ids)
        await self._store.set(rendered, json.dumps(value), ttl_s=key.ttl_s)
        return value

    # ── Typed accessors ─────────────────────────────────────────────────
    async def get_catalog(self) -> dict[str, Any]:
        return await self.get(ResourceType.CATALOG)

    async def get_entrant(self, entrant_id: int) -> dict[str, Any]:
        return await self.get(ResourceType.ENTRANT, (entrant_id,))

    async def get_entrant_history(self, entrant_id: int) -> dict[str, Any]:
        return await self.get(ResourceType.ENTRANT_HISTORY, (entrant_id,))

    async def get_picks(self, entrant_id: int, round_id: int) -> dict[str, Any]:
        return await self.get(ResourceType.PICKS, (entrant_id, round_id))

    async def get_live_round(self, round_id: int) -> dict[str, Any]:
        return await self.get(ResourceType.LIVE_ROUND, (round_id,))

    async def get_fixtures(self, round_id: int) -> list[dict[str, Any]]:
        return await self.get(ResourceType.FIXTURES, (round_id,))

    async def get_season_fixtures(self) -> list[dict[str, Any]]:
        return await self.get(ResourceType.SEASON_FIXTURES)

    async def get_league_standings(self, league_id: int, page: int = 1) -> dict[str, Any]:
        return await self.get(ResourceType.LEAGUE_STANDINGS, (league_id, page))
