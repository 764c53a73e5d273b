"""
Typed cache keys and the per-resource freshness policy.

A key is rendered from (resource type, id tuple) only, so two resources can
never share a key even when their ids coincide.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from shared.models.enums import ResourceType
from shared.utils.redis_manager import KEY_PREFIX

IdPart = Union[int, str]

_SEPARATOR = ":"

# Seconds. Fixed per resource; callers cannot override.
RESOURCE_TTL_S: dict[ResourceType, int] = {
    ResourceType.CATALOG: 600,
    ResourceType.ENTRANT: 300,
    ResourceType.ENTRANT_HISTORY: 300,
    ResourceType.PICKS: 120,
    ResourceType.LIVE_ROUND: 60,
    ResourceType.FIXTURES: 600,
    ResourceType.LEAGUE_STANDINGS: 300,
    ResourceType.SEASON_FIXTURES: 600,
}

# Number of ids each resource is addressed by.
RESOURCE_ARITY: dict[ResourceType, int] = {
    ResourceType.CATALOG: 0,
    ResourceType.ENTRANT: 1,
    ResourceType.ENTRANT_HISTORY: 1,
    ResourceType.PICKS: 2,        # entrant, round
    ResourceType.LIVE_ROUND: 1,
    ResourceType.FIXTURES: 1,
    ResourceType.LEAGUE_STANDINGS: 2,  # league, page
    ResourceType.SEASON_FIXTURES: 0,
}


def ttl_for(resource: ResourceType) -> int:
    return RESOURCE_TTL_S[resource]


def _check_part(part: object) -> IdPart:
    # bool is an int subclass; True/1 would otherwise collide.
    if isinstance(part, bool) or not isinstance(part, (int, str)):
        raise ValueError(f"cache key id must be int or str, got {type(part).__name__}")
    if isinstance(part, str) and (not part or _SEPARATOR in part):
        raise ValueError(f"cache key id {part!r} is empty or contains {_SEPARATOR!r}")
    return part


@dataclass(frozen=True)
class CacheKey:
    resource: ResourceType
    ids: tuple[IdPart, ...] = ()

    def __post_init__(self) -> None:
        expected = RESOURCE_ARITY[self.resource]
        if len(self.ids) != expected:
            raise ValueError(
                f"{self.resource.value} keys take {expected} id(s), got {len(self.ids)}"
            )
        for part in self.ids:
            _check_part(part)

    @property
    def ttl_s(self) -> int:
        return ttl_for(self.resource)

    def render(self) -> str:
        return _SEPARATOR.join([KEY_PREFIX, self.resource.value, *(str(p) for p in self.ids)])

    def __str__(self) -> str:
        return self.render()
