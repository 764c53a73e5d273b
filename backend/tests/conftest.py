"""
Shared fixtures: an in-memory double of the Redis store contract and
builders for upstream payloads.
"""
from __future__ import annotations

from typing import Any, Optional, Union
from unittest.mock import AsyncMock, MagicMock

import pytest

from ingest.providers.fantasy import FantasyApiClient


class InMemoryStore:
    """Implements the RedisManager methods the cache and detector use."""

    def __init__(self) -> None:
        self.now = 0.0
        self.values: dict[str, tuple[str, Optional[float]]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.set_calls: list[tuple[str, Optional[int]]] = []

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def get(self, key: str) -> Optional[str]:
        entry = self.values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self.now >= expires_at:
            del self.values[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_s: int | None = None) -> None:
        self.set_calls.append((key, ttl_s))
        self.values[key] = (value, self.now + ttl_s if ttl_s else None)

    async def zadd(self, key: str, members: dict[str, float]) -> int:
        zset = self.zsets.setdefault(key, {})
        added = sum(1 for m in members if m not in zset)
        zset.update(members)
        return added

    @staticmethod
    def _in_range(score: float, lo: Union[int, float, str], hi: Union[int, float, str]) -> bool:
        def check(bound: Union[int, float, str], is_min: bool) -> bool:
            if bound in ("-inf", "+inf"):
                return True
            exclusive = isinstance(bound, str) and bound.startswith("(")
            value = float(bound[1:]) if exclusive else float(bound)
            if is_min:
                return score > value if exclusive else score >= value
            return score < value if exclusive else score <= value

        return check(lo, True) and check(hi, False)

    async def zrangebyscore(self, key, min_score, max_score) -> list[str]:
        zset = self.zsets.get(key, {})
        hits = [(s, m) for m, s in zset.items() if self._in_range(s, min_score, max_score)]
        return [m for s, m in sorted(hits)]

    async def zremrangebyscore(self, key, min_score, max_score) -> int:
        zset = self.zsets.get(key, {})
        doomed = [m for m, s in zset.items() if self._in_range(s, min_score, max_score)]
        for member in doomed:
            del zset[member]
        return len(doomed)

    async def try_acquire_lease(self, key: str, holder: str, ttl_s: int) -> bool:
        if await self.get(key) is not None:
            return False
        await self.set(key, holder, ttl_s)
        return True

    async def release_lease(self, key: str, holder: str) -> bool:
        if await self.get(key) == holder:
            del self.values[key]
            return True
        return False


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def api_client() -> MagicMock:
    client = MagicMock(spec=FantasyApiClient)
    for name in (
        "fetch_catalog",
        "fetch_entrant",
        "fetch_entrant_history",
        "fetch_picks",
        "fetch_live_round",
        "fetch_fixtures",
        "fetch_league_standings",
        "fetch_season_fixtures",
    ):
        setattr(client, name, AsyncMock())
    return client


# ── Payload builders ────────────────────────────────────────────────────

def make_player(
    player_id: int,
    team: int = 1,
    element_type: int = 3,
    news: str = "",
    news_added: Optional[str] = None,
    status: str = "a",
    chance_next: Optional[int] = None,
    chance_this: Optional[int] = None,
) -> dict[str, Any]:
    return {
        "id": player_id,
        "first_name": f"First{player_id}",
        "second_name": f"Second{player_id}",
        "web_name": f"Player{player_id}",
        "team": team,
        "element_type": element_type,
        "now_cost": 55,
        "news": news,
        "news_added": news_added,
        "status": status,
        "chance_of_playing_next_round": chance_next,
        "chance_of_playing_this_round": chance_this,
    }


def make_catalog(players: list[dict[str, Any]], current_round: int = 5) -> dict[str, Any]:
    return {
        "elements": players,
        "teams": [
            {"id": 1, "name": "Arsenal", "short_name": "ARS"},
            {"id": 2, "name": "Chelsea", "short_name": "CHE"},
            {"id": 3, "name": "Liverpool", "short_name": "LIV"},
        ],
        "element_types": [
            {"id": 1, "singular_name_short": "GKP"},
            {"id": 2, "singular_name_short": "DEF"},
            {"id": 3, "singular_name_short": "MID"},
            {"id": 4, "singular_name_short": "FWD"},
        ],
        "events": [
            {"id": r, "is_current": r == current_round, "finished": r < current_round,
             "data_checked": r < current_round, "deadline_time": f"2025-09-{r:02d}T10:00:00Z"}
            for r in range(1, 8)
        ],
    }


def make_live(points: dict[int, int], minutes: int = 90) -> dict[str, Any]:
    return {
        "elements": [
            {
                "id": element,
                "stats": {"minutes": minutes, "total_points": pts},
                "explain": [
                    {"fixture": 1, "stats": [
                        {"identifier": "minutes", "points": 2, "value": minutes},
                        {"identifier": "goals_scored", "points": 0, "value": 0},
                    ]},
                ],
            }
            for element, pts in points.items()
        ]
    }


def make_picks(
    elements: list[int],
    captain: Optional[int] = None,
    multiplier: int = 2,
    vice: Optional[int] = None,
    transfers_cost: int = 0,
    transfers: int = 0,
) -> dict[str, Any]:
    return {
        "active_chip": None,
        "entry_history": {"event_transfers": transfers, "event_transfers_cost": transfers_cost},
        "picks": [
            {
                "element": element,
                "position": slot,
                "multiplier": multiplier if element == captain else (1 if slot <= 11 else 0),
                "is_captain": element == captain,
                "is_vice_captain": element == vice,
            }
            for slot, element in enumerate(elements, start=1)
        ],
    }
