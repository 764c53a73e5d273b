"""Domain enumerations for the fantasy live services."""
from __future__ import annotations

from enum import Enum

# Pick slots 1-11 are fielded, 12-15 are the reserve bench.
FIELDED_SLOTS = 11


class ResourceType(str, Enum):
    """Upstream resources served through the cache."""
    CATALOG = "catalog"
    ENTRANT = "entrant"
    ENTRANT_HISTORY = "entrant-history"
    PICKS = "picks"
    LIVE_ROUND = "live-round"
    FIXTURES = "fixtures"
    LEAGUE_STANDINGS = "league-standings"
    SEASON_FIXTURES = "season-fixtures"


class ChangeType(str, Enum):
    NEW = "NEW"
    UPDATED = "UPDATED"
    CLEARED = "CLEARED"


class LiveStatKind(str, Enum):
    PLAYED = "played"
    NOT_YET_PLAYED = "not_yet_played"


class SquadRole(str, Enum):
    """Which half of the squad a pick slot belongs to."""
    FIELDED = "fielded"
    RESERVE = "reserve"

    @classmethod
    def for_slot(cls, slot: int) -> "SquadRole":
        return cls.FIELDED if slot <= FIELDED_SLOTS else cls.RESERVE



class FeedItemType(str, Enum):
    DOUBLE_ROUND = "DOUBLE_GAMEWEEK"
    BLANK_ROUND = "BLANK_GAMEWEEK"
    INJURY_NEWS = "INJURY_NEWS"
    PRICE_CHANGE = "PRICE_CHANGE"


class FeedPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return list(FeedPriority).index(self)
