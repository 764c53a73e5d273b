"""
O(1) lookups over the upstream reference catalog and the live round payload.

Every accessor is total: an id missing from the catalog yields a placeholder
rather than an error, so a single bad join never sinks a whole view.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional

UNKNOWN_NAME = "Unknown"
UNKNOWN_LABEL = "N/A"
UNKNOWN_OPPONENT = "TBD"


def index_by_id(rows: Iterable[dict[str, Any]] | None) -> dict[int, dict[str, Any]]:
    return {row["id"]: row for row in rows or () if "id" in row}


class CatalogIndex:
    """Players, teams, position types and rounds of one catalog payload, keyed by id."""

    def __init__(self, catalog: dict[str, Any]) -> None:
        self.players = index_by_id(catalog.get("elements"))
        self.teams = index_by_id(catalog.get("teams"))
        self.positions = index_by_id(catalog.get("element_types"))
        self.rounds = index_by_id(catalog.get("events"))

    def player(self, player_id: int) -> Optional[dict[str, Any]]:
        return self.players.get(player_id)

    def full_name(self, player_id: int) -> str:
        player = self.players.get(player_id)
        if not player:
            return UNKNOWN_NAME
        name = f"{player.get('first_name', '')} {player.get('second_name', '')}".strip()
        return name or UNKNOWN_NAME

    def web_name(self, player_id: int) -> str:
        player = self.players.get(player_id)
        return (player or {}).get("web_name") or UNKNOWN_NAME

    def team_of(self, player_id: int) -> Optional[int]:
        player = self.players.get(player_id)
        return player.get("team") if player else None

    def team_short(self, team_id: Optional[int], default: str = UNKNOWN_LABEL) -> str:
        team = self.teams.get(team_id) if team_id is not None else None
        return (team or {}).get("short_name") or default

    def current_round(self) -> Optional[int]:
        for round_id, meta in self.rounds.items():
            if meta.get("is_current"):
                return round_id
        return None


def index_live(live_round: dict[str, Any] | None) -> dict[int, dict[str, Any]]:
    """athlete id -> live record ({"id", "stats", "explain"})."""
    return index_by_id((live_round or {}).get("elements"))
