"""
Connector for the fantasy statistics API.
One coroutine per upstream resource; each returns the decoded JSON payload.
"""
from __future__ import annotations

from typing import Any

from shared.utils.http_client import UpstreamHTTPClient
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class FantasyApiClient:
    """Thin resource map over the upstream HTTP client. No caching here."""

    def __init__(self, http_client: UpstreamHTTPClient) -> None:
        self._http = http_client

    async def start(self) -> None:
        await self._http.start()

    async def close(self) -> None:
        await self._http.close()

    async def fetch_catalog(self) -> dict[str, Any]:
        """Season-wide reference data: players, teams, position types, rounds."""
        return await self._http.get_json("/bootstrap-static/", endpoint="catalog")

    async def fetch_entrant(self, entrant_id: int) -> dict[str, Any]:
        return await self._http.get_json(f"/entry/{entrant_id}/", endpoint="entrant")

    async def fetch_entrant_history(self, entrant_id: int) -> dict[str, Any]:
        return await self._http.get_json(f"/entry/{entrant_id}/history/", endpoint="entrant_history")

    async def fetch_picks(self, entrant_id: int, round_id: int) -> dict[str, Any]:
        return await self._http.get_json(
            f"/entry/{entrant_id}/event/{round_id}/picks/", endpoint="picks"
        )

    async def fetch_live_round(self, round_id: int) -> dict[str, Any]:
        return await self._http.get_json(f"/event/{round_id}/live/", endpoint="live_round")

    async def fetch_fixtures(self, round_id: int) -> list[dict[str, Any]]:
        return await self._http.get_json(
            "/fixtures/", params={"event": round_id}, endpoint="fixtures"
        )

    async def fetch_season_fixtures(self) -> list[dict[str, Any]]:
        """Every fixture of the season, each tagged with its round in ``event``."""
        return await self._http.get_json("/fixtures/", endpoint="season_fixtures")

    async def fetch_league_standings(self, league_id: int, page: int = 1) -> dict[str, Any]:
        return await self._http.get_json(
            f"/leagues-classic/{league_id}/standings/",
            params={"page_standings": page},
            endpoint="league_standings",
        )
