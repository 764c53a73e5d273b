"""
Live scoring: joins an entrant's picks with the round's live stats, the
reference catalog and the round's fixtures into a captain-aware view.

Nothing computed here is cached. Every call re-derives the view from the
currently cached inputs so it can never go stale on its own.
"""
from __future__ import annotations

import asyncio
from typing import Any, Iterable, Optional

from ingest.cache.resource_cache import ResourceCache
from ingest.catalog import UNKNOWN_LABEL, UNKNOWN_OPPONENT, CatalogIndex, index_live
from shared.models.domain import (
    NOT_YET_PLAYED,
    CaptainSummary,
    FixtureView,
    LeagueEntryPoints,
    LeagueLivePoints,
    LiveScoreView,
    LiveStat,
    PickView,
    PlayedStats,
    PointsLine,
    RoundStatus,
    StatLine,
    TransferSummary,
)
from shared.models.enums import SquadRole
from shared.utils.http_client import UpstreamUnavailable
from shared.utils.logging import get_logger
from shared.utils.metrics import SCORING_LATENCY, atrack_latency

logger = get_logger(__name__)

STAT_FIELDS = tuple(StatLine.model_fields)

EXPLAIN_LABELS = {
    "minutes": "Minutes",
    "goals_scored": "Goals Scored",
    "assists": "Assists",
    "clean_sheets": "Clean Sheet",
    "goals_conceded": "Goals Conceded",
    "own_goals": "Own Goals",
    "penalties_saved": "Penalties Saved",
    "penalties_missed": "Penalties Missed",
    "yellow_cards": "Yellow Card",
    "red_cards": "Red Card",
    "saves": "Saves",
    "bonus": "Bonus",
    "starts": "Started",
    "defensive_contribution": "Defensive Contributions",
}


# ── Pure helpers ────────────────────────────────────────────────────────

def live_stat_for(record: Optional[dict[str, Any]]) -> LiveStat:
    """Total mapping from an optional live record to a stat line."""
    if record is None:
        return NOT_YET_PLAYED
    stats = record.get("stats") or {}
    return PlayedStats(**{name: int(stats.get(name) or 0) for name in STAT_FIELDS})


def points_breakdown(record: Optional[dict[str, Any]]) -> list[PointsLine]:
    """Flatten the per-fixture explain list into its non-zero lines."""
    lines: list[PointsLine] = []
    for fixture in (record or {}).get("explain") or ():
        for stat in fixture.get("stats") or ():
            if not stat.get("points"):
                continue
            identifier = stat.get("identifier", "")
            lines.append(
                PointsLine(
                    name=EXPLAIN_LABELS.get(identifier, identifier),
                    identifier=identifier,
                    points=stat["points"],
                    value=stat.get("value") or 0,
                )
            )
    return lines


def contribution(stats: LiveStat, is_captain: bool, multiplier: int) -> int:
    """Raw total points, scaled by the pick's own multiplier when captained."""
    if is_captain:
        return stats.total_points * multiplier
    return stats.total_points


def fixtures_for_team(
    team_id: Optional[int], fixtures: Iterable[dict[str, Any]], catalog: CatalogIndex
) -> list[FixtureView]:
    """Zero, one or two fixtures: blank and double rounds are both legal."""
    if team_id is None:
        return []
    views = []
    for fixture in fixtures:
        is_home = fixture.get("team_h") == team_id
        if not is_home and fixture.get("team_a") != team_id:
            continue
        opponent_id = fixture.get("team_a") if is_home else fixture.get("team_h")
        started = bool(fixture.get("started"))
        views.append(
            FixtureView(
                fixture_id=fixture.get("id"),
                opponent=catalog.team_short(opponent_id, default=UNKNOWN_OPPONENT),
                is_home=is_home,
                kickoff=fixture.get("kickoff_time"),
                started=started,
                finished=bool(fixture.get("finished")),
                score=f"{fixture.get('team_h_score')}-{fixture.get('team_a_score')}" if started else None,
            )
        )
    return views


def enrich_pick(
    pick: dict[str, Any],
    catalog: CatalogIndex,
    live_index: dict[int, dict[str, Any]],
    fixtures: list[dict[str, Any]],
) -> PickView:
    element = pick["element"]
    player = catalog.player(element) or {}
    team_id = player.get("team")
    position_id = player.get("element_type")
    position = catalog.positions.get(position_id) if position_id is not None else None
    record = live_index.get(element)
    stats = live_stat_for(record)
    is_captain = bool(pick.get("is_captain"))
    multiplier = int(pick.get("multiplier", 1))
    pick_fixtures = fixtures_for_team(team_id, fixtures, catalog)

    return PickView(
        element=element,
        slot=pick["position"],
        multiplier=multiplier,
        is_captain=is_captain,
        is_vice_captain=bool(pick.get("is_vice_captain")),
        player_name=catalog.full_name(element),
        web_name=catalog.web_name(element),
        team_id=team_id,
        team_short=catalog.team_short(team_id),
        position_id=position_id,
        position_name=(position or {}).get("singular_name_short") or UNKNOWN_LABEL,
        now_cost=(player.get("now_cost") or 0) / 10,
        fixtures=pick_fixtures,
        live_stats=stats,
        points_breakdown=points_breakdown(record),
        points=contribution(stats, is_captain, multiplier),
        match_not_started=any(not f.started for f in pick_fixtures),
    )


def round_status(
    round_meta: Optional[dict[str, Any]], fixtures: list[FixtureView]
) -> RoundStatus:
    meta = round_meta or {}
    return RoundStatus(
        is_current=bool(meta.get("is_current")),
        is_live=any(f.started and not f.finished for f in fixtures),
        all_matches_finished=bool(fixtures) and all(f.finished for f in fixtures),
        has_matches_pending=any(not f.started for f in fixtures),
        round_finished=bool(meta.get("finished")),
        data_checked=bool(meta.get("data_checked")),
        deadline_time=meta.get("deadline_time"),
    )


def build_live_score_view(
    entrant_id: int,
    round_id: int,
    picks: dict[str, Any],
    live_round: dict[str, Any],
    catalog: dict[str, Any],
    fixtures: list[dict[str, Any]],
) -> LiveScoreView:
    index = CatalogIndex(catalog)
    live_index = index_live(live_round)
    enriched = [enrich_pick(p, index, live_index, fixtures or []) for p in picks.get("picks") or ()]

    # Slot rank alone decides the split; no automatic substitution is applied.
    fielded = [p for p in enriched if SquadRole.for_slot(p.slot) is SquadRole.FIELDED]
    reserve = sorted(
        (p for p in enriched if SquadRole.for_slot(p.slot) is SquadRole.RESERVE),
        key=lambda p: p.slot,
    )

    history = picks.get("entry_history") or {}
    transfers = TransferSummary(
        made=history.get("event_transfers") or 0,
        cost=history.get("event_transfers_cost") or 0,
    )
    total = sum(p.points for p in fielded)

    captain = next((p for p in enriched if p.is_captain), None)
    vice = next((p for p in enriched if p.is_vice_captain), None)

    return LiveScoreView(
        entrant_id=entrant_id,
        round=round_id,
        total_points=total,
        bench_points=sum(p.points for p in reserve),
        net_points=total - transfers.cost,
        active_chip=picks.get("active_chip"),
        fielded=fielded,
        reserve=reserve,
        captain=CaptainSummary(
            id=captain.element,
            name=captain.web_name,
            points=captain.live_stats.total_points,
            multiplied_points=captain.live_stats.total_points * captain.multiplier,
        ) if captain else None,
        vice_captain=CaptainSummary(
            id=vice.element,
            name=vice.web_name,
            points=vice.live_stats.total_points,
        ) if vice else None,
        transfers=transfers,
        round_status=round_status(
            index.rounds.get(round_id),
            [f for p in enriched for f in p.fixtures],
        ),
    )


def fielded_points(picks: dict[str, Any], live_index: dict[int, dict[str, Any]]) -> int:
    """Fielded total from raw picks, without building the enriched view."""
    total = 0
    for pick in picks.get("picks") or ():
        if SquadRole.for_slot(pick["position"]) is not SquadRole.FIELDED:
            continue
        stats = live_stat_for(live_index.get(pick["element"]))
        total += contribution(stats, bool(pick.get("is_captain")), int(pick.get("multiplier", 1)))
    return total


# ── Engine ──────────────────────────────────────────────────────────────

class LiveScoringEngine:
    def __init__(self, cache: ResourceCache) -> None:
        self._cache = cache

    async def get_live_score_view(self, entrant_id: int, round_id: int) -> LiveScoreView:
        """
        Build the live view for one entrant and round.

        Raises:
            UpstreamUnavailable: Any of the four inputs could not be fetched.
                No partial view is returned.
        """
        async with atrack_latency(SCORING_LATENCY, view="live"):
            picks, live_round, catalog, fixtures = await asyncio.gather(
                self._cache.get_picks(entrant_id, round_id),
                self._cache.get_live_round(round_id),
                self._cache.get_catalog(),
                self._cache.get_fixtures(round_id),
            )
            view = build_live_score_view(entrant_id, round_id, picks, live_round, catalog, fixtures)

        logger.debug(
            "live_view_built",
            entrant_id=entrant_id,
            round=round_id,
            total=view.total_points,
            bench=view.bench_points,
        )
        return view

    async def get_current_round(self) -> Optional[int]:
        catalog = await self._cache.get_catalog()
        return CatalogIndex(catalog).current_round()

    async def _picks_or_none(self, entry_id: int, round_id: int) -> Optional[dict[str, Any]]:
        try:
            return await self._cache.get_picks(entry_id, round_id)
        except UpstreamUnavailable as exc:
            logger.warning("league_entry_picks_failed", entry_id=entry_id, round=round_id, error=str(exc))
            return None

    async def get_league_live_points(
        self, league_id: int, round_id: int, page: int = 1
    ) -> LeagueLivePoints:
        """
        Live fielded points for every entry on one standings page.

        An entry whose picks cannot be fetched is left out; the standings
        page and the live round themselves must load.
        """
        async with atrack_latency(SCORING_LATENCY, view="league"):
            standings, live_round = await asyncio.gather(
                self._cache.get_league_standings(league_id, page),
                self._cache.get_live_round(round_id),
            )
            live_index = index_live(live_round)
            entries = ((standings or {}).get("standings") or {}).get("results") or []
            all_picks = await asyncio.gather(
                *(self._picks_or_none(entry["entry"], round_id) for entry in entries)
            )

        result = LeagueLivePoints(league_id=league_id, round=round_id, page=page)
        for entry, picks in zip(entries, all_picks):
            if not picks or not picks.get("picks"):
                continue
            history = picks.get("entry_history") or {}
            result.entries[entry["entry"]] = LeagueEntryPoints(
                entry_id=entry["entry"],
                live_points=fielded_points(picks, live_index),
                transfers_cost=history.get("event_transfers_cost") or 0,
            )
        return result
