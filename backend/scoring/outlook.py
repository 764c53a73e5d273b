"""
Fixture outlook: double and blank rounds over the coming weeks, and the
per-entrant feed built on top of them (squad doubles and blanks, injury
concerns, price moves).

Both views are re-derived on every call from the cached catalog, the cached
season fixture list and, for the feed, the entrant's cached picks.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from ingest.cache.resource_cache import ResourceCache
from ingest.catalog import UNKNOWN_OPPONENT, CatalogIndex
from shared.models.domain import (
    DoubleBlankRounds,
    FeedItem,
    FeedPlayer,
    InjuryNote,
    OutlookFixture,
    OutlookRound,
    PriceMove,
    RoundTeam,
    TeamFeed,
)
from shared.models.enums import FeedItemType, FeedPriority
from shared.utils.logging import get_logger
from shared.utils.metrics import SCORING_LATENCY, atrack_latency

logger = get_logger(__name__)

DEFAULT_LOOKAHEAD = 8
# Below this next-round chance a squad player is flagged as a concern.
INJURY_CHANCE_THRESHOLD = 75


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Double / blank rounds ───────────────────────────────────────────────

def upcoming_rounds(catalog: CatalogIndex, current: int, lookahead: int) -> list[dict[str, Any]]:
    """Unfinished rounds in (current, current + lookahead], in id order."""
    return [
        meta
        for round_id, meta in sorted(catalog.rounds.items())
        if current < round_id <= current + lookahead and not meta.get("finished")
    ]


def _outlook_fixture(fixture: dict[str, Any], team_id: int, catalog: CatalogIndex) -> OutlookFixture:
    is_home = fixture.get("team_h") == team_id
    opponent_id = fixture.get("team_a") if is_home else fixture.get("team_h")
    return OutlookFixture(
        opponent=catalog.team_short(opponent_id, default=UNKNOWN_OPPONENT),
        is_home=is_home,
        difficulty=fixture.get("team_h_difficulty") if is_home else fixture.get("team_a_difficulty"),
        kickoff=fixture.get("kickoff_time"),
    )


def _round_team(team: dict[str, Any], fixtures: list[OutlookFixture]) -> RoundTeam:
    return RoundTeam(
        team_id=team["id"],
        team_name=team.get("name") or "",
        team_short=team.get("short_name") or "",
        fixture_count=len(fixtures),
        fixtures=fixtures,
    )


def double_blank_rounds(
    catalog: dict[str, Any],
    season_fixtures: Iterable[dict[str, Any]],
    lookahead: int = DEFAULT_LOOKAHEAD,
) -> DoubleBlankRounds:
    index = CatalogIndex(catalog)
    current = index.current_round()
    if current is None:
        return DoubleBlankRounds()

    by_round: dict[int, list[dict[str, Any]]] = {}
    for fixture in season_fixtures or ():
        if fixture.get("event") is not None:
            by_round.setdefault(fixture["event"], []).append(fixture)

    result = DoubleBlankRounds(current_round=current)
    for meta in upcoming_rounds(index, current, lookahead):
        fixtures = by_round.get(meta["id"], [])
        doubles: list[RoundTeam] = []
        blanks: list[RoundTeam] = []
        for team_id, team in index.teams.items():
            played = [
                _outlook_fixture(f, team_id, index)
                for f in fixtures
                if team_id in (f.get("team_h"), f.get("team_a"))
            ]
            if len(played) >= 2:
                doubles.append(_round_team(team, played))
            elif not played:
                blanks.append(_round_team(team, []))

        header = {"round": meta["id"], "round_name": meta.get("name"), "deadline": meta.get("deadline_time")}
        if doubles:
            result.double_rounds.append(OutlookRound(teams=doubles, **header))
        if blanks:
            result.blank_rounds.append(OutlookRound(teams=blanks, **header))
    return result


# ── Team feed ───────────────────────────────────────────────────────────

def _squad_items(
    rounds: list[OutlookRound],
    squad: list[dict[str, Any]],
    catalog: CatalogIndex,
    item_type: FeedItemType,
    now: datetime,
) -> list[FeedItem]:
    items: list[FeedItem] = []
    for outlook in rounds:
        teams = [t for t in outlook.teams if any(p.get("team") == t.team_id for p in squad)]
        if not teams:
            continue
        affected = [
            FeedPlayer(id=p["id"], name=catalog.web_name(p["id"]), team=team.team_short)
            for team in teams
            for p in squad
            if p.get("team") == team.team_id
        ]
        if item_type is FeedItemType.DOUBLE_ROUND:
            title = f"Double Gameweek {outlook.round} Opportunity"
            description = f"{len(teams)} of your teams have double fixtures"
        else:
            title = f"Blank Gameweek {outlook.round} Warning"
            description = f"{len(affected)} of your players have no fixture"
        items.append(
            FeedItem(
                type=item_type,
                priority=FeedPriority.HIGH,
                title=title,
                description=description,
                round=outlook.round,
                deadline=outlook.deadline,
                teams=teams,
                affected_players=affected,
                created_at=now,
            )
        )
    return items


def _injury_item(squad: list[dict[str, Any]], catalog: CatalogIndex, now: datetime) -> Optional[FeedItem]:
    injuries = [
        InjuryNote(
            id=p["id"],
            name=catalog.web_name(p["id"]),
            team=catalog.team_short(p.get("team")),
            chance_of_playing=p["chance_of_playing_next_round"],
            news=p.get("news") or "Injury concern",
            news_added=p.get("news_added") or None,
        )
        for p in squad
        if p.get("chance_of_playing_next_round") is not None
        and p["chance_of_playing_next_round"] < INJURY_CHANCE_THRESHOLD
    ]
    if not injuries:
        return None
    noun = "player" if len(injuries) == 1 else "players"
    return FeedItem(
        type=FeedItemType.INJURY_NEWS,
        priority=FeedPriority.HIGH,
        title="Injury Updates",
        description=f"{len(injuries)} {noun} with injury concerns",
        injuries=injuries,
        created_at=now,
    )


def _price_item(squad: list[dict[str, Any]], catalog: CatalogIndex, now: datetime) -> Optional[FeedItem]:
    moves = []
    for p in squad:
        delta = p.get("cost_change_event") or 0
        if not delta:
            continue
        now_cost = p.get("now_cost") or 0
        moves.append(
            PriceMove(
                id=p["id"],
                name=catalog.web_name(p["id"]),
                team=catalog.team_short(p.get("team")),
                old_price=(now_cost - delta) / 10,
                new_price=now_cost / 10,
                change=delta / 10,
            )
        )
    if not moves:
        return None
    return FeedItem(
        type=FeedItemType.PRICE_CHANGE,
        priority=FeedPriority.MEDIUM,
        title="Price Changes",
        description=f"{len(moves)} of your players changed price",
        price_changes=moves,
        created_at=now,
    )


def build_team_feed(
    entrant_id: int,
    catalog: dict[str, Any],
    outlook: DoubleBlankRounds,
    picks: Optional[dict[str, Any]],
    now: datetime,
) -> TeamFeed:
    index = CatalogIndex(catalog)
    # Picks missing from the catalog cannot be placed on a team; drop them.
    squad = [
        index.players[p["element"]]
        for p in (picks or {}).get("picks") or ()
        if p.get("element") in index.players
    ]

    items = [
        *_squad_items(outlook.double_rounds, squad, index, FeedItemType.DOUBLE_ROUND, now),
        *_squad_items(outlook.blank_rounds, squad, index, FeedItemType.BLANK_ROUND, now),
    ]
    items.extend(item for item in (_injury_item(squad, index, now), _price_item(squad, index, now)) if item)
    # Stable: equal priorities keep their insertion order.
    items.sort(key=lambda item: item.priority.rank)

    return TeamFeed(entrant_id=entrant_id, current_round=index.current_round(), items=items)


# ── Engine ──────────────────────────────────────────────────────────────

class OutlookEngine:
    def __init__(self, cache: ResourceCache, clock: Callable[[], datetime] = _utcnow) -> None:
        self._cache = cache
        self._clock = clock

    async def get_double_blank_rounds(self, lookahead: int = DEFAULT_LOOKAHEAD) -> DoubleBlankRounds:
        """
        Teams with two or more fixtures (double) or none (blank) in each of
        the next ``lookahead`` unfinished rounds after the current one.

        Raises:
            UpstreamUnavailable: The catalog or the season fixtures failed to load.
        """
        async with atrack_latency(SCORING_LATENCY, view="double_blank"):
            catalog, fixtures = await asyncio.gather(
                self._cache.get_catalog(),
                self._cache.get_season_fixtures(),
            )
            return double_blank_rounds(catalog, fixtures, lookahead)

    async def get_team_feed(self, entrant_id: int, round_id: int | None = None) -> TeamFeed:
        """
        Feed items for the entrant's squad in ``round_id`` (the current round
        when omitted). With no round to read picks for, the feed is empty.
        """
        async with atrack_latency(SCORING_LATENCY, view="team_feed"):
            catalog, fixtures = await asyncio.gather(
                self._cache.get_catalog(),
                self._cache.get_season_fixtures(),
            )
            if round_id is None:
                round_id = CatalogIndex(catalog).current_round()
            picks = await self._cache.get_picks(entrant_id, round_id) if round_id is not None else None
            feed = build_team_feed(
                entrant_id,
                catalog,
                double_blank_rounds(catalog, fixtures),
                picks,
                self._clock(),
            )

        logger.debug("team_feed_built", entrant_id=entrant_id, round=round_id, items=feed.total_items)
        return feed
