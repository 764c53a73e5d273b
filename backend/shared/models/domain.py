"""
Pydantic v2 domain models shared across the fantasy live services.
Upstream payloads stay as decoded JSON; these are the derived views and the
records the news detector persists.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field

from shared.models.enums import ChangeType, FeedItemType, FeedPriority, LiveStatKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Live stats ──────────────────────────────────────────────────────────
class StatLine(DomainModel):
    """Per-athlete round stats. Every field defaults to zero."""
    model_config = ConfigDict(frozen=True)

    minutes: int = 0
    goals_scored: int = 0
    assists: int = 0
    clean_sheets: int = 0
    goals_conceded: int = 0
    own_goals: int = 0
    penalties_saved: int = 0
    penalties_missed: int = 0
    yellow_cards: int = 0
    red_cards: int = 0
    saves: int = 0
    bonus: int = 0
    bps: int = 0
    defensive_contribution: int = 0
    total_points: int = 0


class PlayedStats(StatLine):
    kind: Literal[LiveStatKind.PLAYED] = LiveStatKind.PLAYED


class NotYetPlayed(StatLine):
    """No live record exists for the athlete this round."""
    kind: Literal[LiveStatKind.NOT_YET_PLAYED] = LiveStatKind.NOT_YET_PLAYED


LiveStat = Annotated[Union[PlayedStats, NotYetPlayed], Field(discriminator="kind")]

NOT_YET_PLAYED = NotYetPlayed()


# ── Live scoring view ───────────────────────────────────────────────────
class FixtureView(DomainModel):
    fixture_id: Optional[int] = None
    opponent: str = "TBD"
    is_home: bool
    kickoff: Optional[str] = None
    started: bool = False
    finished: bool = False
    score: Optional[str] = None


class PointsLine(DomainModel):
    """One non-zero line of the upstream points explanation."""
    name: str
    identifier: str
    points: int
    value: int = 0


class PickView(DomainModel):
    element: int
    slot: int
    multiplier: int = 1
    is_captain: bool = False
    is_vice_captain: bool = False
    player_name: str = "Unknown"
    web_name: str = "Unknown"
    team_id: Optional[int] = None
    team_short: str = "N/A"
    position_id: Optional[int] = None
    position_name: str = "N/A"
    now_cost: float = 0.0
    fixtures: list[FixtureView] = Field(default_factory=list)
    live_stats: LiveStat = NOT_YET_PLAYED
    points_breakdown: list[PointsLine] = Field(default_factory=list)
    points: int = 0
    match_not_started: bool = False


class CaptainSummary(DomainModel):
    id: int
    name: str
    points: int
    multiplied_points: Optional[int] = None


class TransferSummary(DomainModel):
    made: int = 0
    cost: int = 0


class RoundStatus(DomainModel):
    is_current: bool = False
    is_live: bool = False
    all_matches_finished: bool = False
    has_matches_pending: bool = False
    round_finished: bool = False
    data_checked: bool = False
    deadline_time: Optional[str] = None


class LiveScoreView(DomainModel):
    """Captain-aware live points for one entrant in one round. Never cached."""
    entrant_id: int
    round: int
    total_points: int
    bench_points: int
    net_points: int
    active_chip: Optional[str] = None
    fielded: list[PickView] = Field(default_factory=list)
    reserve: list[PickView] = Field(default_factory=list)
    captain: Optional[CaptainSummary] = None
    vice_captain: Optional[CaptainSummary] = None
    transfers: TransferSummary = Field(default_factory=TransferSummary)
    round_status: RoundStatus = Field(default_factory=RoundStatus)


class LeagueEntryPoints(DomainModel):
    entry_id: int
    live_points: int
    transfers_cost: int = 0


class LeagueLivePoints(DomainModel):
    league_id: int
    round: int
    page: int = 1
    entries: dict[int, LeagueEntryPoints] = Field(default_factory=dict)


# ── Comparison ──────────────────────────────────────────────────────────
class EntrantSummary(DomainModel):
    id: int
    name: str
    manager: str
    round_points: int
    net_points: int
    overall_points: int = 0
    overall_rank: Optional[int] = None


class SharedPick(DomainModel):
    id: int
    name: str
    team: str
    points: int


class DifferentialPick(DomainModel):
    id: int
    name: str
    team: str
    slot: int
    points: int
    is_captain: bool = False
    multiplied_points: int


class DifferentialPoints(DomainModel):
    a: int
    b: int
    difference: int


class CaptainSwing(DomainModel):
    """Positive ``points_swing`` favours side A."""
    captain_a: Optional[CaptainSummary] = None
    captain_b: Optional[CaptainSummary] = None
    same_captain: bool
    points_swing: int


class ComparisonResult(DomainModel):
    round: int
    entrant_a: EntrantSummary
    entrant_b: EntrantSummary
    round_difference: int
    overall_difference: int
    shared: list[SharedPick] = Field(default_factory=list)
    differentials_a: list[DifferentialPick] = Field(default_factory=list)
    differentials_b: list[DifferentialPick] = Field(default_factory=list)
    differential_points: DifferentialPoints
    captain_swing: CaptainSwing
    summary: list[str] = Field(default_factory=list)


# ── Fixture outlook & team feed ─────────────────────────────────────────
class OutlookFixture(DomainModel):
    opponent: str = "TBD"
    is_home: bool
    difficulty: Optional[int] = None
    kickoff: Optional[str] = None


class RoundTeam(DomainModel):
    """A team's fixtures in one upcoming round; empty for a blank."""
    team_id: int
    team_name: str
    team_short: str
    fixture_count: int = 0
    fixtures: list[OutlookFixture] = Field(default_factory=list)


class OutlookRound(DomainModel):
    round: int
    round_name: Optional[str] = None
    deadline: Optional[str] = None
    teams: list[RoundTeam] = Field(default_factory=list)


class DoubleBlankRounds(DomainModel):
    current_round: Optional[int] = None
    double_rounds: list[OutlookRound] = Field(default_factory=list)
    blank_rounds: list[OutlookRound] = Field(default_factory=list)


class FeedPlayer(DomainModel):
    id: int
    name: str
    team: str


class InjuryNote(FeedPlayer):
    chance_of_playing: Optional[int] = None
    news: str = "Injury concern"
    news_added: Optional[str] = None


class PriceMove(FeedPlayer):
    old_price: float
    new_price: float
    change: float


class FeedItem(DomainModel):
    type: FeedItemType
    priority: FeedPriority
    title: str
    description: str
    round: Optional[int] = None
    deadline: Optional[str] = None
    teams: list[RoundTeam] = Field(default_factory=list)
    affected_players: list[FeedPlayer] = Field(default_factory=list)
    injuries: list[InjuryNote] = Field(default_factory=list)
    price_changes: list[PriceMove] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)


class TeamFeed(DomainModel):
    entrant_id: int
    current_round: Optional[int] = None
    items: list[FeedItem] = Field(default_factory=list)

    @computed_field
    @property
    def total_items(self) -> int:
        return len(self.items)


# ── News detector ───────────────────────────────────────────────────────
class PlayerSnapshotRecord(DomainModel):
    """Watched news fields for one player as of the last successful poll."""
    model_config = ConfigDict(frozen=True)

    news: str = ""
    news_added: Optional[str] = None
    status: Optional[str] = None
    chance_of_playing_next_round: Optional[int] = None
    chance_of_playing_this_round: Optional[int] = None

    @property
    def has_news(self) -> bool:
        return bool(self.news)


class ChangeEvent(DomainModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    player_id: int
    player_name: str = "Unknown"
    web_name: str = "Unknown"
    team_id: Optional[int] = None
    team_short: str = "N/A"
    change_type: ChangeType
    old_news: str = ""
    new_news: str = ""
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    chance_of_playing_next_round: Optional[int] = None
    chance_of_playing_this_round: Optional[int] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class CycleResult(DomainModel):
    """Outcome of one detection cycle. Failures are reported, never raised."""
    changes_detected: int = 0
    is_initial_run: bool = False
    skipped: bool = False
    error: Optional[str] = None
