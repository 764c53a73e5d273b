"""
Head-to-head comparison of two entrants over the same round.

Both live views are computed independently (and concurrently); each may see
its own cache state, which is fine because every cached read is correct for
its own key.
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from ingest.cache.resource_cache import ResourceCache
from scoring.live import LiveScoringEngine
from scoring.summary import comparison_summary
from shared.models.domain import (
    CaptainSummary,
    CaptainSwing,
    ComparisonResult,
    DifferentialPick,
    DifferentialPoints,
    EntrantSummary,
    LiveScoreView,
    PickView,
    SharedPick,
)
from shared.utils.logging import get_logger
from shared.utils.metrics import SCORING_LATENCY, atrack_latency

logger = get_logger(__name__)


def _captain_points(captain: Optional[CaptainSummary]) -> int:
    if captain is None:
        return 0
    return captain.multiplied_points or 0


def captain_swing(view_a: LiveScoreView, view_b: LiveScoreView) -> CaptainSwing:
    same = (
        view_a.captain is not None
        and view_b.captain is not None
        and view_a.captain.id == view_b.captain.id
    )
    return CaptainSwing(
        captain_a=view_a.captain,
        captain_b=view_b.captain,
        same_captain=same,
        points_swing=_captain_points(view_a.captain) - _captain_points(view_b.captain),
    )


def _differential(pick: PickView) -> DifferentialPick:
    return DifferentialPick(
        id=pick.element,
        name=pick.web_name,
        team=pick.team_short,
        slot=pick.slot,
        points=pick.live_stats.total_points,
        is_captain=pick.is_captain,
        multiplied_points=pick.points,
    )


def entrant_summary(entrant_id: int, entrant: dict[str, Any], view: LiveScoreView) -> EntrantSummary:
    manager = f"{entrant.get('player_first_name', '')} {entrant.get('player_last_name', '')}".strip()
    return EntrantSummary(
        id=entrant_id,
        name=entrant.get("name") or f"Team {entrant_id}",
        manager=manager or "Unknown",
        round_points=view.total_points,
        net_points=view.net_points,
        overall_points=entrant.get("summary_overall_points") or 0,
        overall_rank=entrant.get("summary_overall_rank"),
    )


def build_comparison(
    round_id: int,
    summary_a: EntrantSummary,
    summary_b: EntrantSummary,
    view_a: LiveScoreView,
    view_b: LiveScoreView,
) -> ComparisonResult:
    ids_a = {p.element for p in view_a.fielded}
    ids_b = {p.element for p in view_b.fielded}
    shared_ids = ids_a & ids_b

    shared = [
        SharedPick(id=p.element, name=p.web_name, team=p.team_short, points=p.live_stats.total_points)
        for p in view_a.fielded
        if p.element in shared_ids
    ]
    diffs_a = [_differential(p) for p in view_a.fielded if p.element not in shared_ids]
    diffs_b = [_differential(p) for p in view_b.fielded if p.element not in shared_ids]

    # p.points already carries the owner's captain multiplier.
    diff_a = sum(d.multiplied_points for d in diffs_a)
    diff_b = sum(d.multiplied_points for d in diffs_b)
    differential_points = DifferentialPoints(a=diff_a, b=diff_b, difference=diff_a - diff_b)

    swing = captain_swing(view_a, view_b)
    round_difference = view_a.total_points - view_b.total_points

    return ComparisonResult(
        round=round_id,
        entrant_a=summary_a,
        entrant_b=summary_b,
        round_difference=round_difference,
        overall_difference=summary_a.overall_points - summary_b.overall_points,
        shared=shared,
        differentials_a=diffs_a,
        differentials_b=diffs_b,
        differential_points=differential_points,
        captain_swing=swing,
        summary=comparison_summary(
            summary_a.name, summary_b.name, round_difference, swing, differential_points
        ),
    )


class ComparisonEngine:
    def __init__(self, cache: ResourceCache, live_engine: LiveScoringEngine | None = None) -> None:
        self._cache = cache
        self._live = live_engine or LiveScoringEngine(cache)

    async def compare_entrants(self, entrant_a: int, entrant_b: int, round_id: int) -> ComparisonResult:
        """
        Compare two entrants' fielded picks for ``round_id``.

        Raises:
            UpstreamUnavailable: Either live view or entrant record failed to load.
        """
        async with atrack_latency(SCORING_LATENCY, view="comparison"):
            view_a, view_b, record_a, record_b = await asyncio.gather(
                self._live.get_live_score_view(entrant_a, round_id),
                self._live.get_live_score_view(entrant_b, round_id),
                self._cache.get_entrant(entrant_a),
                self._cache.get_entrant(entrant_b),
            )
            result = build_comparison(
                round_id,
                entrant_summary(entrant_a, record_a or {}, view_a),
                entrant_summary(entrant_b, record_b or {}, view_b),
                view_a,
                view_b,
            )

        logger.debug(
            "comparison_built",
            entrant_a=entrant_a,
            entrant_b=entrant_b,
            round=round_id,
            shared=len(result.shared),
            swing=result.captain_swing.points_swing,
        )
        return result
