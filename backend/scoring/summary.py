"""Narrative lines for a head-to-head comparison. Pure templating over computed numbers."""
from __future__ import annotations

from shared.models.domain import CaptainSwing, DifferentialPoints

# A differential sentence is only worth adding past this gap.
DIFFERENTIAL_NOTE_THRESHOLD = 10


def _points(n: int) -> str:
    return f"{n} point" if n == 1 else f"{n} points"


def comparison_summary(
    name_a: str,
    name_b: str,
    round_difference: int,
    captain_swing: CaptainSwing,
    differential_points: DifferentialPoints,
) -> list[str]:
    lines: list[str] = []

    if round_difference == 0:
        lines.append("Both teams are level this gameweek.")
    else:
        leader = name_a if round_difference > 0 else name_b
        lines.append(f"{leader} is currently leading this gameweek by {_points(abs(round_difference))}.")

    if captain_swing.same_captain:
        lines.append("Both managers captained the same player.")
    elif captain_swing.points_swing != 0:
        gainer = name_a if captain_swing.points_swing > 0 else name_b
        lines.append(f"{gainer} gained {_points(abs(captain_swing.points_swing))} from their captain choice.")

    gap = differential_points.a - differential_points.b
    if abs(gap) > DIFFERENTIAL_NOTE_THRESHOLD:
        leader = name_a if gap > 0 else name_b
        lines.append(f"{leader}'s differentials are performing {_points(abs(gap))} better.")

    return lines
