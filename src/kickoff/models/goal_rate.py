"""Expected-goals estimate for one side of a fixture.

Blends the team's own attack with the opponent's conceded rate, then applies
a fixed home/away multiplier and a recent-form factor. The result is clamped
to [XG_FLOOR, XG_CAP] so the Poisson sampler never sees a degenerate or
runaway rate.
"""
from __future__ import annotations

from kickoff.domain import TeamStatistics
from kickoff.utils import safe_num

ATTACK_WEIGHT = 0.7
DEFENCE_WEIGHT = 0.3
HOME_MULTIPLIER = 1.10
AWAY_MULTIPLIER = 0.95
FORM_SENSITIVITY = 0.35
FORM_MIN, FORM_MAX = 0.85, 1.15
XG_FLOOR, XG_CAP = 0.5, 4.0


def _rate(*candidates: float | None) -> float:
    # first positive finite value wins; zero falls through like a missing value
    for v in candidates:
        x = safe_num(v)
        if x is not None and x > 0:
            return x
    return 0.0


def form_factor(form: str | None) -> float:
    """Multiplier in [0.85, 1.15] from a W/D/L form string; neutral when empty."""
    if not form:
        return 1.0
    wins = form.count("W")
    draws = form.count("D")
    losses = form.count("L")
    total = wins + draws + losses
    if total == 0:
        return 1.0
    factor = 1 + FORM_SENSITIVITY * (wins / total - losses / total)
    return max(FORM_MIN, min(FORM_MAX, factor))


def expected_goals(team: TeamStatistics, opponent: TeamStatistics, is_home: bool) -> float:
    """
    Args:
        team: statistics of the side being estimated
        opponent: statistics of the other side (its conceded rate is used)
        is_home: True for the home side

    Returns:
        xG in [0.5, 4.0]
    """
    attack = _rate(team.xg, team.goals_for_avg)
    conceded = _rate(opponent.xga, opponent.goals_against_avg)

    weighted = ATTACK_WEIGHT * attack + DEFENCE_WEIGHT * conceded
    venue = HOME_MULTIPLIER if is_home else AWAY_MULTIPLIER
    xg = weighted * venue * form_factor(team.form)

    return min(max(xg, XG_FLOOR), XG_CAP)


def match_expected_goals(home: TeamStatistics, away: TeamStatistics) -> tuple[float, float]:
    return expected_goals(home, away, True), expected_goals(away, home, False)
