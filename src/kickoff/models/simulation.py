"""Monte Carlo aggregation over the bivariate Poisson sampler.

Every simulated scoreline carries a Dixon-Coles importance weight; each
market bucket is the weighted share of trials landing in it, expressed as a
percentage of the total weight.
"""
from __future__ import annotations

import logging
import math
import time

import numpy as np

from kickoff.domain import TeamStatistics
from kickoff.models.bivariate import sample_scores
from kickoff.models.dixon_coles import correction_weights
from kickoff.models.goal_rate import match_expected_goals
from kickoff.prediction import (
    ComputedPrediction,
    DixonColesParams,
    ModelPrediction,
    OVER_LINES,
    Outcomes,
    ScoreProbability,
)

log = logging.getLogger(__name__)

RAW_SAMPLE_SIZE = 10
OVER25_PICK_THRESHOLD = 55.0
UNDER25_PICK_THRESHOLD = 25.0
_SCORE_BASE = 32  # > max goals per side (2 * 9)


def _one_decimal(x: float) -> float:
    # half-up, not banker's rounding
    return math.floor(x * 10 + 0.5) / 10


def most_likely_score(home: np.ndarray, away: np.ndarray, weights: np.ndarray) -> tuple[int, int, float]:
    """Argmax of the weighted exact-score map; ties go to the scoreline seen first.

    Returns (home, away, summed weight).
    """
    codes = home.astype(np.int64) * _SCORE_BASE + away.astype(np.int64)
    uniq, first_idx = np.unique(codes, return_index=True)
    mass = np.bincount(codes, weights=weights)[uniq]
    best = mass.max()
    tied = np.flatnonzero(mass == best)
    winner = tied[np.argmin(first_idx[tied])]
    code = int(uniq[winner])
    return code // _SCORE_BASE, code % _SCORE_BASE, float(mass[winner])


def simulate(
    lambda1: float,
    lambda2: float,
    lambda3: float,
    rho: float,
    n_sims: int,
    rng: np.random.Generator,
) -> dict[str, float | tuple[int, int, float]]:
    """Run `n_sims` weighted trials and return raw market percentages.

    Args:
        lambda1: home expected goals
        lambda2: away expected goals
        lambda3: shared-shock rate
        rho: Dixon-Coles correction strength
        n_sims: number of trials (must be positive)
        rng: generator driving every draw

    Returns:
        Dict with home_win, draw, away_win, over05..over95, under25, btts,
        clean_sheet_home, clean_sheet_away (percentages) and
        most_likely_score as (home, away, percentage).
    """
    if n_sims <= 0:
        raise ValueError("n_sims must be positive")

    home, away = sample_scores(lambda1, lambda2, lambda3, n_sims, rng)
    w = correction_weights(home, away, lambda1, lambda2, rho)
    total_w = float(w.sum())
    total = home + away

    def pct(mask: np.ndarray) -> float:
        return float(w[mask].sum()) / total_w * 100

    out: dict[str, float | tuple[int, int, float]] = {
        "home_win": pct(home > away),
        "draw": pct(home == away),
        "away_win": pct(home < away),
        "under25": pct(total < 2.5),
        "btts": pct((home > 0) & (away > 0)),
        "clean_sheet_home": pct(away == 0),
        "clean_sheet_away": pct(home == 0),
    }
    for line in OVER_LINES:
        out[f"over{line}"] = pct(total > int(line) / 10)

    h, a, mass = most_likely_score(home, away, w)
    out["most_likely_score"] = (h, a, mass / total_w * 100)
    return out


def build_outcomes(raw: dict) -> Outcomes:
    """Attach double chances and pick flags to raw simulation percentages."""
    home, draw, away = raw["home_win"], raw["draw"], raw["away_win"]
    p1x, p12, px2 = home + draw, home + away, draw + away
    best = max(p1x, p12, px2)

    h, a, prob = raw["most_likely_score"]
    return Outcomes(
        home_win=home,
        draw=draw,
        away_win=away,
        **{f"over{line}": raw[f"over{line}"] for line in OVER_LINES},
        under25=raw["under25"],
        btts=raw["btts"],
        double_chance_1x=round(p1x, 3),
        double_chance_12=round(p12, 3),
        double_chance_x2=round(px2, 3),
        most_likely_score=ScoreProbability(home=h, away=a, probability=prob),
        exact_score=f"{h}-{a}",
        clean_sheet_home=raw["clean_sheet_home"],
        clean_sheet_away=raw["clean_sheet_away"],
        home_win_pick=p1x == best,
        draw_pick=p1x != best and px2 == best,
        away_win_pick=p1x != best and px2 != best,
        over25_pick=raw["over25"] > OVER25_PICK_THRESHOLD,
        under25_pick=raw["under25"] > UNDER25_PICK_THRESHOLD,
    )


def predict_match(
    home_stats: TeamStatistics,
    away_stats: TeamStatistics,
    *,
    lambda3: float,
    rho: float,
    n_sims: int,
    model_version: str,
    rng: np.random.Generator | None = None,
) -> ComputedPrediction:
    """Full engine pass: xG estimate, weighted simulation, derived markets."""
    if rng is None:
        rng = np.random.default_rng()
    t0 = time.perf_counter()

    lambda1, lambda2 = match_expected_goals(home_stats, away_stats)
    raw = simulate(lambda1, lambda2, lambda3, rho, n_sims, rng)
    outcomes = build_outcomes(raw)

    sh, sa = sample_scores(lambda1, lambda2, lambda3, RAW_SAMPLE_SIZE, rng)
    elapsed_ms = (time.perf_counter() - t0) * 1000
    log.debug("simulated %d trials xG %.2f-%.2f in %.0fms", n_sims, lambda1, lambda2, elapsed_ms)

    return ComputedPrediction(
        dixon_coles_params=DixonColesParams(
            lambda1=lambda1, lambda2=lambda2, lambda3=lambda3, rho=rho, model_version=model_version,
        ),
        model_prediction=ModelPrediction(
            home_score=_one_decimal(lambda1),
            away_score=_one_decimal(lambda2),
            confidence=max(outcomes.home_win, outcomes.draw, outcomes.away_win),
        ),
        outcomes=outcomes,
        simulations=[(int(h), int(a)) for h, a in zip(sh, sa)],
        computation_ms=round(elapsed_ms, 1),
    )
