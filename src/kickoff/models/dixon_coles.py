from __future__ import annotations

import numpy as np

# Dixon–Coles style low-score reweighting, applied per simulated trial.
# Scorelines with at most one goal, and 1-1, get exp(-rho * sqrt(l1 * l2));
# everything else keeps weight 1.
def low_score_weight(lambda1: float, lambda2: float, rho: float) -> float:
    return float(np.exp(-rho * np.sqrt(lambda1 * lambda2)))


def correction_weight(home_goals: int, away_goals: int, lambda1: float, lambda2: float, rho: float) -> float:
    total = home_goals + away_goals
    if total <= 1 or (home_goals == 1 and away_goals == 1):
        return low_score_weight(lambda1, lambda2, rho)
    return 1.0


def correction_weights(
    home_goals: np.ndarray,
    away_goals: np.ndarray,
    lambda1: float,
    lambda2: float,
    rho: float,
) -> np.ndarray:
    """Vectorised correction_weight over arrays of simulated goals."""
    total = home_goals + away_goals
    low = (total <= 1) | ((home_goals == 1) & (away_goals == 1))
    w = np.ones(home_goals.shape, dtype=float)
    w[low] = low_score_weight(lambda1, lambda2, rho)
    return w
