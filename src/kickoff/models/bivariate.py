"""Shared-shock bivariate Poisson sampler.

    home = X + Z,  away = Y + Z
    X ~ Poisson(λ₁ - λ₃),  Y ~ Poisson(λ₂ - λ₃),  Z ~ Poisson(λ₃)

so Cov(home, away) = Var(Z) = λ₃ ≥ 0. Each variate is drawn with the
product-of-uniforms method capped at MAX_ITERATIONS, which bounds a single
variate at MAX_ITERATIONS - 1 goals.

References:
    Karlis & Ntzoufras (2003) "Analysis of sports data by using
        bivariate Poisson models"
"""
from __future__ import annotations

import numpy as np

MAX_ITERATIONS = 10
MIN_SPECIFIC_RATE = 0.1


def poisson_draws(lam: float, size: int, rng: np.random.Generator) -> np.ndarray:
    """Vectorised product-of-uniforms Poisson draws.

    The sequential algorithm multiplies uniforms until the running product
    drops to e^-λ or MAX_ITERATIONS is hit, returning (iterations - 1). That
    equals the number of leading partial products above e^-λ among the first
    MAX_ITERATIONS - 1, which is what is counted here.
    """
    threshold = np.exp(-lam)
    u = rng.random((size, MAX_ITERATIONS - 1))
    partial = np.cumprod(u, axis=1)
    return np.count_nonzero(partial > threshold, axis=1)


def adjusted_rates(lambda1: float, lambda2: float, lambda3: float) -> tuple[float, float]:
    """Team-specific rates with the shared component removed."""
    return max(lambda1 - lambda3, MIN_SPECIFIC_RATE), max(lambda2 - lambda3, MIN_SPECIFIC_RATE)


def sample_scores(
    lambda1: float,
    lambda2: float,
    lambda3: float,
    size: int,
    rng: np.random.Generator,
) -> tuple[np.ndarray, np.ndarray]:
    """Draw `size` correlated (home_goals, away_goals) pairs."""
    adj1, adj2 = adjusted_rates(lambda1, lambda2, lambda3)
    x = poisson_draws(adj1, size, rng)
    y = poisson_draws(adj2, size, rng)
    z = poisson_draws(lambda3, size, rng)
    return x + z, y + z
