"""Prediction lifecycle: generate once per match, grade once per match.

PredictionService is the only writer of match_predictions. Generation is
idempotent (a stored record is returned as-is) and safe under concurrent
callers: the insert is conditional and the loser re-reads the winner. Grading
flips `is_processed` with a conditional update so counters move at most once.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional, Union

import duckdb
import numpy as np

from kickoff.cache import NullCache, PredictionCache, prediction_key
from kickoff.config import Settings
from kickoff.domain import LeagueAverages, Match, TeamStatistics
from kickoff.models.simulation import predict_match
from kickoff.prediction import (
    STATUS_PENDING,
    MatchPrediction,
    PlaceholderPrediction,
    PlaceholderReason,
    grade,
    winning_fields,
)
from kickoff.seasons import current_season
from kickoff.stats import PredictionStats
from kickoff.store import Store
from kickoff.team_stats import TeamStatsService
from kickoff.utils import chunked, utcnow

log = logging.getLogger(__name__)

BATCH_SIZE = 10


@dataclass
class PredictionInputs:
    home: Optional[TeamStatistics] = None
    away: Optional[TeamStatistics] = None
    league_averages: Optional[LeagueAverages] = None
    reason: Optional[PlaceholderReason] = None


@dataclass
class BatchResult:
    predictions: list[MatchPrediction] = field(default_factory=list)
    processed: int = 0
    failed: int = 0
    skipped: int = 0


class PredictionService:
    def __init__(
        self,
        store: Store,
        team_stats: TeamStatsService,
        cache: Optional[PredictionCache] = None,
        *,
        simulations: int = 100_000,
        cache_ttl: int = 3600,
        lambda3: float = 0.08,
        rho: float = 0.03,
        model_version: str = "2.0.0",
        seed: Optional[int] = None,
        batch_size: int = BATCH_SIZE,
    ):
        self.store = store
        self.team_stats = team_stats
        self.cache = cache or NullCache()
        self.stats = PredictionStats(store)
        self.simulations = simulations
        self.cache_ttl = cache_ttl
        self.lambda3 = lambda3
        self.rho = rho
        self.model_version = model_version
        self.seed = seed
        self.batch_size = batch_size

    @classmethod
    def from_settings(
        cls,
        store: Store,
        s: Settings,
        provider=None,
        cache: Optional[PredictionCache] = None,
        **kw,
    ) -> "PredictionService":
        team_stats = TeamStatsService(store, provider, refresh_hours=s.team_stats_refresh_hours)
        return cls(
            store, team_stats, cache,
            simulations=s.simulations, cache_ttl=s.cache_ttl, lambda3=s.lambda3,
            rho=s.rho, model_version=s.model_version, **kw,
        )

    def _rng(self, match_id: int) -> np.random.Generator:
        if self.seed is None:
            return np.random.default_rng()
        return np.random.default_rng([self.seed, match_id])

    # ------------------------------------------------------------------
    # inputs
    # ------------------------------------------------------------------
    async def _stats_with_refresh(self, team_id: int, league_id: int, season: int) -> Optional[TeamStatistics]:
        stats = await self.team_stats.get_team_stats_for_prediction(team_id, league_id, season)
        if stats is None:
            await self.team_stats.update_team_statistics(team_id, league_id, season)
            stats = await self.team_stats.get_team_stats_for_prediction(team_id, league_id, season)
        return stats

    async def _previous_season_stats(self, team_id: int, league_id: int, season: int) -> Optional[TeamStatistics]:
        prev = await self.team_stats.get_team_stats_for_prediction(team_id, league_id, season - 1)
        if prev is not None and prev.has_data:
            log.info("using season %s statistics for team %s", season - 1, team_id)
            return prev
        return None

    async def resolve_inputs(self, match: Match) -> PredictionInputs:
        """Gather statistics and league averages, or the reason they are unusable."""
        season = match.season or current_season()
        home, away = await asyncio.gather(
            self._stats_with_refresh(match.home_team, match.league_id, season),
            self._stats_with_refresh(match.away_team, match.league_id, season),
        )
        if home is None or away is None:
            return PredictionInputs(home, away, reason=PlaceholderReason.MISSING_TEAM_STATS)

        if not home.has_data:
            home = await self._previous_season_stats(match.home_team, match.league_id, season) or home
        if not away.has_data:
            away = await self._previous_season_stats(match.away_team, match.league_id, season) or away
        if not (home.has_data and away.has_data):
            return PredictionInputs(home, away, reason=PlaceholderReason.INSUFFICIENT_TEAM_DATA)

        averages = await self.team_stats.get_league_averages(match.league_id, season)
        if averages is None:
            return PredictionInputs(home, away, reason=PlaceholderReason.MISSING_LEAGUE_AVERAGES)
        return PredictionInputs(home, away, averages)

    async def build_prediction(self, match: Match) -> MatchPrediction:
        """Compute (or placeholder) a record for `match` without persisting it."""
        inputs = await self.resolve_inputs(match)
        snapshot = dict(
            home_stats=inputs.home.to_dict() if inputs.home else None,
            away_stats=inputs.away.to_dict() if inputs.away else None,
            league_averages=inputs.league_averages.to_dict() if inputs.league_averages else None,
        )
        if inputs.reason is not None:
            log.warning("placeholder prediction for match %s: %s", match.match_id, inputs.reason.value)
            return MatchPrediction(match.match_id, PlaceholderPrediction(inputs.reason), **snapshot)

        computed = await asyncio.to_thread(
            predict_match,
            inputs.home,
            inputs.away,
            lambda3=self.lambda3,
            rho=self.rho,
            n_sims=self.simulations,
            model_version=self.model_version,
            rng=self._rng(match.match_id),
        )
        p = computed.dixon_coles_params
        log.info("match %s: xG %.2f-%.2f  1/X/2 %.1f/%.1f/%.1f", match.match_id, p.lambda1, p.lambda2,
                 computed.outcomes.home_win, computed.outcomes.draw, computed.outcomes.away_win)
        return MatchPrediction(match.match_id, computed, **snapshot)

    # ------------------------------------------------------------------
    # cache
    # ------------------------------------------------------------------
    async def _cached(self, match_id: int) -> Optional[MatchPrediction]:
        raw = await self.cache.get(prediction_key(match_id))
        if raw is None:
            return None
        try:
            return MatchPrediction.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            log.warning("ignoring malformed cached prediction for match %s: %s", match_id, e)
            return None

    async def _write_through(self, pred: MatchPrediction) -> None:
        if not pred.is_placeholder:
            await self.cache.set(prediction_key(pred.match_id), pred.to_dict(), self.cache_ttl)

    async def _count_simulated(self, match_id: int) -> None:
        try:
            await self.stats.record_simulated()
        except duckdb.Error as e:
            log.warning("failed to increment simulated stats for match %s: %s", match_id, e)

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------
    async def get_or_generate(self, match_id: int) -> Optional[MatchPrediction]:
        """Return the match's prediction, generating and storing it when absent.

        None when the match or either team is unknown.
        """
        cached = await self._cached(match_id)
        if cached is not None:
            return cached

        match = await self.store.get_match(match_id)
        if match is None:
            log.warning("match %s not found", match_id)
            return None
        home_team, away_team = await asyncio.gather(
            self.store.get_team(match.home_team), self.store.get_team(match.away_team)
        )
        if home_team is None or away_team is None:
            log.warning("match %s: team %s or %s missing", match_id, match.home_team, match.away_team)
            return None

        existing = await self.store.get_prediction(match_id)
        if existing is not None:
            return existing

        pred = await self.build_prediction(match)
        inserted = await self.store.insert_prediction_if_absent(pred)
        if not inserted:
            winner = await self.store.get_prediction(match_id)
            log.info("match %s: prediction already stored by another caller", match_id)
            return winner

        if not pred.is_placeholder:
            await self._count_simulated(match_id)
            await self._write_through(pred)
        return pred

    async def regenerate(self, match_id: int) -> Optional[MatchPrediction]:
        """Recompute and overwrite the stored record in place."""
        match = await self.store.get_match(match_id)
        if match is None:
            return None
        previous = await self.store.get_prediction(match_id)

        pred = await self.build_prediction(match)
        if previous is not None:
            pred.manual_corners = previous.manual_corners
            pred.status = previous.status
            pred.is_processed = previous.is_processed
            pred.processed_at = previous.processed_at
        await self.store.replace_prediction(pred)

        # a match is counted once, the first time it gets a computed record
        if not pred.is_placeholder and (previous is None or previous.is_placeholder):
            await self._count_simulated(match_id)
        if pred.is_placeholder:
            await self.cache.delete(prediction_key(match_id))
        else:
            await self._write_through(pred)
        return pred

    async def run_batches(
        self,
        match_ids: Iterable[int],
        worker: Optional[Callable[[int], Awaitable[Optional[MatchPrediction]]]] = None,
    ) -> BatchResult:
        """Run `worker` over ids in concurrent chunks; item failures are counted, not raised."""
        worker = worker or self.get_or_generate
        ids = list(match_ids)
        out = BatchResult()

        async def one(mid: int) -> Union[MatchPrediction, None, BaseException]:
            try:
                return await worker(mid)
            except Exception as e:
                log.exception("prediction for match %s failed: %s", mid, e)
                return e

        for n, chunk in enumerate(chunked(ids, self.batch_size), start=1):
            results = await asyncio.gather(*(one(mid) for mid in chunk))
            for r in results:
                if isinstance(r, BaseException):
                    out.failed += 1
                elif r is None:
                    out.skipped += 1
                else:
                    out.processed += 1
                    out.predictions.append(r)
            log.info("batch %d: %d ok, %d failed, %d skipped (%d/%d)", n, out.processed, out.failed,
                     out.skipped, min(n * self.batch_size, len(ids)), len(ids))
        return out

    async def generate_for_matches(self, match_ids: Iterable[int]) -> list[MatchPrediction]:
        res = await self.run_batches(match_ids)
        log.info("generated %d predictions (failed %d)", len(res.predictions), res.failed)
        return res.predictions

    async def process_match_predictions(self, match_id: int) -> Optional[MatchPrediction]:
        """Grade a finished match's prediction and advance win counters once."""
        match = await self.store.get_match(match_id)
        if match is None:
            log.warning("match %s not found", match_id)
            return None
        pred = await self.store.get_prediction(match_id)
        if pred is None:
            log.info("no prediction for match %s", match_id)
            return None
        if pred.is_processed:
            return pred
        if match.home_goals is None or match.away_goals is None:
            log.warning("match %s has no final score yet; not grading", match_id)
            return pred

        if pred.is_placeholder:
            status = STATUS_PENDING
        else:
            status = grade(pred.computed.model_prediction, match.home_goals, match.away_goals)

        flipped = await self.store.mark_prediction_processed(match_id, status, utcnow())
        await self.cache.delete(prediction_key(match_id))

        if flipped and not pred.is_placeholder:
            won = winning_fields(match.home_goals, match.away_goals, match.corners_total, pred.manual_corners)
            try:
                await self.stats.record_wins(won)
            except duckdb.Error as e:
                log.warning("failed to increment win stats for match %s: %s", match_id, e)
            log.info("graded match %s: %s (won: %s)", match_id, status, ", ".join(won) or "none")

        return await self.store.get_prediction(match_id)
