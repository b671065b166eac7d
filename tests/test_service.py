"""Integration tests: prediction lifecycle over an in-memory DuckDB."""
from __future__ import annotations

import asyncio
from unittest.mock import patch

import httpx
import pytest

from conftest import LEAGUE_ID, SEASON, FakeProvider, finish, make_stats, seed, stats_payload
from kickoff.cache import PredictionCache, prediction_key
from kickoff.domain import TeamStatistics
from kickoff.prediction import (
    STATUS_PARTIAL,
    STATUS_PENDING,
    ManualCorners,
    PlaceholderReason,
)
from kickoff.providers.api_football import AFClient
from kickoff.service import PredictionService
from kickoff.team_stats import TeamStatsService


class DictCache(PredictionCache):
    name = "dict"

    def __init__(self):
        self.data: dict[str, str] = {}

    def _get(self, key):
        return self.data.get(key)

    def _set(self, key, value, ttl_seconds):
        self.data[key] = value

    def _delete(self, key):
        self.data.pop(key, None)


def _stats(store):
    return asyncio.run(store.get_stats())


# ---------------------------------------------------------------------------
# get_or_generate
# ---------------------------------------------------------------------------
class TestGetOrGenerate:
    def test_happy_path(self, seeded, service):
        pred = asyncio.run(service.get_or_generate(1001))
        assert pred is not None and not pred.is_placeholder
        o = pred.computed.outcomes
        assert o.home_win + o.draw + o.away_win == pytest.approx(100.0)
        assert pred.status == STATUS_PENDING and not pred.is_processed
        assert pred.home_stats["matches_played"] == 10
        assert pred.league_averages["league_id"] == LEAGUE_ID

        stored = asyncio.run(seeded.get_prediction(1001))
        assert stored.computed.outcomes == o

    def test_unknown_match(self, seeded, service):
        assert asyncio.run(service.get_or_generate(9999)) is None

    def test_unknown_team(self, seeded, service):
        from kickoff.domain import Match

        asyncio.run(seeded.upsert_match(Match(1100, LEAGUE_ID, SEASON, 33, 777)))
        assert asyncio.run(service.get_or_generate(1100)) is None
        assert asyncio.run(seeded.get_prediction(1100)) is None

    def test_idempotent(self, seeded, service):
        first = asyncio.run(service.get_or_generate(1001))
        with patch("kickoff.service.predict_match") as engine:
            second = asyncio.run(service.get_or_generate(1001))
        engine.assert_not_called()
        assert second.computed.outcomes == first.computed.outcomes
        assert _stats(seeded)["simulated_total"] == 6

    def test_concurrent_callers_insert_once(self, seeded, service):
        async def race():
            return await asyncio.gather(*(service.get_or_generate(1002) for _ in range(5)))

        results = asyncio.run(race())
        outcomes = {r.computed.outcomes.home_win for r in results}
        assert len(outcomes) == 1
        s = _stats(seeded)
        assert s["simulated_total"] == 6
        assert set(s["per_field_simulated"].values()) == {1}

    def test_cache_write_through_and_hit(self, seeded, store):
        cache = DictCache()
        svc = PredictionService(store, TeamStatsService(store), cache, simulations=1000, seed=3)
        pred = asyncio.run(svc.get_or_generate(1001))
        assert prediction_key(1001) in cache.data

        with patch.object(store, "get_match") as get_match:
            hit = asyncio.run(svc.get_or_generate(1001))
        get_match.assert_not_called()
        assert hit.computed.outcomes == pred.computed.outcomes


class TestPlaceholders:
    def test_missing_team_stats(self, store, service):
        seed(store, stats=False)
        pred = asyncio.run(service.get_or_generate(1001))
        assert pred.is_placeholder
        assert pred.placeholder_reason is PlaceholderReason.MISSING_TEAM_STATS
        assert _stats(store) is None

    def test_insufficient_data(self, store, service):
        seed(store)
        asyncio.run(store.upsert_team_statistics(33, LEAGUE_ID, SEASON, TeamStatistics(matches_played=0)))
        pred = asyncio.run(service.get_or_generate(1001))
        assert pred.placeholder_reason is PlaceholderReason.INSUFFICIENT_TEAM_DATA

    def test_previous_season_fallback(self, store, service):
        seed(store)
        asyncio.run(store.upsert_team_statistics(33, LEAGUE_ID, SEASON, TeamStatistics(matches_played=0)))
        asyncio.run(store.upsert_team_statistics(33, LEAGUE_ID, SEASON - 1, make_stats(gf_avg=2.1)))
        pred = asyncio.run(service.get_or_generate(1001))
        assert not pred.is_placeholder
        assert pred.home_stats["goals_for_avg"] == pytest.approx(2.1)

    def test_missing_league_averages(self, store, service):
        seed(store, averages=False)
        pred = asyncio.run(service.get_or_generate(1001))
        assert pred.placeholder_reason is PlaceholderReason.MISSING_LEAGUE_AVERAGES

    def test_averages_from_local_results(self, store, service):
        seed(store, averages=False)
        finish(store, 1003, 2, 1)
        pred = asyncio.run(service.get_or_generate(1001))
        assert not pred.is_placeholder
        assert pred.league_averages["source"] == "DB"

    def test_placeholder_not_cached(self, store):
        seed(store, stats=False)
        cache = DictCache()
        svc = PredictionService(store, TeamStatsService(store), cache, simulations=500)
        asyncio.run(svc.get_or_generate(1001))
        assert cache.data == {}

    def test_on_demand_refresh_from_provider(self, store):
        seed(store, stats=False)
        provider = FakeProvider(stats_payload=stats_payload())
        svc = PredictionService(store, TeamStatsService(store, provider), simulations=500, seed=1)
        pred = asyncio.run(svc.get_or_generate(1001))
        assert not pred.is_placeholder
        assert ("team_statistics", 33, LEAGUE_ID, SEASON) in provider.calls

    def test_provider_failure_becomes_placeholder(self, store):
        seed(store, stats=False)
        svc = PredictionService(store, TeamStatsService(store, FakeProvider(fail=True)), simulations=500)
        pred = asyncio.run(svc.get_or_generate(1001))
        assert pred.placeholder_reason is PlaceholderReason.MISSING_TEAM_STATS

    def test_non_json_provider_body_becomes_placeholder(self, store):
        seed(store, stats=False)
        client = AFClient(
            base="https://api.test", key="k",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, text="<html>maintenance</html>")),
        )
        svc = PredictionService(store, TeamStatsService(store, client), simulations=500)
        pred = asyncio.run(svc.get_or_generate(1001))
        assert pred.is_placeholder
        assert pred.placeholder_reason is PlaceholderReason.MISSING_TEAM_STATS


# ---------------------------------------------------------------------------
# regenerate
# ---------------------------------------------------------------------------
class TestRegenerate:
    def test_placeholder_upgraded_in_place(self, store, service):
        seed(store, stats=False)
        asyncio.run(service.get_or_generate(1001))
        for team_id in (33, 34):
            asyncio.run(store.upsert_team_statistics(team_id, LEAGUE_ID, SEASON, make_stats()))

        pred = asyncio.run(service.regenerate(1001))
        assert not pred.is_placeholder
        assert not asyncio.run(store.get_prediction(1001)).is_placeholder
        assert _stats(store)["simulated_total"] == 6

    def test_keeps_manual_corners(self, seeded, service):
        pred = asyncio.run(service.get_or_generate(1001))
        pred.manual_corners = ManualCorners("over", 9.5)
        asyncio.run(seeded.replace_prediction(pred))

        again = asyncio.run(service.regenerate(1001))
        assert again.manual_corners == ManualCorners("over", 9.5)
        assert _stats(seeded)["simulated_total"] == 6

    def test_unknown_match(self, seeded, service):
        assert asyncio.run(service.regenerate(4242)) is None


# ---------------------------------------------------------------------------
# batches
# ---------------------------------------------------------------------------
class TestBatches:
    def test_partial_failure_is_counted(self, seeded, service):
        real = service.get_or_generate

        async def flaky(mid):
            if mid == 1002:
                raise RuntimeError("boom")
            return await real(mid)

        res = asyncio.run(service.run_batches([1001, 1002, 1003, 5555], flaky))
        assert res.processed == 2
        assert res.failed == 1
        assert res.skipped == 1
        assert sorted(p.match_id for p in res.predictions) == [1001, 1003]

    @pytest.mark.parametrize("count", [10, 11])
    def test_one_failure_across_full_batches(self, service, count):
        assert service.batch_size == 10
        started = []

        async def worker(mid):
            started.append(mid)
            if mid == 5:
                raise RuntimeError("match 5 broke")
            return f"prediction-{mid}"

        res = asyncio.run(service.run_batches(range(1, count + 1), worker))
        assert res.processed == count - 1
        assert res.failed == 1
        assert res.skipped == 0
        assert sorted(started) == list(range(1, count + 1))
        assert "prediction-6" in res.predictions

    def test_small_batches(self, seeded, service):
        service.batch_size = 1
        preds = asyncio.run(service.generate_for_matches([1001, 1002, 1003]))
        assert len(preds) == 3


# ---------------------------------------------------------------------------
# grading
# ---------------------------------------------------------------------------
class TestProcessMatchPredictions:
    def test_grades_and_counts_once(self, seeded, service):
        pred = asyncio.run(service.get_or_generate(1001))
        pred.manual_corners = ManualCorners("over", 9.5)
        asyncio.run(seeded.replace_prediction(pred))
        finish(seeded, 1001, 2, 1, corners=11)

        graded = asyncio.run(service.process_match_predictions(1001))
        assert graded.is_processed
        assert graded.processed_at is not None
        assert graded.status in ("correct", STATUS_PARTIAL)

        s = _stats(seeded)
        assert s["won_total"] == 1
        assert s["per_field_won"]["corners"] == 1
        assert s["per_field_won"]["double_chance_1x"] == 1
        assert s["per_field_won"]["double_chance_x2"] == 0
        assert s["per_field_won"]["btts"] == 1
        assert s["per_field_won"]["over25"] == 1

        asyncio.run(service.process_match_predictions(1001))
        assert _stats(seeded)["won_total"] == 1

    def test_concurrent_graders_count_once(self, seeded, service):
        asyncio.run(service.get_or_generate(1002))
        finish(seeded, 1002, 0, 0)

        async def race():
            return await asyncio.gather(*(service.process_match_predictions(1002) for _ in range(4)))

        asyncio.run(race())
        s = _stats(seeded)
        assert s["won_total"] == 1
        assert s["per_field_won"]["under25"] == 1

    def test_placeholder_marked_without_counters(self, store, service):
        seed(store, stats=False)
        asyncio.run(service.get_or_generate(1001))
        finish(store, 1001, 1, 1)
        graded = asyncio.run(service.process_match_predictions(1001))
        assert graded.is_processed
        assert graded.status == STATUS_PENDING
        assert _stats(store) is None

    def test_no_final_score_is_left_alone(self, seeded, service):
        asyncio.run(service.get_or_generate(1003))
        pred = asyncio.run(service.process_match_predictions(1003))
        assert not pred.is_processed

    def test_missing_prediction(self, seeded, service):
        assert asyncio.run(service.process_match_predictions(1001)) is None
        assert asyncio.run(service.process_match_predictions(4242)) is None

    def test_cache_entry_dropped(self, seeded, store):
        cache = DictCache()
        svc = PredictionService(store, TeamStatsService(store), cache, simulations=500, seed=2)
        asyncio.run(svc.get_or_generate(1001))
        finish(store, 1001, 1, 0)
        asyncio.run(svc.process_match_predictions(1001))
        assert prediction_key(1001) not in cache.data
