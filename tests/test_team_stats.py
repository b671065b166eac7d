"""Tests for provider payload mapping, league averages and the stats refresh."""
from __future__ import annotations

import asyncio
from datetime import timedelta

import pandas as pd
import pytest

from conftest import LEAGUE_ID, SEASON, FakeProvider, finish, make_stats, seed, stats_payload
from kickoff.domain import LeagueAverages, Team
from kickoff.seasons import previous_season, season_for_date
from kickoff.team_stats import (
    DEFAULT_FORMATION,
    TeamStatsService,
    compute_league_averages,
    map_team_statistics,
)
from kickoff.utils import utcnow


class TestMapping:
    def test_full_payload(self):
        s = map_team_statistics(stats_payload())
        assert (s.matches_played, s.wins, s.draws, s.losses) == (12, 7, 3, 2)
        assert s.goals_for == 22 and s.goals_against == 11
        assert s.goals_for_avg == pytest.approx(1.8)
        assert s.goal_difference == 11
        assert s.win_percentage == pytest.approx(7 / 12 * 100)
        assert s.most_used_formation == "4-3-3"
        assert (s.yellow_cards, s.red_cards) == (7, 1)
        assert s.xg == 0.0 and s.xga == 0.0
        assert s.form == "WWDWL"

    def test_sparse_payload(self):
        s = map_team_statistics({})
        assert s.matches_played == 0
        assert s.win_percentage == 0.0
        assert s.most_used_formation == DEFAULT_FORMATION
        assert not s.has_data


class TestLeagueAverages:
    def test_compute(self):
        df = pd.DataFrame({"home_goals": [2, 0, 1, 3], "away_goals": [1, 0, 1, 2]})
        avg = compute_league_averages(df, LEAGUE_ID, SEASON, "API")
        assert avg.avg_goals_per_match == 2.5
        assert avg.avg_home_goals == 1.5
        assert avg.avg_away_goals == 1.0
        assert avg.btts_percentage == 75.0
        assert avg.fixtures == 4

    def test_empty(self):
        assert compute_league_averages(pd.DataFrame(columns=["home_goals", "away_goals"]), 1, SEASON, "DB") is None

    def test_from_provider_fixtures(self, store):
        seed(store, averages=False)
        fixtures = [{"goals": {"home": 1, "away": 0}}, {"goals": {"home": 2, "away": 2}}]
        svc = TeamStatsService(store, FakeProvider(fixtures=fixtures))
        avg = asyncio.run(svc.get_league_averages(LEAGUE_ID, SEASON))
        assert avg.source == "API"
        assert avg.avg_goals_per_match == 2.5
        assert asyncio.run(store.get_league_averages(LEAGUE_ID, SEASON)) is not None

    def test_previous_season_fallback(self, store):
        seed(store, averages=False)
        asyncio.run(store.upsert_league_averages(LeagueAverages(
            LEAGUE_ID, SEASON - 1, 2.6, 1.5, 1.1, 50.0, 380, "DB", utcnow(),
        )))
        avg = asyncio.run(TeamStatsService(store).get_league_averages(LEAGUE_ID, SEASON))
        assert avg.season == SEASON - 1

    def test_stale_averages_recomputed(self, store):
        seed(store, averages=False)
        asyncio.run(store.upsert_league_averages(LeagueAverages(
            LEAGUE_ID, SEASON, 9.9, 5.0, 4.9, 99.0, 1, "API", utcnow() - timedelta(days=3),
        )))
        finish(store, 1001, 1, 1)
        svc = TeamStatsService(store, FakeProvider(fixtures=[]))
        avg = asyncio.run(svc.get_league_averages(LEAGUE_ID, SEASON))
        assert avg.source == "DB"
        assert avg.avg_goals_per_match == 2.0

    def test_malformed_fixtures_fall_back_to_results(self, store):
        seed(store, averages=False)
        finish(store, 1001, 3, 1)
        svc = TeamStatsService(store, FakeProvider(fixtures=["not a fixture"]))
        avg = asyncio.run(svc.get_league_averages(LEAGUE_ID, SEASON))
        assert avg.source == "DB"
        assert avg.avg_goals_per_match == 4.0


class TestRefresh:
    def test_creates_missing_team(self, store):
        provider = FakeProvider(stats_payload=stats_payload(),
                                details={"team": {"id": 900, "name": "Brentford", "code": "BRE"}})
        svc = TeamStatsService(store, provider)
        stats = asyncio.run(svc.update_team_statistics(900, LEAGUE_ID, SEASON))
        assert stats.matches_played == 12
        assert asyncio.run(store.get_team(900)) == Team(900, "Brentford", "BRE")

    def test_unknown_team_skipped(self, store):
        svc = TeamStatsService(store, FakeProvider(stats_payload=stats_payload()))
        assert asyncio.run(svc.update_team_statistics(901, LEAGUE_ID, SEASON)) is None

    def test_team_details_without_id_skipped(self, store):
        provider = FakeProvider(stats_payload=stats_payload(), details={"team": {"name": "No Id FC"}})
        svc = TeamStatsService(store, provider)
        assert asyncio.run(svc.update_team_statistics(902, LEAGUE_ID, SEASON)) is None
        assert asyncio.run(store.get_team(902)) is None

    def test_fresh_stats_not_refetched(self, seeded):
        provider = FakeProvider(stats_payload=stats_payload())
        svc = TeamStatsService(seeded, provider, refresh_hours=12)
        stats = asyncio.run(svc.update_team_statistics(33, LEAGUE_ID, SEASON))
        assert stats.matches_played == 10
        assert provider.calls == []

    def test_provider_error_keeps_existing(self, seeded):
        svc = TeamStatsService(seeded, FakeProvider(fail=True))
        stats = asyncio.run(svc.update_team_statistics(33, LEAGUE_ID, SEASON))
        assert stats.matches_played == 10

    def test_stored_round_trip(self, store):
        asyncio.run(store.upsert_team_statistics(5, LEAGUE_ID, SEASON, make_stats(form="WDL")))
        got = asyncio.run(TeamStatsService(store).get_team_stats_for_prediction(5, LEAGUE_ID, SEASON))
        assert got.form == "WDL"
        assert got.last_updated.tzinfo is not None


class TestSeasons:
    @pytest.mark.parametrize("month,expected", [(7, 2023), (8, 2024), (12, 2024), (1, 2024)])
    def test_season_for_date(self, month, expected):
        from datetime import datetime

        year = 2025 if month == 1 else 2024
        assert season_for_date(datetime(year, month, 15)) == expected

    def test_previous(self):
        assert previous_season(2024) == 2023
