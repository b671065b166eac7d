"""
Shared fixtures for the Kickoff test suite.

Provides:
    - In-memory DuckDB connection with full schema
    - Store / PredictionService wired to it (no cache, no provider)
    - Seeded leagues, teams, statistics and matches
    - An in-process fake of the API-Football client
"""
from __future__ import annotations

import asyncio
import os
from datetime import timedelta

import pytest

# ---------------------------------------------------------------------------
# Patch settings BEFORE any kickoff imports so config.settings() never touches
# real files or mail servers
# ---------------------------------------------------------------------------
os.environ.setdefault("DB_PATH", ":memory:")
os.environ.setdefault("CACHE_BACKEND", "none")
os.environ.setdefault("MATCH_PREDICTION_SIMULATIONS", "2000")
os.environ.pop("API_FOOTBALL_KEY", None)
os.environ.pop("ALERT_EMAILS", None)

LEAGUE_ID = 39
SEASON = 2024


# ---------------------------------------------------------------------------
# In-memory DuckDB connection with full schema
# ---------------------------------------------------------------------------
@pytest.fixture()
def con():
    """Fresh in-memory DuckDB connection with full schema applied."""
    from kickoff.db import connect

    c = connect(":memory:")
    yield c
    c.close()


@pytest.fixture()
def store(con):
    from kickoff.store import Store

    return Store(con)


@pytest.fixture()
def service(store):
    from kickoff.service import PredictionService
    from kickoff.team_stats import TeamStatsService

    return PredictionService(store, TeamStatsService(store), simulations=2000, seed=7)


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------
_SEED_TEAMS = [
    (33, "Manchester United"),
    (34, "Newcastle"),
    (40, "Liverpool"),
    (42, "Arsenal"),
    (49, "Chelsea"),
    (50, "Manchester City"),
]


def make_stats(played=10, gf_avg=1.6, ga_avg=1.1, form="WWDLW", **kw):
    from kickoff.domain import TeamStatistics
    from kickoff.utils import utcnow

    return TeamStatistics(
        matches_played=played,
        goals_for=int(played * gf_avg),
        goals_against=int(played * ga_avg),
        goals_for_avg=gf_avg,
        goals_against_avg=ga_avg,
        form=form,
        last_updated=utcnow(),
        **kw,
    )


def make_averages(league_id=LEAGUE_ID, season=SEASON):
    from kickoff.domain import LeagueAverages
    from kickoff.utils import utcnow

    return LeagueAverages(
        league_id=league_id, season=season, avg_goals_per_match=2.8,
        avg_home_goals=1.55, avg_away_goals=1.25, btts_percentage=52.0,
        fixtures=120, source="DB", last_updated=utcnow(),
    )


async def _seed(store, *, stats: bool, averages: bool):
    from kickoff.domain import League, Match, Team
    from kickoff.utils import utcnow

    await store.upsert_league(League(LEAGUE_ID, "Premier League", SEASON, "England"))
    for team_id, name in _SEED_TEAMS:
        await store.upsert_team(Team(team_id, name))
        if stats:
            await store.upsert_team_statistics(team_id, LEAGUE_ID, SEASON, make_stats())
    if averages:
        await store.upsert_league_averages(make_averages())

    now = utcnow()
    fixtures = [(1001, 33, 34), (1002, 40, 42), (1003, 49, 50)]
    for i, (mid, home, away) in enumerate(fixtures):
        await store.upsert_match(Match(mid, LEAGUE_ID, SEASON, home, away, now + timedelta(hours=6 + i)))


def seed(store, *, stats: bool = True, averages: bool = True):
    """Insert one league, six teams and three upcoming fixtures (1001-1003)."""
    asyncio.run(_seed(store, stats=stats, averages=averages))


def finish(store, match_id: int, home_goals: int, away_goals: int, corners: int | None = None):
    """Set a stored match to FT with the given score."""
    async def go():
        m = await store.get_match(match_id)
        m.status, m.home_goals, m.away_goals, m.corners_total = "FT", home_goals, away_goals, corners
        await store.upsert_match(m)

    asyncio.run(go())


@pytest.fixture()
def seeded(store):
    seed(store)
    return store


# ---------------------------------------------------------------------------
# Provider fake
# ---------------------------------------------------------------------------
class FakeProvider:
    """Stands in for AFClient; records calls and serves canned payloads."""

    def __init__(self, stats_payload=None, fixtures=None, details=None, fail=False):
        self.stats_payload = stats_payload
        self.fixtures = fixtures or []
        self.details = details
        self.fail = fail
        self.calls: list[tuple] = []

    def _maybe_fail(self):
        if self.fail:
            from kickoff.errors import ProviderError
            raise ProviderError("provider down")

    async def team_statistics(self, team_id, league_id, season):
        self.calls.append(("team_statistics", team_id, league_id, season))
        self._maybe_fail()
        return self.stats_payload

    async def team_details(self, team_id):
        self.calls.append(("team_details", team_id))
        self._maybe_fail()
        return self.details

    async def finished_fixtures(self, league_id, season):
        self.calls.append(("finished_fixtures", league_id, season))
        self._maybe_fail()
        return self.fixtures


def stats_payload(played=12, gf_avg="1.8", ga_avg="0.9", form="WWDWL"):
    """A trimmed /teams/statistics response object."""
    return {
        "form": form,
        "fixtures": {
            "played": {"home": 6, "away": 6, "total": played},
            "wins": {"total": 7},
            "draws": {"total": 3},
            "loses": {"total": 2},
        },
        "goals": {
            "for": {"total": {"total": 22}, "average": {"total": gf_avg}},
            "against": {"total": {"total": 11}, "average": {"total": ga_avg}},
        },
        "lineups": [{"formation": "4-3-3", "played": 10}],
        "cards": {
            "yellow": {"0-15": {"total": 2}, "16-30": {"total": 5}},
            "red": {"76-90": {"total": 1}, "91-105": {"total": None}},
        },
    }


@pytest.fixture()
def provider():
    return FakeProvider(stats_payload=stats_payload())


@pytest.fixture()
def ctx(con):
    """JobContext over the in-memory database, no cache and no provider."""
    import dataclasses

    from kickoff.cache import NullCache
    from kickoff.config import settings
    from kickoff.jobs import build_context

    s = dataclasses.replace(settings(), simulations=1000, api_football_key=None)
    c = build_context(s, con=con, cache=NullCache())
    c.service.seed = 5
    return c
