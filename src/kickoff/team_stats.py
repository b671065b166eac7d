"""Team statistics and league averages.

Statistics come from the provider's /teams/statistics payload and are stored
per (team, league, season). League averages are derived from finished
fixtures with pandas, preferring the provider and falling back to finished
matches already in the local database.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional

import pandas as pd

from kickoff.domain import LeagueAverages, Team, TeamStatistics
from kickoff.errors import ProviderError
from kickoff.seasons import current_season
from kickoff.store import Store
from kickoff.utils import safe_int, safe_num, utcnow

log = logging.getLogger(__name__)

DEFAULT_FORMATION = "4-4-2"
LEAGUE_AVERAGES_MAX_AGE = timedelta(hours=24)


def _total(node: Any) -> Any:
    # API-Football nests most counters as {"total": n} but not all of them
    if isinstance(node, dict):
        return node.get("total")
    return node


def map_team_statistics(payload: dict[str, Any]) -> TeamStatistics:
    """Map a /teams/statistics response object onto TeamStatistics."""
    fixtures = payload.get("fixtures") or {}
    goals = payload.get("goals") or {}
    goals_for = goals.get("for") or {}
    goals_against = goals.get("against") or {}
    cards = payload.get("cards") or {}
    lineups = payload.get("lineups") or []

    played = safe_int(_total(fixtures.get("played")))
    wins = safe_int(_total(fixtures.get("wins")))
    draws = safe_int(_total(fixtures.get("draws")))
    losses = safe_int(_total(fixtures.get("loses")))

    gf_total = safe_int(_total(goals_for.get("total")))
    ga_total = safe_int(_total(goals_against.get("total")))
    gf_avg = safe_num(_total(goals_for.get("average"))) or 0.0
    ga_avg = safe_num(_total(goals_against.get("average"))) or 0.0

    yellow = sum(safe_int((v or {}).get("total")) for v in (cards.get("yellow") or {}).values())
    red = sum(safe_int((v or {}).get("total")) for v in (cards.get("red") or {}).values())

    formation = DEFAULT_FORMATION
    if lineups and isinstance(lineups[0], dict) and lineups[0].get("formation"):
        formation = lineups[0]["formation"]

    def pct(n: int) -> float:
        return n / played * 100 if played > 0 else 0.0

    return TeamStatistics(
        matches_played=played,
        wins=wins,
        draws=draws,
        losses=losses,
        goals_for=gf_total,
        goals_against=ga_total,
        goals_for_avg=gf_avg,
        goals_against_avg=ga_avg,
        # the provider exposes no xG; the estimator falls back to goal averages
        xg=0.0,
        xga=0.0,
        form=payload.get("form") or "",
        win_percentage=pct(wins),
        draw_percentage=pct(draws),
        loss_percentage=pct(losses),
        goal_difference=gf_total - ga_total,
        most_used_formation=formation,
        yellow_cards=yellow,
        red_cards=red,
        last_updated=utcnow(),
    )


def compute_league_averages(
    results: pd.DataFrame,
    league_id: int,
    season: int,
    source: str,
) -> Optional[LeagueAverages]:
    """Scoring averages from a frame with home_goals / away_goals columns."""
    if results is None or results.empty:
        return None
    df = results[["home_goals", "away_goals"]].apply(pd.to_numeric, errors="coerce").fillna(0)
    total = df["home_goals"] + df["away_goals"]
    btts = (df["home_goals"] > 0) & (df["away_goals"] > 0)
    return LeagueAverages(
        league_id=league_id,
        season=season,
        avg_goals_per_match=round(float(total.mean()), 2),
        avg_home_goals=round(float(df["home_goals"].mean()), 2),
        avg_away_goals=round(float(df["away_goals"].mean()), 2),
        btts_percentage=round(float(btts.mean()) * 100, 2),
        fixtures=int(len(df)),
        source=source,
        last_updated=utcnow(),
    )


def _fixtures_frame(fixtures: list[dict[str, Any]]) -> pd.DataFrame:
    rows = [
        {"home_goals": (f.get("goals") or {}).get("home"), "away_goals": (f.get("goals") or {}).get("away")}
        for f in fixtures
    ]
    return pd.DataFrame(rows, columns=["home_goals", "away_goals"])


class TeamStatsService:
    def __init__(self, store: Store, provider=None, refresh_hours: int = 0):
        self.store = store
        self.provider = provider
        self.refresh_hours = refresh_hours

    async def _ensure_team(self, team_id: int) -> bool:
        if await self.store.get_team(team_id) is not None:
            return True
        log.warning("team %s not in database; fetching details from provider", team_id)
        details = await self.provider.team_details(team_id)
        t = (details or {}).get("team")
        if not t:
            log.warning("could not fetch team details for team_id=%s; skipping", team_id)
            return False
        await self.store.upsert_team(Team(
            team_id=int(t["id"]), name=t.get("name") or str(team_id),
            code=t.get("code"), country=t.get("country"), logo=t.get("logo"),
        ))
        return True

    def _is_fresh(self, stats: TeamStatistics) -> bool:
        if self.refresh_hours <= 0 or stats.last_updated is None:
            return False
        return utcnow() - stats.last_updated < timedelta(hours=self.refresh_hours)

    async def update_team_statistics(self, team_id: int, league_id: int, season: int) -> Optional[TeamStatistics]:
        """Refresh one team's statistics from the provider.

        Returns the stored statistics when they are younger than the refresh
        TTL or when the provider has nothing; None when there is nothing at all.
        Provider failures are logged, never raised.
        """
        existing = await self.store.get_team_statistics(team_id, league_id, season)
        if existing is not None and self._is_fresh(existing):
            return existing
        if self.provider is None:
            return existing

        try:
            if not await self._ensure_team(team_id):
                return None
            payload = await self.provider.team_statistics(team_id, league_id, season)
            if not payload:
                return existing
            mapped = map_team_statistics(payload)
        except ProviderError as e:
            log.warning("team stats refresh failed for team=%s league=%s season=%s: %s",
                        team_id, league_id, season, e)
            return existing
        except Exception:
            log.exception("unexpected error refreshing team stats for team=%s league=%s season=%s",
                          team_id, league_id, season)
            return existing

        await self.store.upsert_team_statistics(team_id, league_id, season, mapped)
        log.info("team stats updated: team=%s league=%s season=%s played=%d",
                 team_id, league_id, season, mapped.matches_played)
        return mapped

    async def get_team_stats_for_prediction(self, team_id: int, league_id: int, season: int) -> Optional[TeamStatistics]:
        stats = await self.store.get_team_statistics(team_id, league_id, season)
        if stats is None:
            log.warning("no statistics for team %s in league %s, season %s", team_id, league_id, season)
        return stats

    async def _averages_for_season(self, league_id: int, season: int) -> Optional[LeagueAverages]:
        stored = await self.store.get_league_averages(league_id, season)
        if stored is not None and stored.last_updated is not None:
            if utcnow() - stored.last_updated < LEAGUE_AVERAGES_MAX_AGE or self.provider is None:
                return stored

        avg = None
        if self.provider is not None:
            try:
                fixtures = await self.provider.finished_fixtures(league_id, season)
            except ProviderError as e:
                log.warning("finished fixtures unavailable for league %s season %s: %s", league_id, season, e)
                fixtures = []
            except Exception:
                log.exception("unexpected error fetching finished fixtures for league %s season %s", league_id, season)
                fixtures = []
            try:
                avg = compute_league_averages(_fixtures_frame(fixtures), league_id, season, "API")
            except Exception:
                log.exception("malformed fixtures payload for league %s season %s", league_id, season)
                avg = None
        if avg is None:
            avg = compute_league_averages(await self.store.finished_results(league_id, season), league_id, season, "DB")
        if avg is None:
            return stored

        await self.store.upsert_league_averages(avg)
        return avg

    async def get_league_averages(self, league_id: int, season: Optional[int] = None) -> Optional[LeagueAverages]:
        """League's stored season first, then the season before it."""
        league = await self.store.get_league(league_id)
        base = league.season if league is not None and league.season else (season or current_season())

        avg = await self._averages_for_season(league_id, base)
        if avg is not None:
            return avg
        log.info("no league averages for league %s season %s; trying %s", league_id, base, base - 1)
        return await self._averages_for_season(league_id, base - 1)
