"""Match, team and statistics records read by the prediction engine."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, Optional

FINISHED_STATUSES = ("FT", "AET", "PEN")
NOT_STARTED_STATUSES = ("NS", "TBD", "PST")


@dataclass
class Team:
    team_id: int
    name: str
    code: Optional[str] = None
    country: Optional[str] = None
    logo: Optional[str] = None


@dataclass
class League:
    league_id: int
    name: str
    season: Optional[int] = None
    country: Optional[str] = None


@dataclass
class Match:
    match_id: int
    league_id: int
    season: Optional[int]
    home_team: int
    away_team: int
    kickoff_at: Optional[datetime] = None
    status: str = "NS"
    home_goals: Optional[int] = None
    away_goals: Optional[int] = None
    corners_total: Optional[int] = None

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_STATUSES


@dataclass
class TeamStatistics:
    matches_played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    goals_for: int = 0
    goals_against: int = 0
    goals_for_avg: float = 0.0
    goals_against_avg: float = 0.0
    xg: float = 0.0
    xga: float = 0.0
    form: str = ""
    win_percentage: float = 0.0
    draw_percentage: float = 0.0
    loss_percentage: float = 0.0
    goal_difference: int = 0
    most_used_formation: Optional[str] = None
    yellow_cards: int = 0
    red_cards: int = 0
    last_updated: Optional[datetime] = None

    @property
    def has_data(self) -> bool:
        """Enough sample to feed the goal-rate estimator."""
        return (self.matches_played or 0) > 0 and (self.goals_for_avg or 0) > 0

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        if self.last_updated is not None:
            d["last_updated"] = self.last_updated.isoformat()
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> "TeamStatistics | None":
        if d is None:
            return None
        known = {f.name for f in fields(cls)}
        kw = {k: v for k, v in d.items() if k in known}
        lu = kw.get("last_updated")
        if isinstance(lu, str):
            kw["last_updated"] = datetime.fromisoformat(lu)
        return cls(**kw)


@dataclass
class LeagueAverages:
    league_id: int
    season: int
    avg_goals_per_match: float
    avg_home_goals: float
    avg_away_goals: float
    btts_percentage: float
    fixtures: int = 0
    source: str = "API"
    last_updated: Optional[datetime] = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        if self.last_updated is not None:
            d["last_updated"] = self.last_updated.isoformat()
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> "LeagueAverages | None":
        if d is None:
            return None
        known = {f.name for f in fields(cls)}
        kw = {k: v for k, v in d.items() if k in known}
        lu = kw.get("last_updated")
        if isinstance(lu, str):
            kw["last_updated"] = datetime.fromisoformat(lu)
        return cls(**kw)
