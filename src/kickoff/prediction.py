"""Stored prediction records.

A MatchPrediction is either *computed* (engine output available) or a
*placeholder* (inputs were missing; every outcome field is None). The two
shapes share the same wire/storage dictionary so readers do not need to
special-case them beyond `is_placeholder`.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

STATUS_PENDING = "pending"
STATUS_CORRECT = "correct"
STATUS_PARTIAL = "partial"

FIELDS_CONSIDERED = (
    "double_chance_1x",
    "double_chance_x2",
    "btts",
    "over25",
    "under25",
    "corners",
)

OVER_LINES = ("05", "15", "25", "35", "45", "55", "65", "75", "85", "95")


class PlaceholderReason(str, Enum):
    MISSING_TEAM_STATS = "MISSING_TEAM_STATS"
    INSUFFICIENT_TEAM_DATA = "INSUFFICIENT_TEAM_DATA"
    MISSING_LEAGUE_AVERAGES = "MISSING_LEAGUE_AVERAGES"
    API_ERROR = "API_ERROR"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(v: Any) -> Optional[datetime]:
    if v is None or isinstance(v, datetime):
        return v
    return datetime.fromisoformat(str(v))


def _ts(v: Optional[datetime]) -> Optional[str]:
    return v.isoformat() if v is not None else None


def _pick(cls, d: dict[str, Any] | None):
    if d is None:
        return None
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in d.items() if k in known})


@dataclass
class DixonColesParams:
    lambda1: float
    lambda2: float
    lambda3: float
    rho: float
    model_version: str


@dataclass
class ModelPrediction:
    home_score: float
    away_score: float
    confidence: float


@dataclass
class ScoreProbability:
    home: int
    away: int
    probability: float


@dataclass
class Outcomes:
    """Percentages in [0, 100] plus pick flags."""
    home_win: float
    draw: float
    away_win: float
    over05: float
    over15: float
    over25: float
    over35: float
    over45: float
    over55: float
    over65: float
    over75: float
    over85: float
    over95: float
    under25: float
    btts: float
    double_chance_1x: float
    double_chance_12: float
    double_chance_x2: float
    most_likely_score: ScoreProbability
    exact_score: str
    clean_sheet_home: float
    clean_sheet_away: float
    home_win_pick: bool = False
    draw_pick: bool = False
    away_win_pick: bool = False
    over25_pick: bool = False
    under25_pick: bool = False

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> "Outcomes | None":
        if d is None or d.get("home_win") is None:
            return None
        d = dict(d)
        d["most_likely_score"] = _pick(ScoreProbability, d.get("most_likely_score"))
        return _pick(cls, d)

    @staticmethod
    def empty_dict() -> dict[str, Any]:
        """Placeholder shape: every outcome key present with a None value."""
        out: dict[str, Any] = {f.name: None for f in fields(Outcomes)}
        out["most_likely_score"] = {"home": None, "away": None, "probability": None}
        return out


@dataclass
class ManualCorners:
    corner_prediction: Optional[str] = None  # "over" | "under"
    corner_threshold: Optional[float] = None

    @property
    def is_set(self) -> bool:
        return self.corner_prediction in ("over", "under") and self.corner_threshold is not None


@dataclass
class ComputedPrediction:
    dixon_coles_params: DixonColesParams
    model_prediction: ModelPrediction
    outcomes: Outcomes
    simulations: list[tuple[int, int]]
    computation_ms: Optional[float] = None


@dataclass
class PlaceholderPrediction:
    reason: PlaceholderReason


PredictionResult = Union[ComputedPrediction, PlaceholderPrediction]


@dataclass
class MatchPrediction:
    match_id: int
    result: PredictionResult
    status: str = STATUS_PENDING
    is_processed: bool = False
    processed_at: Optional[datetime] = None
    manual_corners: ManualCorners = field(default_factory=ManualCorners)
    home_stats: Optional[dict[str, Any]] = None
    away_stats: Optional[dict[str, Any]] = None
    league_averages: Optional[dict[str, Any]] = None
    predicted_at: datetime = field(default_factory=_utcnow)
    last_updated: datetime = field(default_factory=_utcnow)

    @property
    def is_placeholder(self) -> bool:
        return isinstance(self.result, PlaceholderPrediction)

    @property
    def placeholder_reason(self) -> Optional[PlaceholderReason]:
        return self.result.reason if isinstance(self.result, PlaceholderPrediction) else None

    @property
    def computed(self) -> Optional[ComputedPrediction]:
        return self.result if isinstance(self.result, ComputedPrediction) else None

    def to_dict(self) -> dict[str, Any]:
        c = self.computed
        d: dict[str, Any] = {
            "match_id": self.match_id,
            "is_placeholder": self.is_placeholder,
            "placeholder_reason": self.placeholder_reason.value if self.placeholder_reason else None,
            "dixon_coles_params": asdict(c.dixon_coles_params) if c else None,
            "model_prediction": asdict(c.model_prediction) if c else None,
            "outcomes": asdict(c.outcomes) if c else Outcomes.empty_dict(),
            "simulations": [{"home_score": h, "away_score": a} for h, a in c.simulations] if c else [],
            "computation_ms": c.computation_ms if c else None,
            "status": self.status,
            "is_processed": self.is_processed,
            "processed_at": _ts(self.processed_at),
            "manual_corners": asdict(self.manual_corners),
            "home_stats": self.home_stats,
            "away_stats": self.away_stats,
            "league_averages": self.league_averages,
            "predicted_at": _ts(self.predicted_at),
            "last_updated": _ts(self.last_updated),
        }
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "MatchPrediction":
        result: PredictionResult
        if d.get("is_placeholder"):
            result = PlaceholderPrediction(PlaceholderReason(d.get("placeholder_reason") or "API_ERROR"))
        else:
            result = ComputedPrediction(
                dixon_coles_params=_pick(DixonColesParams, d["dixon_coles_params"]),
                model_prediction=_pick(ModelPrediction, d["model_prediction"]),
                outcomes=Outcomes.from_dict(d["outcomes"]),
                simulations=[(int(s["home_score"]), int(s["away_score"])) for s in d.get("simulations") or []],
                computation_ms=d.get("computation_ms"),
            )
        return cls(
            match_id=int(d["match_id"]),
            result=result,
            status=d.get("status") or STATUS_PENDING,
            is_processed=bool(d.get("is_processed")),
            processed_at=_parse_ts(d.get("processed_at")),
            manual_corners=_pick(ManualCorners, d.get("manual_corners")) or ManualCorners(),
            home_stats=d.get("home_stats"),
            away_stats=d.get("away_stats"),
            league_averages=d.get("league_averages"),
            predicted_at=_parse_ts(d.get("predicted_at")) or _utcnow(),
            last_updated=_parse_ts(d.get("last_updated")) or _utcnow(),
        )


def grade(prediction: ModelPrediction, home_goals: int, away_goals: int) -> str:
    """Exact scoreline match is `correct`; every other outcome is `partial`."""
    # Known quirk, kept for compatibility: home_score/away_score are xG rounded
    # to one decimal, so `correct` is effectively unreachable.
    if prediction.home_score == home_goals and prediction.away_score == away_goals:
        return STATUS_CORRECT
    return STATUS_PARTIAL


def winning_fields(
    home_goals: Optional[int],
    away_goals: Optional[int],
    corners_total: Optional[int] = None,
    manual_corners: Optional[ManualCorners] = None,
) -> list[str]:
    """Tracked fields that would have won given the final score."""
    if home_goals is None or away_goals is None:
        return []
    won: list[str] = []
    total = home_goals + away_goals
    if home_goals >= away_goals:
        won.append("double_chance_1x")
    if away_goals >= home_goals:
        won.append("double_chance_x2")
    if home_goals > 0 and away_goals > 0:
        won.append("btts")
    if total > 2.5:
        won.append("over25")
    if total < 2.5:
        won.append("under25")
    if corners_total is not None and manual_corners is not None and manual_corners.is_set:
        threshold = manual_corners.corner_threshold
        if manual_corners.corner_prediction == "over" and corners_total > threshold:
            won.append("corners")
        elif manual_corners.corner_prediction == "under" and corners_total < threshold:
            won.append("corners")
    return won
