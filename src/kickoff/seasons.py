"""Football season helpers. A season is named after the year it starts in (August)."""
from __future__ import annotations

from datetime import datetime, timezone


def season_for_date(d: datetime) -> int:
    return d.year if d.month >= 8 else d.year - 1


def current_season() -> int:
    return season_for_date(datetime.now(timezone.utc))


def previous_season(season: int | None = None) -> int:
    return (season if season is not None else current_season()) - 1
