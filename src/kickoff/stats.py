"""Running hit-rate counters over the tracked prediction fields."""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import pandas as pd

from kickoff.prediction import FIELDS_CONSIDERED, ManualCorners, winning_fields
from kickoff.store import Store

log = logging.getLogger(__name__)


class PredictionStats:
    """Increment-only counters. Callers guarantee each match is counted once."""

    def __init__(self, store: Store, fields: tuple[str, ...] = FIELDS_CONSIDERED):
        self.store = store
        self.fields = list(fields)

    async def record_simulated(self) -> None:
        await self.store.increment_simulated(self.fields)

    async def record_wins(self, won: list[str]) -> None:
        await self.store.increment_wins([f for f in won if f in self.fields], self.fields)

    async def snapshot(self) -> Optional[dict[str, Any]]:
        s = await self.store.get_stats()
        if s is None:
            return None
        s["hit_rate"] = {
            f: (s["per_field_won"].get(f, 0) / n * 100 if n else 0.0)
            for f, n in s["per_field_simulated"].items()
        }
        return s

    async def rebuild_if_missing(self) -> dict[str, Any]:
        """Recreate the stats row from stored predictions when it is absent.

        Every stored computed prediction counts as simulated; wins are
        replayed from finished matches.
        """
        if await self.store.stats_exist():
            return {"created": False, "message": "stats already exist"}

        df = await self.store.all_predictions_with_results()
        df = df[~df["is_placeholder"].fillna(False).astype(bool)]
        counted = int(len(df))
        per_sim = {f: counted for f in self.fields}
        per_won = {f: 0 for f in self.fields}
        won_total = 0

        done = df[df["finished"].fillna(False).astype(bool)] if counted else df
        for row in done.itertuples(index=False):
            if pd.isna(row.home_goals) or pd.isna(row.away_goals):
                continue
            corners = None if pd.isna(row.corners_total) else int(row.corners_total)
            manual = json.loads(row.payload).get("manual_corners") or {}
            won = winning_fields(
                int(row.home_goals), int(row.away_goals), corners,
                ManualCorners(manual.get("corner_prediction"), manual.get("corner_threshold")),
            )
            if won:
                won_total += 1
                for f in won:
                    per_won[f] += 1

        created = await self.store.create_stats(
            self.fields, counted * len(self.fields), won_total, per_sim, per_won,
        )
        log.info("prediction stats rebuilt from %d predictions (won_total=%d, created=%s)",
                 counted, won_total, created)
        return {"created": created, "predictions": counted, "won_total": won_total}
