"""Async persistence gateway over a DuckDB connection.

Every call runs in a worker thread on its own cursor. Calls are serialised by
a lock because DuckDB rejects concurrent writers touching the same row
instead of queueing them.
"""
from __future__ import annotations

import asyncio
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, TypeVar

import duckdb
import pandas as pd

from kickoff.domain import (
    FINISHED_STATUSES,
    League,
    LeagueAverages,
    Match,
    Team,
    TeamStatistics,
)
from kickoff.prediction import MatchPrediction

log = logging.getLogger(__name__)

T = TypeVar("T")

STATS_ID = "global"

_TEAM_STAT_COLUMNS = (
    "matches_played", "wins", "draws", "losses", "goals_for", "goals_against",
    "goals_for_avg", "goals_against_avg", "xg", "xga", "form",
    "win_percentage", "draw_percentage", "loss_percentage", "goal_difference",
    "most_used_formation", "yellow_cards", "red_cards", "last_updated",
)


def _naive(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is not None and dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _placeholders(n: int) -> str:
    return ", ".join("?" for _ in range(n))


class Store:
    def __init__(self, con: duckdb.DuckDBPyConnection):
        self.con = con
        self._lock = threading.Lock()

    def _call(self, fn: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        with self._lock:
            cur = self.con.cursor()
            try:
                return fn(cur)
            finally:
                cur.close()

    async def _run(self, fn: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        return await asyncio.to_thread(self._call, fn)

    # ------------------------------------------------------------------
    # leagues / teams
    # ------------------------------------------------------------------
    async def upsert_league(self, league: League) -> None:
        await self._run(lambda cur: cur.execute(
            "INSERT OR REPLACE INTO leagues (league_id, name, country, season) VALUES (?, ?, ?, ?)",
            [league.league_id, league.name, league.country, league.season],
        ))

    async def get_league(self, league_id: int) -> Optional[League]:
        row = await self._run(lambda cur: cur.execute(
            "SELECT league_id, name, season, country FROM leagues WHERE league_id = ?", [league_id]
        ).fetchone())
        return League(*row) if row else None

    async def upsert_team(self, team: Team) -> None:
        await self._run(lambda cur: cur.execute(
            "INSERT OR REPLACE INTO teams (team_id, name, code, country, logo) VALUES (?, ?, ?, ?, ?)",
            [team.team_id, team.name, team.code, team.country, team.logo],
        ))

    async def get_team(self, team_id: int) -> Optional[Team]:
        row = await self._run(lambda cur: cur.execute(
            "SELECT team_id, name, code, country, logo FROM teams WHERE team_id = ?", [team_id]
        ).fetchone())
        return Team(*row) if row else None

    # ------------------------------------------------------------------
    # team statistics / league averages
    # ------------------------------------------------------------------
    async def get_team_statistics(self, team_id: int, league_id: int, season: int) -> Optional[TeamStatistics]:
        cols = ", ".join(_TEAM_STAT_COLUMNS)

        def q(cur):
            return cur.execute(
                f"SELECT {cols} FROM team_statistics WHERE team_id = ? AND league_id = ? AND season = ?",
                [team_id, league_id, season],
            ).fetchone()

        row = await self._run(q)
        if row is None:
            return None
        d = dict(zip(_TEAM_STAT_COLUMNS, row))
        d["last_updated"] = _aware(d["last_updated"])
        return TeamStatistics(**{k: v for k, v in d.items() if v is not None})

    async def upsert_team_statistics(self, team_id: int, league_id: int, season: int, stats: TeamStatistics) -> None:
        cols = ("team_id", "league_id", "season") + _TEAM_STAT_COLUMNS
        values = [team_id, league_id, season] + [
            _naive(getattr(stats, c)) if c == "last_updated" else getattr(stats, c)
            for c in _TEAM_STAT_COLUMNS
        ]
        sql = f"INSERT OR REPLACE INTO team_statistics ({', '.join(cols)}) VALUES ({_placeholders(len(cols))})"
        await self._run(lambda cur: cur.execute(sql, values))

    async def get_league_averages(self, league_id: int, season: int) -> Optional[LeagueAverages]:
        row = await self._run(lambda cur: cur.execute(
            """SELECT league_id, season, avg_goals_per_match, avg_home_goals, avg_away_goals,
                      btts_percentage, fixtures, source, last_updated
               FROM league_averages WHERE league_id = ? AND season = ?""",
            [league_id, season],
        ).fetchone())
        if row is None:
            return None
        avg = LeagueAverages(*row)
        avg.last_updated = _aware(avg.last_updated)
        return avg

    async def upsert_league_averages(self, avg: LeagueAverages) -> None:
        await self._run(lambda cur: cur.execute(
            """INSERT OR REPLACE INTO league_averages
               (league_id, season, avg_goals_per_match, avg_home_goals, avg_away_goals,
                btts_percentage, fixtures, source, last_updated)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [avg.league_id, avg.season, avg.avg_goals_per_match, avg.avg_home_goals,
             avg.avg_away_goals, avg.btts_percentage, avg.fixtures, avg.source,
             _naive(avg.last_updated)],
        ))

    async def finished_results(self, league_id: int, season: int) -> pd.DataFrame:
        """Final scores of finished matches in one league season."""
        fin = list(FINISHED_STATUSES)
        return await self._run(lambda cur: cur.execute(
            f"""SELECT match_id, home_goals, away_goals FROM matches
                WHERE league_id = ? AND season = ? AND status IN ({_placeholders(len(fin))})
                  AND home_goals IS NOT NULL AND away_goals IS NOT NULL""",
            [league_id, season, *fin],
        ).df())

    # ------------------------------------------------------------------
    # matches
    # ------------------------------------------------------------------
    async def upsert_match(self, m: Match) -> None:
        await self._run(lambda cur: cur.execute(
            """INSERT OR REPLACE INTO matches
               (match_id, league_id, season, home_team, away_team, kickoff_at, status,
                home_goals, away_goals, corners_total)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [m.match_id, m.league_id, m.season, m.home_team, m.away_team, _naive(m.kickoff_at),
             m.status, m.home_goals, m.away_goals, m.corners_total],
        ))

    async def get_match(self, match_id: int) -> Optional[Match]:
        row = await self._run(lambda cur: cur.execute(
            """SELECT match_id, league_id, season, home_team, away_team, kickoff_at, status,
                      home_goals, away_goals, corners_total
               FROM matches WHERE match_id = ?""",
            [match_id],
        ).fetchone())
        if row is None:
            return None
        m = Match(*row)
        m.kickoff_at = _aware(m.kickoff_at)
        return m

    async def match_ids_without_prediction(self) -> list[int]:
        rows = await self._run(lambda cur: cur.execute(
            """SELECT m.match_id FROM matches m
               LEFT JOIN match_predictions p ON p.match_id = m.match_id
               WHERE p.match_id IS NULL ORDER BY m.kickoff_at NULLS LAST, m.match_id"""
        ).fetchall())
        return [r[0] for r in rows]

    async def upcoming_match_ids(self, start: datetime, end: datetime, statuses: Iterable[str]) -> list[int]:
        st = list(statuses)
        rows = await self._run(lambda cur: cur.execute(
            f"""SELECT match_id FROM matches
                WHERE kickoff_at >= ? AND kickoff_at <= ? AND status IN ({_placeholders(len(st))})
                ORDER BY kickoff_at""",
            [_naive(start), _naive(end), *st],
        ).fetchall())
        return [r[0] for r in rows]

    async def fixtures_between(self, start: datetime, end: datetime) -> list[tuple[int, int, int, Optional[int]]]:
        """(home_team, away_team, league_id, season) for fixtures kicking off in the window."""
        rows = await self._run(lambda cur: cur.execute(
            """SELECT home_team, away_team, league_id, season FROM matches
               WHERE kickoff_at >= ? AND kickoff_at <= ? ORDER BY kickoff_at""",
            [_naive(start), _naive(end)],
        ).fetchall())
        return [tuple(r) for r in rows]

    async def finished_unprocessed_match_ids(self) -> list[int]:
        fin = list(FINISHED_STATUSES)
        rows = await self._run(lambda cur: cur.execute(
            f"""SELECT m.match_id FROM matches m
                JOIN match_predictions p ON p.match_id = m.match_id
                WHERE p.is_processed = FALSE AND m.status IN ({_placeholders(len(fin))})
                ORDER BY m.kickoff_at NULLS LAST, m.match_id""",
            fin,
        ).fetchall())
        return [r[0] for r in rows]

    async def open_placeholder_match_ids(self) -> list[int]:
        fin = list(FINISHED_STATUSES)
        rows = await self._run(lambda cur: cur.execute(
            f"""SELECT p.match_id FROM match_predictions p
                JOIN matches m ON m.match_id = p.match_id
                WHERE p.is_placeholder = TRUE AND p.is_processed = FALSE
                  AND m.status NOT IN ({_placeholders(len(fin))})
                ORDER BY m.kickoff_at NULLS LAST, p.match_id""",
            fin,
        ).fetchall())
        return [r[0] for r in rows]

    async def delete_matches_before(self, cutoff: datetime, batch_size: int = 100) -> dict[str, int]:
        """Delete matches kicking off before `cutoff` together with their predictions."""
        def q(cur):
            matches = predictions = 0
            while True:
                ids = [r[0] for r in cur.execute(
                    "SELECT match_id FROM matches WHERE kickoff_at < ? ORDER BY kickoff_at LIMIT ?",
                    [_naive(cutoff), batch_size],
                ).fetchall()]
                if not ids:
                    break
                marks = _placeholders(len(ids))
                cur.begin()
                predictions += len(cur.execute(
                    f"DELETE FROM match_predictions WHERE match_id IN ({marks}) RETURNING match_id", ids
                ).fetchall())
                matches += len(cur.execute(
                    f"DELETE FROM matches WHERE match_id IN ({marks}) RETURNING match_id", ids
                ).fetchall())
                cur.commit()
            return {"matches": matches, "predictions": predictions}

        return await self._run(q)

    # ------------------------------------------------------------------
    # predictions
    # ------------------------------------------------------------------
    @staticmethod
    def _prediction_row(p: MatchPrediction) -> list[Any]:
        return [
            p.match_id,
            p.is_placeholder,
            p.placeholder_reason.value if p.placeholder_reason else None,
            p.status,
            p.is_processed,
            _naive(p.processed_at),
            _naive(p.predicted_at),
            _naive(p.last_updated),
            json.dumps(p.to_dict()),
        ]

    @staticmethod
    def _prediction_from_row(row) -> MatchPrediction:
        status, is_processed, processed_at, payload = row
        d = json.loads(payload)
        d["status"] = status
        d["is_processed"] = bool(is_processed)
        d["processed_at"] = _aware(processed_at)
        pred = MatchPrediction.from_dict(d)
        pred.predicted_at = _aware(pred.predicted_at)
        pred.last_updated = _aware(pred.last_updated)
        return pred

    _INSERT_PREDICTION = """
        INSERT INTO match_predictions
        (match_id, is_placeholder, placeholder_reason, status, is_processed, processed_at,
         predicted_at, last_updated, payload)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"""

    async def get_prediction(self, match_id: int) -> Optional[MatchPrediction]:
        row = await self._run(lambda cur: cur.execute(
            "SELECT status, is_processed, processed_at, payload FROM match_predictions WHERE match_id = ?",
            [match_id],
        ).fetchone())
        return self._prediction_from_row(row) if row else None

    async def insert_prediction_if_absent(self, p: MatchPrediction) -> bool:
        """Insert unless a record for the match exists. True iff this call inserted."""
        row = self._prediction_row(p)

        def q(cur):
            try:
                inserted = cur.execute(
                    self._INSERT_PREDICTION + " ON CONFLICT DO NOTHING RETURNING match_id", row
                ).fetchall()
            except (duckdb.ConstraintException, duckdb.TransactionException):
                return False
            return bool(inserted)

        return await self._run(q)

    async def replace_prediction(self, p: MatchPrediction) -> None:
        sql = self._INSERT_PREDICTION.replace("INSERT INTO", "INSERT OR REPLACE INTO", 1)
        row = self._prediction_row(p)
        await self._run(lambda cur: cur.execute(sql, row))

    async def mark_prediction_processed(self, match_id: int, status: str, processed_at: datetime) -> bool:
        """Flip is_processed once. True only for the caller that flipped it."""
        rows = await self._run(lambda cur: cur.execute(
            """UPDATE match_predictions SET is_processed = TRUE, status = ?, processed_at = ?
               WHERE match_id = ? AND is_processed = FALSE RETURNING match_id""",
            [status, _naive(processed_at), match_id],
        ).fetchall())
        return bool(rows)

    async def all_predictions_with_results(self) -> pd.DataFrame:
        fin = list(FINISHED_STATUSES)
        return await self._run(lambda cur: cur.execute(
            f"""SELECT p.match_id, p.is_placeholder, p.payload,
                       m.home_goals, m.away_goals, m.corners_total,
                       m.status IN ({_placeholders(len(fin))}) AS finished
                FROM match_predictions p LEFT JOIN matches m ON m.match_id = p.match_id""",
            fin,
        ).df())

    # ------------------------------------------------------------------
    # prediction stats
    # ------------------------------------------------------------------
    @staticmethod
    def _ensure_stats(cur, fields: list[str]) -> None:
        cur.execute(
            "INSERT INTO prediction_stats (id, fields_considered) VALUES (?, ?) ON CONFLICT DO NOTHING",
            [STATS_ID, json.dumps(fields)],
        )
        for f in fields:
            cur.execute(
                "INSERT INTO prediction_stats_fields (stats_id, field) VALUES (?, ?) ON CONFLICT DO NOTHING",
                [STATS_ID, f],
            )

    async def ensure_stats(self, fields: list[str]) -> None:
        await self._run(lambda cur: self._ensure_stats(cur, list(fields)))

    async def stats_exist(self) -> bool:
        row = await self._run(lambda cur: cur.execute(
            "SELECT 1 FROM prediction_stats WHERE id = ?", [STATS_ID]
        ).fetchone())
        return row is not None

    async def increment_simulated(self, fields: list[str]) -> None:
        fields = list(fields)

        def q(cur):
            cur.begin()
            self._ensure_stats(cur, fields)
            cur.execute(
                "UPDATE prediction_stats SET simulated_total = simulated_total + ?, updated_at = now() WHERE id = ?",
                [len(fields), STATS_ID],
            )
            cur.execute(
                f"UPDATE prediction_stats_fields SET simulated = simulated + 1 "
                f"WHERE stats_id = ? AND field IN ({_placeholders(len(fields))})",
                [STATS_ID, *fields],
            )
            cur.commit()

        await self._run(q)

    async def increment_wins(self, fields: list[str], considered: list[str]) -> None:
        fields = list(fields)
        if not fields:
            return

        def q(cur):
            cur.begin()
            self._ensure_stats(cur, list(considered))
            cur.execute(
                "UPDATE prediction_stats SET won_total = won_total + 1, updated_at = now() WHERE id = ?",
                [STATS_ID],
            )
            cur.execute(
                f"UPDATE prediction_stats_fields SET won = won + 1 "
                f"WHERE stats_id = ? AND field IN ({_placeholders(len(fields))})",
                [STATS_ID, *fields],
            )
            cur.commit()

        await self._run(q)

    async def get_stats(self) -> Optional[dict[str, Any]]:
        def q(cur):
            head = cur.execute(
                "SELECT simulated_total, won_total, fields_considered, updated_at FROM prediction_stats WHERE id = ?",
                [STATS_ID],
            ).fetchone()
            if head is None:
                return None
            per = cur.execute(
                "SELECT field, simulated, won FROM prediction_stats_fields WHERE stats_id = ? ORDER BY field",
                [STATS_ID],
            ).fetchall()
            return head, per

        res = await self._run(q)
        if res is None:
            return None
        (simulated, won, considered, updated_at), per = res
        return {
            "simulated_total": simulated,
            "won_total": won,
            "fields_considered": json.loads(considered) if considered else [],
            "per_field_simulated": {f: s for f, s, _ in per},
            "per_field_won": {f: w for f, _, w in per},
            "updated_at": _aware(updated_at),
        }

    async def create_stats(
        self,
        fields: list[str],
        simulated_total: int,
        won_total: int,
        per_field_simulated: dict[str, int],
        per_field_won: dict[str, int],
    ) -> bool:
        """Write a fresh stats row. Returns False when one already exists."""
        def q(cur):
            cur.begin()
            created = cur.execute(
                """INSERT INTO prediction_stats (id, simulated_total, won_total, fields_considered)
                   VALUES (?, ?, ?, ?) ON CONFLICT DO NOTHING RETURNING id""",
                [STATS_ID, simulated_total, won_total, json.dumps(fields)],
            ).fetchall()
            if not created:
                cur.rollback()
                return False
            for f in fields:
                cur.execute(
                    "INSERT OR REPLACE INTO prediction_stats_fields (stats_id, field, simulated, won) VALUES (?, ?, ?, ?)",
                    [STATS_ID, f, per_field_simulated.get(f, 0), per_field_won.get(f, 0)],
                )
            cur.commit()
            return True

        return await self._run(q)

    # ------------------------------------------------------------------
    # cron executions
    # ------------------------------------------------------------------
    _EXEC_COLUMNS = (
        "id", "cron_name", "executed_at", "executed_at_utc", "executed_at_local",
        "server_timezone", "status", "duration_ms", "error", "details",
    )

    def _execution_dict(self, row) -> dict[str, Any]:
        d = dict(zip(self._EXEC_COLUMNS, row))
        d["executed_at"] = _aware(d["executed_at"])
        d["details"] = json.loads(d["details"]) if d["details"] else {}
        return d

    async def insert_cron_execution(
        self,
        cron_name: str,
        executed_at: datetime,
        executed_at_utc: str,
        executed_at_local: str,
        server_timezone: str,
    ) -> int:
        row = await self._run(lambda cur: cur.execute(
            """INSERT INTO cron_executions
               (cron_name, executed_at, executed_at_utc, executed_at_local, server_timezone, status)
               VALUES (?, ?, ?, ?, ?, 'started') RETURNING id""",
            [cron_name, _naive(executed_at), executed_at_utc, executed_at_local, server_timezone],
        ).fetchone())
        return int(row[0])

    async def finish_cron_execution(
        self,
        execution_id: int,
        status: str,
        duration_ms: int,
        error: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        await self._run(lambda cur: cur.execute(
            "UPDATE cron_executions SET status = ?, duration_ms = ?, error = ?, details = ? WHERE id = ?",
            [status, duration_ms, error, json.dumps(details or {}, default=str), execution_id],
        ))

    async def cron_executions(
        self,
        cron_name: Optional[str] = None,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        where, params = [], []
        if cron_name is not None:
            where.append("cron_name = ?")
            params.append(cron_name)
        if status is not None:
            where.append("status = ?")
            params.append(status)
        if since is not None:
            where.append("executed_at >= ?")
            params.append(_naive(since))
        sql = f"SELECT {', '.join(self._EXEC_COLUMNS)} FROM cron_executions"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY executed_at DESC, id DESC"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        rows = await self._run(lambda cur: cur.execute(sql, params).fetchall())
        return [self._execution_dict(r) for r in rows]

    async def count_cron_executions(self, cron_name: str, since: datetime, status: Optional[str] = None) -> int:
        sql = "SELECT count(*) FROM cron_executions WHERE cron_name = ? AND executed_at >= ?"
        params: list[Any] = [cron_name, _naive(since)]
        if status is not None:
            sql += " AND status = ?"
            params.append(status)
        row = await self._run(lambda cur: cur.execute(sql, params).fetchone())
        return int(row[0])

    async def cron_names(self) -> list[str]:
        rows = await self._run(lambda cur: cur.execute(
            "SELECT DISTINCT cron_name FROM cron_executions ORDER BY cron_name"
        ).fetchall())
        return [r[0] for r in rows]

    async def delete_cron_executions_before(self, cutoff: datetime, batch_size: int = 1000) -> int:
        def q(cur):
            deleted = 0
            while True:
                n = len(cur.execute(
                    """DELETE FROM cron_executions WHERE id IN (
                         SELECT id FROM cron_executions WHERE executed_at < ? LIMIT ?
                       ) RETURNING id""",
                    [_naive(cutoff), batch_size],
                ).fetchall())
                deleted += n
                if n < batch_size:
                    return deleted

        return await self._run(q)
