"""Append-only audit of job executions (started -> success | failed)."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Optional

from kickoff.store import Store
from kickoff.utils import utcnow

log = logging.getLogger(__name__)


class ExecutionStatus(str, Enum):
    STARTED = "started"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class TrackedRun:
    store: Store
    execution_id: int
    cron_name: str
    executed_at: datetime
    _t0: float

    def _elapsed_ms(self) -> int:
        return int((time.monotonic() - self._t0) * 1000)

    async def success(self, details: Optional[dict[str, Any]] = None) -> None:
        ms = self._elapsed_ms()
        await self.store.finish_cron_execution(self.execution_id, ExecutionStatus.SUCCESS.value, ms, None, details)
        log.info("[%s] completed in %.2fs", self.cron_name, ms / 1000)

    async def fail(self, error: BaseException | str, details: Optional[dict[str, Any]] = None) -> None:
        ms = self._elapsed_ms()
        message = str(error) or type(error).__name__
        await self.store.finish_cron_execution(self.execution_id, ExecutionStatus.FAILED.value, ms, message, details)
        log.error("[%s] failed after %.2fs: %s", self.cron_name, ms / 1000, message)


class ExecutionTracker:
    def __init__(self, store: Store):
        self.store = store

    async def start(self, cron_name: str) -> TrackedRun:
        now = utcnow()
        local = now.astimezone()
        execution_id = await self.store.insert_cron_execution(
            cron_name,
            now,
            now.isoformat(),
            local.strftime("%Y-%m-%d %H:%M:%S"),
            local.tzname() or "UTC",
        )
        return TrackedRun(self.store, execution_id, cron_name, now, time.monotonic())

    async def last_success(self, cron_name: str) -> Optional[dict[str, Any]]:
        rows = await self.store.cron_executions(cron_name, status=ExecutionStatus.SUCCESS.value, limit=1)
        return rows[0] if rows else None

    async def history(self, cron_name: str, limit: int = 10) -> list[dict[str, Any]]:
        return await self.store.cron_executions(cron_name, limit=limit)

    async def recent(self, hours: int = 24) -> list[dict[str, Any]]:
        return await self.store.cron_executions(since=utcnow() - timedelta(hours=hours))

    async def summary(self, names: Optional[Iterable[str]] = None) -> list[dict[str, Any]]:
        """Last run, last success, runs in 24h and failures in 7 days per job."""
        names = list(names) if names is not None else await self.store.cron_names()
        now = utcnow()
        out = []
        for name in names:
            last = await self.store.cron_executions(name, limit=1)
            ok = await self.last_success(name)
            out.append({
                "cron_name": name,
                "last_execution": {
                    "time": last[0]["executed_at_utc"],
                    "status": last[0]["status"],
                    "duration_ms": last[0]["duration_ms"],
                } if last else None,
                "last_success": ok["executed_at_utc"] if ok else None,
                "executions_last_24h": await self.store.count_cron_executions(name, now - timedelta(hours=24)),
                "failures_last_7_days": await self.store.count_cron_executions(
                    name, now - timedelta(days=7), status=ExecutionStatus.FAILED.value,
                ),
            })
        return out
