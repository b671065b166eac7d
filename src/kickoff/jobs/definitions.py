"""Scheduled job bodies and their registry.

Each job records its own execution through ExecutionTracker, returns a stats
dict and re-raises on failure so the retry/timeout/alert wrappers can act.
"""
from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

import duckdb

from kickoff.cache import PredictionCache, build_cache
from kickoff.config import Settings, settings as load_settings
from kickoff.db import connect
from kickoff.domain import NOT_STARTED_STATUSES
from kickoff.jobs.alerts import EmailAlerter
from kickoff.jobs.resilience import Alerter, create_cron_job, with_policy
from kickoff.jobs.tracking import ExecutionTracker
from kickoff.providers.api_football import client_from_settings
from kickoff.seasons import current_season
from kickoff.service import PredictionService
from kickoff.store import Store
from kickoff.utils import chunked, utcnow

log = logging.getLogger(__name__)

TEAM_STATS_BATCH = 10
TEAM_STATS_LOOKAHEAD = timedelta(days=2)
CRON_CLEANUP_BATCH = 1000


@dataclass
class JobContext:
    settings: Settings
    store: Store
    service: PredictionService
    tracker: ExecutionTracker

    @property
    def team_stats(self):
        return self.service.team_stats


def build_context(
    s: Optional[Settings] = None,
    con: Optional[duckdb.DuckDBPyConnection] = None,
    provider=None,
    cache: Optional[PredictionCache] = None,
) -> JobContext:
    s = s or load_settings()
    store = Store(con if con is not None else connect(s.db_path))
    if provider is None:
        provider = client_from_settings(s)
    service = PredictionService.from_settings(store, s, provider=provider, cache=cache or build_cache(s))
    return JobContext(s, store, service, ExecutionTracker(store))


async def _tracked(ctx: JobContext, title: str, body: Callable[[], Awaitable[dict[str, Any]]]) -> dict[str, Any]:
    run = await ctx.tracker.start(title)
    try:
        result = await body()
    except Exception as e:
        await run.fail(e)
        raise
    except asyncio.CancelledError:
        # wait_for cancels the body on timeout; the row must still be closed
        await asyncio.shield(run.fail("cancelled: job timed out"))
        raise
    await run.success(result)
    return result


# ----------------------------------------------------------------------
# job bodies
# ----------------------------------------------------------------------
async def generate_missing_predictions(ctx: JobContext) -> dict[str, Any]:
    """Predict every stored match that has no prediction yet."""
    async def body():
        ids = await ctx.store.match_ids_without_prediction()
        if not ids:
            log.info("all matches already have predictions")
            return {"created": 0, "failed": 0, "skipped": 0}
        log.info("%d matches without predictions", len(ids))
        res = await ctx.service.run_batches(ids)
        return {"created": res.processed, "failed": res.failed, "skipped": res.skipped}

    return await _tracked(ctx, "Match Predictions", body)


async def generate_upcoming_predictions(ctx: JobContext, hours: int = 24) -> dict[str, Any]:
    """Predict not-started matches kicking off within `hours`."""
    async def body():
        now = utcnow()
        ids = await ctx.store.upcoming_match_ids(now, now + timedelta(hours=hours), NOT_STARTED_STATUSES)
        if not ids:
            log.info("no upcoming matches in the next %dh", hours)
            return {"window_hours": hours, "created": 0, "failed": 0, "skipped": 0}
        res = await ctx.service.run_batches(ids)
        return {"window_hours": hours, "created": res.processed, "failed": res.failed, "skipped": res.skipped}

    window = f"{hours // 24}d" if hours > 24 and hours % 24 == 0 else f"{hours}h"
    return await _tracked(ctx, f"Upcoming Predictions ({window})", body)


async def refresh_placeholder_predictions(ctx: JobContext) -> dict[str, Any]:
    """Retry placeholders of matches that have not finished; inputs may exist now."""
    async def body():
        ids = await ctx.store.open_placeholder_match_ids()
        res = await ctx.service.run_batches(ids, ctx.service.regenerate)
        updated = sum(1 for p in res.predictions if not p.is_placeholder)
        return {
            "updated": updated,
            "still_placeholder": len(res.predictions) - updated,
            "failed": res.failed,
        }

    return await _tracked(ctx, "Placeholder Refresh", body)


async def refresh_team_statistics(ctx: JobContext) -> dict[str, Any]:
    """Refresh statistics for every team with a fixture in the next two days."""
    async def body():
        now = utcnow()
        fixtures = await ctx.store.fixtures_between(now, now + TEAM_STATS_LOOKAHEAD)
        keys: list[tuple[int, int, int]] = []
        for home, away, league_id, season in fixtures:
            s = season or current_season()
            for team in (home, away):
                if (team, league_id, s) not in keys:
                    keys.append((team, league_id, s))

        successful = failed = 0
        for chunk in chunked(keys, TEAM_STATS_BATCH):
            results = await asyncio.gather(
                *(ctx.team_stats.update_team_statistics(t, lg, s) for t, lg, s in chunk),
                return_exceptions=True,
            )
            for key, r in zip(chunk, results):
                if isinstance(r, Exception):
                    log.error("team stats refresh failed for %s: %s", key, r)
                    failed += 1
                elif r is None:
                    failed += 1
                else:
                    successful += 1
        return {"teams": len(keys), "successful": successful, "failed": failed}

    return await _tracked(ctx, "Team Stats Update", body)


async def process_finished_matches(ctx: JobContext) -> dict[str, Any]:
    """Grade every unprocessed prediction whose match has finished."""
    async def body():
        ids = await ctx.store.finished_unprocessed_match_ids()
        if not ids:
            return {"processed": 0, "failed": 0, "message": "No finished matches to process"}
        processed = failed = 0
        for mid in ids:
            try:
                await ctx.service.process_match_predictions(mid)
                processed += 1
            except Exception as e:
                log.error("grading match %s failed: %s", mid, e)
                failed += 1
        return {"processed": processed, "failed": failed}

    return await _tracked(ctx, "Match Result Processor", body)


async def guard_prediction_stats(ctx: JobContext) -> dict[str, Any]:
    return await _tracked(ctx, "Prediction Stats Guard", ctx.service.stats.rebuild_if_missing)


async def cleanup_finished_matches(ctx: JobContext) -> dict[str, Any]:
    """Delete matches (and their predictions) older than the match retention."""
    async def body():
        cutoff = utcnow() - timedelta(days=ctx.settings.match_retention_days)
        deleted = await ctx.store.delete_matches_before(cutoff)
        return {"cutoff": cutoff.isoformat(), "deleted": deleted["matches"],
                "predictions_deleted": deleted["predictions"]}

    return await _tracked(ctx, "Finished Match Cleanup", body)


async def cleanup_cron_executions(ctx: JobContext) -> dict[str, Any]:
    async def body():
        cutoff = utcnow() - timedelta(days=ctx.settings.cron_retention_days)
        deleted = await ctx.store.delete_cron_executions_before(cutoff, CRON_CLEANUP_BATCH)
        return {"cutoff": cutoff.isoformat(), "deleted": deleted}

    return await _tracked(ctx, "Cron Execution Cleanup", body)


# ----------------------------------------------------------------------
# registry
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class JobSpec:
    name: str
    title: str
    func: Callable[..., Awaitable[dict[str, Any]]]
    cron: Optional[str]  # None = manual only
    description: str
    kwargs: dict[str, Any] = field(default_factory=dict)


JOBS: dict[str, JobSpec] = {
    spec.name: spec
    for spec in (
        JobSpec("match_predictions", "Match Predictions", generate_missing_predictions,
                "30 3 * * *", "Predict every match without a prediction"),
        JobSpec("upcoming_predictions_24h", "Upcoming Predictions (24h)", generate_upcoming_predictions,
                None, "Predict not-started matches in the next 24 hours", {"hours": 24}),
        JobSpec("upcoming_predictions_7d", "Upcoming Predictions (7d)", generate_upcoming_predictions,
                None, "Predict not-started matches in the next 7 days", {"hours": 24 * 7}),
        JobSpec("placeholder_refresh", "Placeholder Refresh", refresh_placeholder_predictions,
                "0 */6 * * *", "Regenerate placeholder predictions of open matches"),
        JobSpec("team_stats_refresh", "Team Stats Update", refresh_team_statistics,
                "30 2 * * *", "Refresh statistics for teams playing in the next two days"),
        JobSpec("match_result_processor", "Match Result Processor", process_finished_matches,
                "0 5 * * *", "Grade predictions of finished matches"),
        JobSpec("prediction_stats_guard", "Prediction Stats Guard", guard_prediction_stats,
                "30 4 * * *", "Rebuild prediction stats when missing"),
        JobSpec("finished_match_cleanup", "Finished Match Cleanup", cleanup_finished_matches,
                "30 5 * * *", "Delete old matches and their predictions"),
        JobSpec("cron_execution_cleanup", "Cron Execution Cleanup", cleanup_cron_executions,
                "0 6 * * 1", "Prune old job execution records"),
    )
}


def wrap_job(
    spec: JobSpec,
    ctx: JobContext,
    *,
    alerter: Optional[Alerter] = None,
    rethrow: bool = False,
) -> Callable[[], Awaitable[Optional[dict[str, Any]]]]:
    """timeout(retry(job)) inside the alerting wrapper, bound to `ctx`."""
    body = functools.partial(spec.func, ctx, **spec.kwargs)
    return create_cron_job(
        spec.title,
        with_policy(body, ctx.settings.job_policy(spec.name)),
        alerter=alerter if alerter is not None else EmailAlerter(ctx.settings),
        send_success_notification=ctx.settings.send_success_notifications,
        context={"job": spec.name},
        rethrow=rethrow,
    )


async def run_job(name: str, ctx: JobContext, *, alerter: Optional[Alerter] = None) -> Optional[dict[str, Any]]:
    """Manual run: same wrappers as the scheduler but errors propagate."""
    try:
        spec = JOBS[name]
    except KeyError:
        raise ValueError(f"Unknown job: {name}. Known: {', '.join(sorted(JOBS))}") from None
    return await wrap_job(spec, ctx, alerter=alerter, rethrow=True)()
