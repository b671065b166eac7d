"""Tests for the cron scheduler wiring.

Jobs are added to an AsyncIOScheduler that is only started inside an event
loop; nothing fires during the tests.
"""
from __future__ import annotations

import asyncio

import pytest

from kickoff.jobs import JOBS, wrap_job
from kickoff.scheduler import JobScheduler


@pytest.fixture()
def scheduler(ctx):
    s = JobScheduler(ctx)
    yield s
    s.stop()


class TestJobScheduling:
    def test_defaults_skip_manual_jobs(self, scheduler):
        added = scheduler.schedule_defaults()
        ids = {j["job_id"] for j in added}
        assert ids == {name for name, spec in JOBS.items() if spec.cron}
        assert "upcoming_predictions_24h" not in ids

    def test_override_schedules_manual_job(self, scheduler):
        scheduler.schedule_defaults({"upcoming_predictions_24h": "0 * * * *", "match_predictions": "15 1 * * *"})
        jobs = {j["job_id"]: j for j in scheduler.list_jobs()}
        assert jobs["upcoming_predictions_24h"]["cron_schedule"] == "0 * * * *"
        assert jobs["match_predictions"]["cron_schedule"] == "15 1 * * *"

    def test_invalid_job(self, scheduler):
        with pytest.raises(ValueError, match="Invalid job"):
            scheduler.add_job("not_a_job")

    def test_manual_job_needs_schedule(self, scheduler):
        with pytest.raises(ValueError, match="no default schedule"):
            scheduler.add_job("upcoming_predictions_7d")

    def test_bad_cron_expression(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.add_job("match_predictions", "not a cron")

    def test_remove(self, scheduler):
        scheduler.add_job("placeholder_refresh")
        assert scheduler.remove_job("placeholder_refresh") == {"removed": "placeholder_refresh"}
        assert scheduler.list_jobs() == []

    def test_start_and_stop_in_loop(self, scheduler):
        async def go():
            scheduler.schedule_defaults()
            scheduler.start()
            running = scheduler.scheduler.running
            nxt = scheduler.list_jobs()[0]["next_run_at"]
            scheduler.stop()
            return running, nxt

        running, nxt = asyncio.run(go())
        assert running is True
        assert nxt is not None


class TestScheduledWrapper:
    def test_scheduled_run_swallows_failure(self, ctx, monkeypatch):
        async def broken():
            raise RuntimeError("down")

        monkeypatch.setattr(ctx.store, "finished_unprocessed_match_ids", broken)
        spec = JOBS["match_result_processor"]
        import dataclasses
        from kickoff.config import JobPolicy

        ctx.settings = dataclasses.replace(
            ctx.settings, jobs={spec.name: JobPolicy(retries=1, retry_delay=0.0, timeout=5.0)},
        )
        assert asyncio.run(wrap_job(spec, ctx)()) is None
        rows = asyncio.run(ctx.tracker.history(spec.title))
        assert rows[0]["status"] == "failed"

    def test_scheduled_run_returns_stats(self, ctx):
        spec = JOBS["prediction_stats_guard"]
        res = asyncio.run(wrap_job(spec, ctx)())
        assert res["created"] is True
