"""
Job scheduler.

Runs the registered jobs on cron triggers with APScheduler's asyncio
scheduler. Each fire goes through the same wrappers as a manual run
(timeout around retries, failure alert) but failures are swallowed so one
bad run never stops the scheduler.

Default jobs (UTC):
- match_predictions       03:30 daily
- placeholder_refresh     every 6 hours
- team_stats_refresh      02:30 daily
- match_result_processor  05:00 daily
- prediction_stats_guard  04:30 daily
- finished_match_cleanup  05:30 daily
- cron_execution_cleanup  Monday 06:00
"""
from __future__ import annotations
import logging
from typing import Any, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from kickoff.jobs.definitions import JOBS, JobContext, JobSpec, wrap_job
from kickoff.jobs.resilience import Alerter

log = logging.getLogger(__name__)


class JobScheduler:
    """
    Example usage:
        scheduler = JobScheduler(build_context())
        scheduler.schedule_defaults()
        scheduler.start()          # inside a running event loop
        scheduler.list_jobs()
    """

    def __init__(self, ctx: JobContext, alerter: Optional[Alerter] = None, scheduler: Optional[AsyncIOScheduler] = None):
        self.ctx = ctx
        self.alerter = alerter
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._crons: dict[str, str] = {}

    def add_job(self, job_id: str, cron_schedule: Optional[str] = None) -> dict:
        """
        Schedule a registered job.

        Args:
            job_id: registry name (e.g. "match_predictions")
            cron_schedule: crontab expression; defaults to the job's own

        Returns:
            Job configuration dict
        """
        spec = JOBS.get(job_id)
        if spec is None:
            raise ValueError(f"Invalid job: {job_id}")
        cron = cron_schedule or spec.cron
        if not cron:
            raise ValueError(f"Job {job_id} has no default schedule; pass cron_schedule")

        self.scheduler.add_job(
            wrap_job(spec, self.ctx, alerter=self.alerter, rethrow=False),
            trigger=CronTrigger.from_crontab(cron, timezone="UTC"),
            id=job_id,
            name=spec.title,
            replace_existing=True,
            misfire_grace_time=600,
            max_instances=1,
            coalesce=True,
        )
        self._crons[job_id] = cron
        log.info("scheduled %s (%s)", job_id, cron)
        return {"job_id": job_id, "title": spec.title, "cron_schedule": cron}

    def schedule_defaults(self, overrides: Optional[dict[str, str]] = None) -> list[dict]:
        overrides = overrides or {}
        return [
            self.add_job(name, overrides.get(name))
            for name, spec in JOBS.items()
            if spec.cron or name in overrides
        ]

    def remove_job(self, job_id: str) -> dict:
        if self.scheduler.get_job(job_id):
            self.scheduler.remove_job(job_id)
        self._crons.pop(job_id, None)
        return {"removed": job_id}

    def list_jobs(self) -> list[dict[str, Any]]:
        out = []
        for job_id, cron in self._crons.items():
            spec: JobSpec = JOBS[job_id]
            ap_job = self.scheduler.get_job(job_id)
            out.append({
                "job_id": job_id,
                "title": spec.title,
                "description": spec.description,
                "cron_schedule": cron,
                "next_run_at": getattr(ap_job, "next_run_time", None) if ap_job else None,
            })
        return out

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
