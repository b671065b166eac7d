"""Scheduled jobs: bodies, resilience wrappers, execution audit and alerting."""
from kickoff.jobs.definitions import JOBS, JobContext, JobSpec, build_context, run_job, wrap_job

__all__ = ["JOBS", "JobContext", "JobSpec", "build_context", "run_job", "wrap_job"]
