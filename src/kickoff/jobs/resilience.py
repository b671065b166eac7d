"""Retry, timeout and failure-alert wrappers for async jobs.

Composition used for every scheduled job:

    create_cron_job(name, with_timeout(with_retry(job, retry), timeout), ...)

so the timeout bounds the whole retry loop, and the outer wrapper turns an
exhausted job into a log line plus an alert instead of a crashed scheduler.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import time
import traceback
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

from kickoff.config import JobPolicy
from kickoff.errors import JobTimeoutError
from kickoff.utils import utcnow

log = logging.getLogger(__name__)

Job = Callable[..., Awaitable[Any]]


class Alerter(Protocol):
    async def notify_job_failure(self, job_name: str, message: str, stack: Optional[str],
                                 context: Optional[dict[str, Any]]) -> bool: ...

    async def notify_job_success(self, job_name: str, stats: Optional[dict[str, Any]]) -> bool: ...


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    delay: float = 5.0


@dataclass(frozen=True)
class TimeoutPolicy:
    seconds: float = 300.0


def with_retry(job: Job, policy: RetryPolicy) -> Job:
    """Re-run `job` up to policy.attempts times with a fixed delay; re-raise the last error."""
    attempts = max(1, policy.attempts)

    @functools.wraps(job)
    async def run(*args, **kwargs):
        attempt = 1
        while True:
            try:
                log.debug("attempt %d/%d for %s", attempt, attempts, getattr(job, "__name__", "job"))
                return await job(*args, **kwargs)
            except Exception as e:
                log.warning("attempt %d/%d failed: %s", attempt, attempts, e)
                if attempt >= attempts:
                    raise
            await asyncio.sleep(policy.delay)
            attempt += 1

    return run


def with_timeout(job: Job, policy: TimeoutPolicy) -> Job:
    @functools.wraps(job)
    async def run(*args, **kwargs):
        try:
            return await asyncio.wait_for(job(*args, **kwargs), timeout=policy.seconds)
        except asyncio.TimeoutError:
            raise JobTimeoutError(f"Job timed out after {policy.seconds:g} seconds") from None

    return run


def with_policy(job: Job, policy: JobPolicy) -> Job:
    return with_timeout(
        with_retry(job, RetryPolicy(policy.retries, policy.retry_delay)),
        TimeoutPolicy(policy.timeout),
    )


def create_cron_job(
    job_name: str,
    job: Job,
    *,
    alerter: Optional[Alerter] = None,
    send_success_notification: bool = False,
    context: Optional[dict[str, Any]] = None,
    rethrow: bool = False,
) -> Job:
    """Log, alert and (for scheduled runs) swallow failures of `job`."""
    context = dict(context or {})

    @functools.wraps(job)
    async def run(*args, **kwargs):
        t0 = time.monotonic()
        log.info("starting job: %s", job_name)
        try:
            result = await job(*args, **kwargs)
        except Exception as e:
            elapsed_ms = int((time.monotonic() - t0) * 1000)
            log.error("job failed: %s after %dms: %s", job_name, elapsed_ms, e)
            ctx = {"execution_ms": elapsed_ms, "timestamp": utcnow().isoformat(), **context}
            if args:
                ctx["args"] = [repr(a) for a in args]
            if alerter is not None:
                try:
                    await alerter.notify_job_failure(job_name, str(e) or type(e).__name__,
                                                     traceback.format_exc(), ctx)
                except Exception as alert_err:
                    log.error("failure alert for %s could not be sent: %s", job_name, alert_err)
            if rethrow:
                raise
            return None

        elapsed_ms = int((time.monotonic() - t0) * 1000)
        log.info("job completed: %s (%dms)", job_name, elapsed_ms)
        if send_success_notification and alerter is not None:
            try:
                await alerter.notify_job_success(
                    job_name, {"execution_ms": elapsed_ms, "status": "success", "result": result, **context},
                )
            except Exception as alert_err:
                log.error("success notification for %s could not be sent: %s", job_name, alert_err)
        return result

    return run
