"""Tests for retry, timeout and the alerting cron wrapper."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from kickoff.config import JobPolicy
from kickoff.errors import JobTimeoutError
from kickoff.jobs.resilience import (
    RetryPolicy,
    TimeoutPolicy,
    create_cron_job,
    with_policy,
    with_retry,
    with_timeout,
)


class RecordingAlerter:
    def __init__(self, fail=False):
        self.failures: list[tuple] = []
        self.successes: list[tuple] = []
        self.fail = fail

    async def notify_job_failure(self, job_name, message, stack, context):
        if self.fail:
            raise RuntimeError("smtp down")
        self.failures.append((job_name, message, stack, context))
        return True

    async def notify_job_success(self, job_name, stats):
        self.successes.append((job_name, stats))
        return True


def flaky(failures: int, result="ok"):
    calls = {"n": 0}

    async def job():
        calls["n"] += 1
        if calls["n"] <= failures:
            raise RuntimeError(f"fail {calls['n']}")
        return result

    return job, calls


class TestRetry:
    def test_succeeds_after_failures(self):
        job, calls = flaky(2)
        assert asyncio.run(with_retry(job, RetryPolicy(attempts=3, delay=0))()) == "ok"
        assert calls["n"] == 3

    def test_reraises_last_error(self):
        job, calls = flaky(5)
        with pytest.raises(RuntimeError, match="fail 2"):
            asyncio.run(with_retry(job, RetryPolicy(attempts=2, delay=0))())
        assert calls["n"] == 2

    def test_no_delay_after_final_attempt(self):
        job, calls = flaky(5)
        with patch("kickoff.jobs.resilience.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(RuntimeError, match="fail 3"):
                asyncio.run(with_retry(job, RetryPolicy(attempts=3, delay=2.0))())
        assert calls["n"] == 3
        assert sleep.await_count == 2

    def test_at_least_one_attempt(self):
        job, calls = flaky(0)
        asyncio.run(with_retry(job, RetryPolicy(attempts=0, delay=0))())
        assert calls["n"] == 1


class TestTimeout:
    def test_times_out(self):
        async def slow():
            await asyncio.sleep(5)

        with pytest.raises(JobTimeoutError, match="Job timed out after 0.05 seconds"):
            asyncio.run(with_timeout(slow, TimeoutPolicy(0.05))())

    def test_is_a_timeout_error(self):
        assert issubclass(JobTimeoutError, TimeoutError)

    def test_timeout_bounds_whole_retry_loop(self):
        calls = {"n": 0}

        async def slow_fail():
            calls["n"] += 1
            await asyncio.sleep(0.03)
            raise RuntimeError("nope")

        job = with_policy(slow_fail, JobPolicy(retries=10, retry_delay=0.03, timeout=0.1))
        with pytest.raises(JobTimeoutError):
            asyncio.run(job())
        assert calls["n"] < 10


class TestCronJob:
    def test_failure_alerted_and_swallowed(self):
        alerter = RecordingAlerter()
        job, _ = flaky(1)
        wrapped = create_cron_job("Demo", job, alerter=alerter, context={"job": "demo"})
        assert asyncio.run(wrapped()) is None
        name, message, stack, ctx = alerter.failures[0]
        assert (name, message) == ("Demo", "fail 1")
        assert "RuntimeError" in stack
        assert ctx["job"] == "demo" and "execution_ms" in ctx

    def test_rethrow_for_manual_runs(self):
        alerter = RecordingAlerter()
        job, _ = flaky(1)
        with pytest.raises(RuntimeError):
            asyncio.run(create_cron_job("Demo", job, alerter=alerter, rethrow=True)())
        assert len(alerter.failures) == 1

    def test_broken_alerter_does_not_escape(self):
        job, _ = flaky(1)
        assert asyncio.run(create_cron_job("Demo", job, alerter=RecordingAlerter(fail=True))()) is None

    def test_success_notification_opt_in(self):
        alerter = RecordingAlerter()
        job, _ = flaky(0, result={"created": 3})
        assert asyncio.run(create_cron_job("Demo", job, alerter=alerter)()) == {"created": 3}
        assert alerter.successes == []

        asyncio.run(create_cron_job("Demo", job, alerter=alerter, send_success_notification=True)())
        name, stats = alerter.successes[0]
        assert stats["result"] == {"created": 3}
        assert stats["status"] == "success"
