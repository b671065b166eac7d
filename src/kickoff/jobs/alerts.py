"""
Email alerting for scheduled jobs.

Failure alerts always go out when recipients and SMTP are configured;
success notifications are opt-in. Sending never raises: a broken mail
transport must not take a job run down with it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Callable, Optional

from kickoff.config import Settings

logger = logging.getLogger(__name__)

Sender = Callable[[str, str, list[str], str, str], None]


def _build_failure_email(job_name: str, message: str, stack: Optional[str], context: dict[str, Any]) -> tuple[str, str]:
    subject = f"[kickoff] JOB FAILED: {job_name}"
    body = f"""
Scheduled job failure
=====================

Job: {job_name}
Time (UTC): {datetime.now(timezone.utc).isoformat()}

Error:
------
{message}

Context:
--------
{json.dumps(context or {}, indent=2, default=str)}

Stack trace:
------------
{stack or 'N/A'}
"""
    return subject, body


def _build_success_email(job_name: str, stats: dict[str, Any]) -> tuple[str, str]:
    subject = f"[kickoff] JOB SUCCESS: {job_name}"
    body = f"""
Scheduled job completed
=======================

Job: {job_name}
Time (UTC): {datetime.now(timezone.utc).isoformat()}

Stats:
------
{json.dumps(stats or {}, indent=2, default=str)}
"""
    return subject, body


class EmailAlerter:
    def __init__(self, s: Settings, sender: Optional[Sender] = None):
        self.s = s
        self._sender = sender or self._send_smtp_email

    @property
    def enabled(self) -> bool:
        return bool(self.s.alert_emails) and bool(self.s.smtp_host) and bool(self.s.smtp_from)

    async def _deliver(self, subject: str, body: str) -> bool:
        if not self.enabled:
            logger.debug("[alert] email not configured, skipping %r", subject)
            return False
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None, self._sender, self.s.smtp_from, subject, list(self.s.alert_emails), body, "plain",
            )
        except Exception as e:
            logger.error(f"[alert] failed to send email {subject!r}: {e}")
            return False
        logger.info(f"[alert] email sent: {subject} to {', '.join(self.s.alert_emails)}")
        return True

    async def notify_job_failure(
        self,
        job_name: str,
        message: str,
        stack: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> bool:
        subject, body = _build_failure_email(job_name, message, stack, context or {})
        return await self._deliver(subject, body)

    async def notify_job_success(self, job_name: str, stats: Optional[dict[str, Any]] = None) -> bool:
        subject, body = _build_success_email(job_name, stats or {})
        return await self._deliver(subject, body)

    def _send_smtp_email(self, from_email: str, subject: str, to: list[str], body: str, subtype: str) -> None:
        """Synchronous SMTP send (runs in executor)."""
        msg = MIMEMultipart()
        msg["From"] = from_email
        msg["To"] = ", ".join(to)
        msg["Subject"] = subject
        msg.attach(MIMEText(body, subtype))

        if self.s.smtp_port == 465:
            server = smtplib.SMTP_SSL(self.s.smtp_host, self.s.smtp_port, timeout=30)
        else:
            server = smtplib.SMTP(self.s.smtp_host, self.s.smtp_port, timeout=30)
            server.starttls()
        with server:
            if self.s.smtp_user and self.s.smtp_password:
                server.login(self.s.smtp_user, self.s.smtp_password)
            server.sendmail(from_email, to, msg.as_string())
