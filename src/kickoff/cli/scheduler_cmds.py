"""Scheduler sub-commands: start, show."""
from __future__ import annotations

import asyncio
from typing import List, Optional

import typer

from kickoff.cli._shared import _context, _setup_logging, console

app = typer.Typer(help="Job scheduling commands.")


def _parse_overrides(items: Optional[List[str]]) -> dict[str, str]:
    out = {}
    for item in items or []:
        name, sep, cron = item.partition("=")
        if not sep or not cron.strip():
            raise typer.BadParameter(f"expected JOB=CRON, got {item!r}")
        out[name.strip()] = cron.strip()
    return out


@app.command()
def start(
    cron: Optional[List[str]] = typer.Option(None, "--cron", help='Override a schedule: JOB="0 3 * * *"'),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run the scheduler in the foreground until interrupted."""
    from kickoff.scheduler import JobScheduler

    _setup_logging(verbose)
    overrides = _parse_overrides(cron)
    ctx = _context()

    async def _main():
        scheduler = JobScheduler(ctx)
        try:
            scheduler.schedule_defaults(overrides)
        except ValueError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(2)
        scheduler.start()
        console.print("[green]Scheduler started[/green]")
        for job in scheduler.list_jobs():
            console.print(f"  - {job['job_id']:26s} {job['cron_schedule']:15s} (next: {job['next_run_at']})")
        try:
            await asyncio.Event().wait()
        finally:
            scheduler.stop()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        console.print("[green]Scheduler stopped[/green]")


@app.command()
def show():
    """Show the default schedule without starting anything."""
    from kickoff.jobs.definitions import JOBS

    for name, spec in JOBS.items():
        if spec.cron:
            console.print(f"  - {name:26s} {spec.cron:15s} {spec.description}")
