"""Job sub-commands: list, run, history, recent, summary."""
from __future__ import annotations

import asyncio
import json

import typer
from rich.table import Table

from kickoff.cli._shared import _context, _setup_logging, console

app = typer.Typer(help="Run and inspect jobs.")


@app.command("list")
def list_jobs():
    """List registered jobs and their default schedules."""
    from kickoff.config import settings
    from kickoff.jobs.definitions import JOBS

    s = settings()
    t = Table(show_header=True, header_style="bold")
    t.add_column("Job", no_wrap=True)
    for col in ("Schedule (UTC)", "Retries", "Timeout", "Description"):
        t.add_column(col)
    for name, spec in JOBS.items():
        pol = s.job_policy(name)
        t.add_row(name, spec.cron or "manual", str(pol.retries), f"{pol.timeout:g}s", spec.description)
    console.print(t)


@app.command()
def run(name: str, verbose: bool = typer.Option(False, "--verbose", "-v")):
    """Run one job now with its retry/timeout policy."""
    from kickoff.jobs.definitions import run_job

    _setup_logging(verbose)
    ctx = _context()
    try:
        result = asyncio.run(run_job(name, ctx))
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2)
    except Exception as e:
        console.print(f"[red]Job {name} failed:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]{name} done[/green]")
    console.print_json(json.dumps(result or {}, default=str))


def _executions_table(rows: list[dict]) -> Table:
    t = Table(show_header=True, header_style="bold")
    for col in ("Job", "Executed (UTC)", "Status", "Duration", "Error"):
        t.add_column(col)
    for r in rows:
        dur = f"{r['duration_ms'] / 1000:.2f}s" if r["duration_ms"] is not None else "-"
        t.add_row(r["cron_name"], r["executed_at_utc"] or "", r["status"], dur, (r["error"] or "")[:60])
    return t


@app.command()
def history(name: str, limit: int = 10):
    """Execution history of one job (tracked name, e.g. "Match Predictions")."""
    ctx = _context()
    rows = asyncio.run(ctx.tracker.history(name, limit=limit))
    if not rows:
        console.print(f"[yellow]No executions recorded for {name!r}[/yellow]")
        return
    console.print(_executions_table(rows))


@app.command()
def recent(hours: int = 24):
    """All executions in the last N hours."""
    ctx = _context()
    console.print(_executions_table(asyncio.run(ctx.tracker.recent(hours))))


@app.command()
def summary():
    """Last run, last success, runs in 24h and failures in 7 days per job."""
    ctx = _context()
    rows = asyncio.run(ctx.tracker.summary())
    t = Table(show_header=True, header_style="bold")
    for col in ("Job", "Last run", "Status", "Last success", "Runs 24h", "Failures 7d"):
        t.add_column(col)
    for r in rows:
        last = r["last_execution"] or {}
        t.add_row(
            r["cron_name"], last.get("time") or "-", last.get("status") or "-",
            r["last_success"] or "-", str(r["executions_last_24h"]), str(r["failures_last_7_days"]),
        )
    console.print(t)
