"""Kickoff CLI, organised into sub-command groups.

Usage examples:
    kickoff predict 1035001          # prediction for one match (generated if absent)
    kickoff generate                 # predict every match without a prediction
    kickoff process 1035001          # grade a finished match
    kickoff stats                    # hit-rate counters
    kickoff jobs run match_predictions
    kickoff jobs summary
    kickoff scheduler start          # run the cron scheduler in the foreground
"""
from __future__ import annotations

import typer

from kickoff.cli.predict_cmds import app as _predict_app
from kickoff.cli.jobs_cmds import app as _jobs_app
from kickoff.cli.scheduler_cmds import app as _scheduler_app

app = typer.Typer(add_completion=False)

# Root-level commands (predict, generate, process, regenerate, stats)
for cmd in _predict_app.registered_commands:
    app.registered_commands.append(cmd)

app.add_typer(_jobs_app, name="jobs")
app.add_typer(_scheduler_app, name="scheduler")


if __name__ == "__main__":
    app()
