"""Root-level commands: predict, generate, regenerate, process, stats."""
from __future__ import annotations

import asyncio
import json
from typing import List, Optional

import typer
from rich.table import Table

from kickoff.cli._shared import _context, _setup_logging, console

app = typer.Typer()


def _print_prediction(pred) -> None:
    if pred.is_placeholder:
        console.print(f"[yellow]Match {pred.match_id}: placeholder ({pred.placeholder_reason.value})[/yellow]")
        return
    c = pred.computed
    o = c.outcomes
    p = c.dixon_coles_params
    console.print(f"\n[cyan]Match {pred.match_id}[/cyan]  status={pred.status}  processed={pred.is_processed}")
    console.print(f"  xG: {p.lambda1:.2f} - {p.lambda2:.2f}  (model {p.model_version}, rho={p.rho}, lambda3={p.lambda3})")
    console.print(f"  Predicted score: {c.model_prediction.home_score} - {c.model_prediction.away_score}"
                  f"  confidence {c.model_prediction.confidence:.1f}%")

    t = Table(show_header=True, header_style="bold")
    t.add_column("Market")
    t.add_column("%", justify="right")
    t.add_column("Pick", justify="center")
    t.add_row("Home", f"{o.home_win:.1f}", "✓" if o.home_win_pick else "")
    t.add_row("Draw", f"{o.draw:.1f}", "✓" if o.draw_pick else "")
    t.add_row("Away", f"{o.away_win:.1f}", "✓" if o.away_win_pick else "")
    t.add_row("1X", f"{o.double_chance_1x:.1f}", "")
    t.add_row("12", f"{o.double_chance_12:.1f}", "")
    t.add_row("X2", f"{o.double_chance_x2:.1f}", "")
    t.add_row("Over 2.5", f"{o.over25:.1f}", "✓" if o.over25_pick else "")
    t.add_row("Under 2.5", f"{o.under25:.1f}", "✓" if o.under25_pick else "")
    t.add_row("BTTS", f"{o.btts:.1f}", "")
    t.add_row("Clean sheet home", f"{o.clean_sheet_home:.1f}", "")
    t.add_row("Clean sheet away", f"{o.clean_sheet_away:.1f}", "")
    t.add_row(f"Most likely {o.exact_score}", f"{o.most_likely_score.probability:.1f}", "")
    console.print(t)


@app.command()
def predict(
    match_id: int,
    as_json: bool = typer.Option(False, "--json", help="Print the stored record as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Show the prediction for a match, generating it if absent."""
    _setup_logging(verbose)
    ctx = _context()
    pred = asyncio.run(ctx.service.get_or_generate(match_id))
    if pred is None:
        console.print(f"[red]Match {match_id} or one of its teams not found[/red]")
        raise typer.Exit(1)
    if as_json:
        console.print_json(json.dumps(pred.to_dict()))
    else:
        _print_prediction(pred)


@app.command()
def generate(
    match_ids: Optional[List[int]] = typer.Argument(None, help="Match ids; default all without a prediction"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Generate predictions in concurrent batches."""
    _setup_logging(verbose)
    ctx = _context()

    async def _go():
        ids = list(match_ids) if match_ids else await ctx.store.match_ids_without_prediction()
        return ids, await ctx.service.run_batches(ids)

    ids, res = asyncio.run(_go())
    placeholders = sum(1 for p in res.predictions if p.is_placeholder)
    console.print(f"[green]{res.processed}/{len(ids)} predictions[/green] "
                  f"({placeholders} placeholders, {res.failed} failed, {res.skipped} skipped)")


@app.command()
def regenerate(match_id: int, verbose: bool = typer.Option(False, "--verbose", "-v")):
    """Recompute a match's prediction and overwrite the stored record."""
    _setup_logging(verbose)
    ctx = _context()
    pred = asyncio.run(ctx.service.regenerate(match_id))
    if pred is None:
        console.print(f"[red]Match {match_id} not found[/red]")
        raise typer.Exit(1)
    _print_prediction(pred)


@app.command()
def process(match_id: int, verbose: bool = typer.Option(False, "--verbose", "-v")):
    """Grade a finished match's prediction."""
    _setup_logging(verbose)
    ctx = _context()
    pred = asyncio.run(ctx.service.process_match_predictions(match_id))
    if pred is None:
        console.print(f"[yellow]Nothing to grade for match {match_id}[/yellow]")
        raise typer.Exit(1)
    console.print(f"Match {match_id}: status=[bold]{pred.status}[/bold] processed={pred.is_processed}")


@app.command()
def stats():
    """Show simulated/won counters per tracked field."""
    _setup_logging(False)
    ctx = _context()
    snap = asyncio.run(ctx.service.stats.snapshot())
    if snap is None:
        console.print("[yellow]No prediction stats yet[/yellow]")
        return

    console.print(f"\n[cyan]Simulated total:[/cyan] {snap['simulated_total']}   "
                  f"[cyan]Won total:[/cyan] {snap['won_total']}")
    t = Table(show_header=True, header_style="bold")
    t.add_column("Field", no_wrap=True)
    t.add_column("Simulated", justify="right")
    t.add_column("Won", justify="right")
    t.add_column("Hit %", justify="right")
    for f, n in snap["per_field_simulated"].items():
        t.add_row(f, str(n), str(snap["per_field_won"].get(f, 0)), f"{snap['hit_rate'][f]:.1f}")
    console.print(t)
