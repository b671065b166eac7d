"""Shared CLI utilities: console, logging setup, lazy context factory."""
from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

console = Console()


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # per-request lines from httpx drown out job progress
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Lazy imports keep `kickoff --help` fast
# ---------------------------------------------------------------------------

def _context():
    from kickoff.jobs.definitions import build_context
    return build_context()
