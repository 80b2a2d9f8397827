"""
Root Typer application for the fetchbeat CLI.
"""

from __future__ import annotations

import sys

import typer
from typer import Typer

from fetchbeat import __version__
from fetchbeat.cli import db, executions, ledger, lock
from fetchbeat.cli.serve import run, serve
from fetchbeat.cli.utils import cli_errors, open_runtime, output_result
from fetchbeat.core.logging import configure_logging

app = Typer(
    name="fetchbeat",
    help="fetchbeat: lease-gated scheduler for Daily Fetch summaries.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"fetchbeat {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """fetchbeat CLI: run the scheduler and inspect its state."""
    # One-shot commands keep stdout for their output; run and serve reconfigure.
    configure_logging(level="WARNING", json_format=False, stream=sys.stderr, cache_loggers=False)


# ── Top-level commands ───────────────────────────────────────────────────

app.command("run")(run)
app.command("serve")(serve)


@app.command("health")
def health(
    hours: int | None = typer.Option(None, "--hours", min=1, help="Stats window in hours"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Score scheduler health from the shared store.

    Ledger and lease figures come from the database. Breaker and queue
    state live in the scheduler process; query the admin API for those.
    """
    with cli_errors(), open_runtime(database) as runtime:
        report = runtime.reporter.report(hours)
    data = report.to_dict()
    if json_out:
        output_result(data, as_json=True)
    else:
        output_result(
            {
                "score": data["score"],
                "status": data["status"],
                "issues": "; ".join(data["issues"]) or "none",
                "executions": data["metrics"]["executions"],
                "lease": data["metrics"]["lease"],
            },
            title="Scheduler Health",
        )
    if report.status == "critical":
        raise typer.Exit(code=2)


# ── Sub-command groups ───────────────────────────────────────────────────

app.add_typer(db.app, name="db", help="Database operations.")
app.add_typer(executions.app, name="executions", help="Execution ledger records.")
app.add_typer(lock.app, name="lock", help="Scheduler lease inspection and override.")
app.add_typer(ledger.app, name="ledger", help="Execution ledger maintenance.")
