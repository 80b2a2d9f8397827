"""
CLI: ``fetchbeat ledger``: execution ledger maintenance.
"""

from __future__ import annotations

import typer

from fetchbeat.cli.utils import cli_errors, open_runtime, output_result

app = typer.Typer(no_args_is_help=True)


@app.command()
def purge(
    days: int | None = typer.Option(None, "--days", min=1, help="Retention in days (default from settings)"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Delete finished execution records older than the retention window."""
    with cli_errors(), open_runtime(database) as runtime:
        days = days or runtime.settings.execution_retention_days
        removed = runtime.ledger.purge_older_than(days)
    output_result({"older_than_days": days, "removed": removed}, as_json=json_out, title="Ledger Purge")
