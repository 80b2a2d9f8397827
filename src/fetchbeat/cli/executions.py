"""
CLI: ``fetchbeat executions``: inspect the execution ledger.
"""

from __future__ import annotations

import typer

from fetchbeat.cli.utils import cli_errors, open_runtime, output_list
from fetchbeat.execution.models import ExecutionStatus

app = typer.Typer(no_args_is_help=True)

_COLUMNS = ["id", "user_id", "job_id", "scheduled_date", "trigger_source", "status", "failure_kind", "created_at"]


@app.command("list")
def list_executions(
    status: ExecutionStatus | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    user_id: str | None = typer.Option(None, "--user", "-u", help="Filter by user"),
    limit: int = typer.Option(20, "--limit", "-n", min=1, max=500),
    offset: int = typer.Option(0, "--offset", min=0),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List recent execution records, newest first."""
    with cli_errors(), open_runtime(database) as runtime:
        records = runtime.ledger.list_recent(status=status, user_id=user_id, limit=limit, offset=offset)
        total = runtime.ledger.count(status=status, user_id=user_id)
    output_list(records, as_json=json_out, title="Executions", columns=_COLUMNS, total=total)
