"""
CLI: ``fetchbeat db``: database management commands.
"""

from __future__ import annotations

import typer

from fetchbeat.cli.utils import cli_errors, load_settings, output_result
from fetchbeat.core.schema import apply_schema
from fetchbeat.core.sqlite_conn import SqliteConnection

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database path"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Create the lease, execution and user tables if missing."""
    settings = load_settings(database)
    with cli_errors():
        conn = SqliteConnection(settings.database_path)
        try:
            apply_schema(conn)
        finally:
            conn.close()
    output_result(
        {"database": settings.database_path, "initialized": True},
        as_json=json_out,
        title="Database Init",
    )
