"""
CLI: ``fetchbeat lock``: inspect and override the scheduler lease.
"""

from __future__ import annotations

import typer

from fetchbeat.cli.utils import cli_errors, default_actor, open_runtime, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the current lease holder and heartbeat health."""
    with cli_errors(), open_runtime(database) as runtime:
        status = runtime.lease.status()
    output_result(status, as_json=json_out, title="Scheduler Lease")


@app.command("release")
def release(
    holder: str = typer.Option(..., "--holder", help="Instance id that holds the lease"),
    actor: str | None = typer.Option(None, "--actor", help="Operator identity for the audit log"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Force-release the lease held by HOLDER."""
    actor = actor or default_actor()
    with cli_errors(), open_runtime(database) as runtime:
        released = runtime.lease.force_release(holder, actor=actor)
    output_result(
        {"holder": holder, "released": released, "actor": actor},
        as_json=json_out,
        title="Lease Release",
    )
    if not released:
        raise typer.Exit(code=1)


@app.command("cleanup")
def cleanup(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Delete expired lease rows."""
    with cli_errors(), open_runtime(database) as runtime:
        removed = runtime.lease.cleanup_expired()
    output_result({"removed": removed}, as_json=json_out, title="Lease Cleanup")
