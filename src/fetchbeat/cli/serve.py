"""
CLI: ``fetchbeat run`` and ``fetchbeat serve``: long-running processes.

``run`` starts only the tick loop. ``serve`` starts the admin API, whose
lifespan also runs the tick loop when collaborators are configured.
"""

from __future__ import annotations

import asyncio
import signal

import typer

from fetchbeat.cli.utils import cli_errors, console, load_settings
from fetchbeat.core.logging import configure_logging, get_logger
from fetchbeat.core.settings import FetchbeatSettings
from fetchbeat.runtime import create_runtime

logger = get_logger(__name__)


async def run_scheduler(settings: FetchbeatSettings, stop: asyncio.Event | None = None) -> None:
    """Run the tick loop until SIGINT/SIGTERM (or ``stop`` is set), then shut down cleanly."""
    stop = stop or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # not supported on this platform or outside the main thread
            pass

    runtime = create_runtime(settings)
    try:
        runtime.start()
        await stop.wait()
        logger.info("scheduler.shutdown_requested", instance_id=settings.instance_id)
        await runtime.stop()
    finally:
        runtime.close()


def run(
    database: str | None = typer.Option(None, "--database", "-d", help="SQLite database path"),
    collaborators: str | None = typer.Option(
        None, "--collaborators", "-c", help="Factory 'package.module:factory' returning Collaborators"
    ),
    log_level: str | None = typer.Option(None, "--log-level"),
    json_logs: bool | None = typer.Option(None, "--json-logs/--console-logs"),
) -> None:
    """Run the scheduler tick loop in the foreground.

    Example::

        fetchbeat run --collaborators myapp.fetch:build_collaborators
    """
    settings = load_settings(database, collaborators=collaborators, log_level=log_level, json_logs=json_logs)
    configure_logging(
        level=settings.log_level,
        json_format=settings.json_logs,
        instance_id=settings.instance_id,
    )
    console.print(
        f"[bold green]Starting fetchbeat scheduler[/bold green] "
        f"(instance={settings.instance_id}, tick={settings.tick_interval_seconds:g}s)"
    )
    with cli_errors():
        asyncio.run(run_scheduler(settings))
    console.print("[yellow]Scheduler stopped[/yellow]")


def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on changes"),
) -> None:
    """Start the admin API server (and the tick loop, if collaborators are set)."""
    import uvicorn

    settings = load_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.json_logs,
        instance_id=settings.instance_id,
    )
    host = host or settings.host
    port = port or settings.port
    console.print(f"[bold green]Starting fetchbeat API[/bold green] on {host}:{port}")
    uvicorn.run(
        "fetchbeat.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )
