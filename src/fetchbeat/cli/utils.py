"""
CLI utility helpers: settings overrides, runtime construction and output.
"""

from __future__ import annotations

import getpass
import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from fetchbeat.core.errors import FetchbeatError
from fetchbeat.core.settings import FetchbeatSettings
from fetchbeat.runtime import SchedulerRuntime, create_runtime

console = Console()
err_console = Console(stderr=True)


# ── Settings / runtime helpers ───────────────────────────────────────────


def load_settings(database: str | None = None, **overrides: Any) -> FetchbeatSettings:
    """Settings from the environment, with command-line overrides applied."""
    settings = FetchbeatSettings()
    update = {key: value for key, value in overrides.items() if value is not None}
    if database:
        update["database_path"] = database
    return settings.model_copy(update=update) if update else settings


@contextmanager
def open_runtime(database: str | None = None) -> Iterator[SchedulerRuntime]:
    """A store-only runtime for one-shot commands. Closed on exit."""
    runtime = create_runtime(load_settings(database))
    try:
        yield runtime
    finally:
        runtime.close()


def default_actor() -> str:
    return f"cli:{getpass.getuser()}"


@contextmanager
def cli_errors() -> Iterator[None]:
    """Print a ``FetchbeatError`` and exit 1 instead of showing a traceback."""
    try:
        yield
    except FetchbeatError as exc:
        err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}")
        raise typer.Exit(code=1) from exc


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert record / pydantic model / dict to plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output_result(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render one object as key/value pairs, or as JSON."""
    payload = _to_dict(data)
    if as_json:
        console.print_json(json.dumps(payload, default=str))
        return
    _print_dict(payload, title=title)


def output_list(
    items: list,
    *,
    as_json: bool = False,
    title: str = "",
    columns: list[str] | None = None,
    total: int | None = None,
) -> None:
    """Render a list as a Rich table, or as JSON with the total."""
    rows = [_to_dict(item) for item in items]
    if as_json:
        console.print_json(json.dumps({"items": rows, "total": total if total is not None else len(rows)}, default=str))
        return
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    _print_table(rows, title=title, columns=columns)
    if total is not None:
        console.print(f"\n[dim]Showing {len(rows)} of {total}[/dim]")


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(rows: list[dict[str, Any]], *, title: str = "", columns: list[str] | None = None) -> None:
    columns = columns or list(rows[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if row.get(col) is None else str(row.get(col)) for col in columns))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "", indent: int = 2) -> None:
    if title:
        console.print(f"[bold]{title}[/bold]")
    pad = " " * indent
    for key, value in data.items():
        if isinstance(value, dict):
            console.print(f"{pad}[cyan]{key}[/cyan]:")
            _print_dict(value, indent=indent + 2)
        else:
            console.print(f"{pad}[cyan]{key}[/cyan]: {value}")
