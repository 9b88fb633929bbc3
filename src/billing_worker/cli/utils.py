"""
CLI utility helpers: settings, connection and output formatting.
"""

from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from billing_worker.core.database import connect
from billing_worker.core.settings import WorkerSettings, get_settings

console = Console()
err_console = Console(stderr=True)


# ── Settings / connection ────────────────────────────────────────────────


def load_settings(database: str | None = None) -> WorkerSettings:
    """Process settings, with ``--database`` overriding ``db_path``."""
    settings = get_settings()
    if database:
        settings = settings.model_copy(update={"db_path": database})
    return settings


def open_database(settings: WorkerSettings) -> Any:
    return connect(settings.db_path)


# ── Output helpers ───────────────────────────────────────────────────────


def to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / object with ``to_dict`` to a plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime | date):
        return value.isoformat()
    return value


def output_rows(rows: list[Any], *, as_json: bool = False, title: str = "") -> None:
    """Render rows as a Rich table, or as a JSON array with ``--json``."""
    dicts = [{k: _plain(v) for k, v in to_dict(r).items()} for r in rows]
    if as_json:
        console.print_json(json.dumps(dicts, default=str))
        return
    if not dicts:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in dicts[0]:
        table.add_column(col, overflow="fold")
    for d in dicts:
        table.add_row(*("" if v is None else str(v) for v in d.values()))
    console.print(table)


def output_dict(data: dict[str, Any], *, as_json: bool = False, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {_plain(v)}")


def fail(message: str, code: int = 1) -> typer.Exit:
    """Print an error and return the Exit to raise."""
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    return typer.Exit(code=code)
