"""
CLI utility helpers - settings loading and output formatting.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from meridian.core.config import MeridianSettings, load_settings
from meridian.core.errors import MeridianError, categorize_error

console = Console()
err_console = Console(stderr=True)


# ── Settings helper ──────────────────────────────────────────────────────


def cli_settings(config: Path | None = None, **overrides: Any) -> MeridianSettings:
    """Load settings for a CLI command, exiting with a message on failure."""
    try:
        return load_settings(config, **{k: v for k, v in overrides.items() if v is not None})
    except MeridianError as e:
        fail_error(e)


def fail(message: str, *, code: str = "ERROR") -> NoReturn:
    """Print an error and exit with status 1."""
    err_console.print(f"[bold red]Error[/bold red] ({code}): {message}")
    raise typer.Exit(code=1)


def fail_error(error: Exception) -> NoReturn:
    """Report an exception under its error category and exit with status 1."""
    fail(getattr(error, "message", None) or str(error), code=categorize_error(error).value)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output_result(
    data: Any,
    *,
    as_json: bool = False,
    title: str = "",
) -> None:
    """Render a record, a list of records or a scalar to the terminal."""
    if as_json:
        if isinstance(data, list | tuple):
            payload: Any = [_to_dict(d) for d in data]
        elif isinstance(data, int | float | str | bool) or data is None:
            payload = data
        else:
            payload = _to_dict(data)
        console.print_json(json.dumps(payload, default=str))
        return

    if isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title)
    elif isinstance(data, int | float | str | bool):
        if title:
            console.print(f"[bold]{title}[/bold]: {data}")
        else:
            console.print(data)
    else:
        _print_dict(_to_dict(data), title=title)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list, *, title: str = "") -> None:
    """Render a list of dataclasses/dicts as a Rich table.

    Columns are the union of keys in first-seen order; records may omit keys.
    """
    rows = [_to_dict(item) for item in items]
    columns: list[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)

    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(_cell(row.get(col)) for col in columns))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list | dict):
        return json.dumps(value)
    return str(value)
