"""
CLI: ``meridian schedule`` - inspect a task snapshot file.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer

from meridian.cli.utils import cli_settings, fail, fail_error, output_result

app = typer.Typer(no_args_is_help=True)


def _load_records(
    snapshot: Path | None,
    config: Path | None,
    app_id: str | None,
    query: str | None,
) -> list[dict[str, Any]]:
    from meridian.core.errors import MeridianError
    from meridian.core.scheduling import SnapshotStore, filter_documents

    if snapshot is None:
        settings = cli_settings(config, app_id=app_id)
        if not settings.app_id:
            fail("Pass --snapshot, or --app-id / MERIDIAN_APP_ID to locate the snapshot", code="CONFIG")
        snapshot = settings.snapshot_path(settings.app_id)

    try:
        records = [task.to_dict() for task in SnapshotStore(snapshot).load_sync()]
        if query:
            records = filter_documents(records, json.loads(query))
    except json.JSONDecodeError as e:
        fail(f"--filter is not valid JSON: {e}", code="VALIDATION")
    except MeridianError as e:
        fail_error(e)
    return records


@app.command("list")
def list_tasks(
    snapshot: Path | None = typer.Option(None, "--snapshot", "-s", help="Snapshot file"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Cluster TOML file"),
    app_id: str | None = typer.Option(None, "--app-id", help="Node whose snapshot to read"),
    query: str | None = typer.Option(None, "--filter", "-f", help="Query document (JSON)"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List tasks in a snapshot."""
    records = _load_records(snapshot, config, app_id, query)
    output_result(records, as_json=json_out, title="Tasks")


@app.command("show")
def show_task(
    task_id: str = typer.Argument(..., help="Task ID"),
    snapshot: Path | None = typer.Option(None, "--snapshot", "-s"),
    config: Path | None = typer.Option(None, "--config", "-c"),
    app_id: str | None = typer.Option(None, "--app-id"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one task."""
    records = _load_records(snapshot, config, app_id, None)
    for record in records:
        if record.get("taskId") == task_id:
            output_result(record, as_json=json_out, title=f"Task: {task_id}")
            return
    fail(f"Task not found: {task_id}", code="NOT_FOUND")


@app.command("count")
def count_tasks(
    snapshot: Path | None = typer.Option(None, "--snapshot", "-s"),
    config: Path | None = typer.Option(None, "--config", "-c"),
    app_id: str | None = typer.Option(None, "--app-id"),
    query: str | None = typer.Option(None, "--filter", "-f", help="Query document (JSON)"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Count tasks in a snapshot."""
    records = _load_records(snapshot, config, app_id, query)
    output_result(len(records), as_json=json_out, title="Tasks")
