"""
Root Typer application for the meridian CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

app = Typer(
    name="meridian",
    help="meridian - cluster task scheduler and message channel.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from meridian import __version__

        typer.echo(f"meridian {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """meridian CLI - inspect topology and snapshots, run nodes."""


# ── Sub-command registration ─────────────────────────────────────────────

from meridian.cli.schedule import app as sched_app  # noqa: E402
from meridian.cli.serve import serve  # noqa: E402
from meridian.cli.topology import topology  # noqa: E402

app.add_typer(sched_app, name="schedule", help="Inspect task snapshots.")
app.command("topology", help="Show the RPC topology.")(topology)
app.command("serve", help="Run a node until interrupted.")(serve)
