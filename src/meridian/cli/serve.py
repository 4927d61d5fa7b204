"""
CLI: ``meridian serve`` - run a node until interrupted.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from meridian.cli.utils import cli_settings, console, fail_error


def serve(
    app_id: str = typer.Argument(..., help="Peer id from the RPC topology"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Cluster TOML file"),
    log_level: str | None = typer.Option(None, "--log-level", help="Override log level"),
) -> None:
    """Serve APP_ID: open its RPC server, connect dependencies, start scheduling."""
    from meridian.core.errors import MeridianError
    from meridian.core.logging import configure_logging

    settings = cli_settings(config, app_id=app_id, log_level=log_level)
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_format == "json",
        service=app_id,
    )

    try:
        asyncio.run(_run(settings))
    except KeyboardInterrupt:
        console.print(f"[dim]{app_id} stopped.[/dim]")
    except (MeridianError, OSError) as e:
        fail_error(e)


async def _run(settings) -> None:
    from meridian.core.context import AppContext

    context = AppContext(settings)
    try:
        await context.serve(settings.app_id)
        console.print(
            f"[green]RPC server [{settings.app_id}] serving[/green] "
            f"({context.rpc.transport.name})"
        )
        await asyncio.Event().wait()
    finally:
        await context.close()
