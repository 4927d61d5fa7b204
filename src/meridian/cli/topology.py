"""
CLI: ``meridian topology`` - show the configured cluster.
"""

from __future__ import annotations

from pathlib import Path

import typer

from meridian.cli.utils import cli_settings, output_result


def topology(
    config: Path | None = typer.Option(None, "--config", "-c", help="Cluster TOML file"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List peers with their services, dependencies and schedule role."""
    from meridian.core.rpc.topology import RpcTopology

    settings = cli_settings(config)
    topo = RpcTopology(settings.rpc)
    rows = []
    for peer_id, cfg in topo.items():
        deps = cfg.dependencies
        rows.append({
            "id": peer_id,
            "address": f"{cfg.host}:{cfg.port}",
            "services": ",".join(cfg.services),
            "dependencies": deps if isinstance(deps, str) else ",".join(deps or []),
            "fallback_to_local": cfg.fallback_to_local,
            "schedule_host": topo.serves(peer_id, settings.schedule_service),
        })
    output_result(rows, as_json=json_out, title="RPC topology")
