"""
Static cluster topology.

The topology maps every peer id to its :class:`RpcPeerConfig` (address,
services it provides, services it depends on). Authority over a service
(e.g. the schedule store) is a pure lookup in this table, re-evaluated on
every call. Two nodes configured with different tables can both believe
they host a service; nothing here detects that.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping

from meridian.core.config.settings import RpcPeerConfig
from meridian.core.errors import InvalidAppIdError


class RpcTopology:
    """Read-only view of ``settings.rpc``."""

    def __init__(self, peers: Mapping[str, RpcPeerConfig | dict] | None = None) -> None:
        self._peers: dict[str, RpcPeerConfig] = {
            peer_id: cfg if isinstance(cfg, RpcPeerConfig) else RpcPeerConfig.model_validate(cfg)
            for peer_id, cfg in (peers or {}).items()
        }

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._peers

    def __iter__(self) -> Iterator[str]:
        return iter(self._peers)

    def __len__(self) -> int:
        return len(self._peers)

    def get(self, peer_id: str) -> RpcPeerConfig | None:
        return self._peers.get(peer_id)

    def items(self):
        return self._peers.items()

    def ensure(self, peer_id: str) -> RpcPeerConfig:
        """Return the config of ``peer_id``.

        Raises:
            InvalidAppIdError: If the id is not part of the topology.
        """
        cfg = self._peers.get(peer_id)
        if cfg is None:
            raise InvalidAppIdError(peer_id)
        return cfg

    def providers_of(self, service: str) -> list[str]:
        """Peer ids listing ``service``, in configuration order."""
        return [peer_id for peer_id, cfg in self._peers.items() if service in cfg.services]

    def serves(self, peer_id: str, service: str) -> bool:
        cfg = self._peers.get(peer_id)
        return cfg is not None and service in cfg.services

    def to_dict(self) -> dict[str, dict]:
        return {peer_id: cfg.model_dump() for peer_id, cfg in self._peers.items()}
