"""RPC layer: topology, wire protocol, transports and the per-process registry.

Architecture::

    topology.py    RpcTopology over settings.rpc (providers_of / serves / ensure)
    protocol.py    RpcRequest / RpcResponse / RpcEvent + transport protocols
    memory.py      InMemoryTransport (shared hub, JSON round-trip)
    redis.py       RedisTransport (request lists + pub/sub events)
    registry.py    RpcRegistry (serve / connect / route) + ServiceProxy
"""

from meridian.core.rpc.memory import InMemoryTransport
from meridian.core.rpc.protocol import (
    RpcConnection,
    RpcEvent,
    RpcRequest,
    RpcResponse,
    RpcServer,
    RpcTransport,
)
from meridian.core.rpc.registry import RpcRegistry, ServiceProxy
from meridian.core.rpc.topology import RpcPeerConfig, RpcTopology

__all__ = [
    "InMemoryTransport",
    "RpcConnection",
    "RpcEvent",
    "RpcPeerConfig",
    "RpcRegistry",
    "RpcRequest",
    "RpcResponse",
    "RpcServer",
    "RpcTopology",
    "RpcTransport",
    "ServiceProxy",
]
