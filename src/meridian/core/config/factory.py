"""
Factory functions that create component instances from settings.

Manifesto:
    Each factory uses lazy imports so that the transport a node does not
    use is never loaded, and so that ``meridian.core.config`` stays
    importable from every other package without import cycles.

Features:
    - ``create_transport()`` - InMemory / Redis RPC transport
    - ``create_scheduler_backend()`` - thread backend for the schedule tick

Tags:
    meridian, configuration, factory-pattern, lazy-imports, redis

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from meridian.core.errors import ConfigError

from .settings import TransportBackend

if TYPE_CHECKING:
    from .settings import MeridianSettings


def create_transport(settings: MeridianSettings) -> Any:
    """Create the RPC transport selected by *settings.transport*.

    The memory transport returned here is private to the caller; contexts
    that must see each other in one interpreter should share one
    :class:`~meridian.core.rpc.InMemoryTransport` explicitly.
    """
    match settings.transport:
        case TransportBackend.MEMORY:
            from meridian.core.rpc.memory import InMemoryTransport

            return InMemoryTransport()
        case TransportBackend.REDIS:
            from meridian.core.rpc.redis import RedisTransport

            return RedisTransport(
                settings.redis_url,
                prefix=settings.rpc_prefix,
                timeout_seconds=settings.rpc_timeout_seconds,
            )
        case _:
            raise ConfigError(f"Unknown transport: {settings.transport!r}")


def create_scheduler_backend(settings: MeridianSettings) -> Any:
    """Create the timing backend that drives the schedule tick."""
    from meridian.core.scheduling.thread_backend import ThreadSchedulerBackend

    return ThreadSchedulerBackend()
