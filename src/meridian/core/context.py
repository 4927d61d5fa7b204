"""
Per-process application context.

:class:`AppContext` is constructed once per node and handed to every
component: it owns the settings, the topology, the message channel, the
RPC registry, the module registry, the schedule API and the schedule store.
Nothing in meridian reaches for process-wide globals.

Usage::

    from meridian.core.context import AppContext
    from meridian.core.config import load_settings

    async with AppContext(load_settings("cluster.toml")) as context:
        context.register_module("mailer", Mailer())
        await context.serve("schedule-1")
        ...

Several contexts can share one :class:`~meridian.core.rpc.InMemoryTransport`
to run a whole cluster inside one interpreter (that is how the tests do it).
"""

from __future__ import annotations

from typing import Any

from meridian.core.config.factory import create_transport
from meridian.core.config.settings import MeridianSettings, get_settings
from meridian.core.events.channel import MessageChannel
from meridian.core.logging import get_logger
from meridian.core.rpc.protocol import RpcTransport
from meridian.core.rpc.registry import RpcRegistry
from meridian.core.rpc.topology import RpcTopology
from meridian.core.scheduling.protocol import SchedulerBackend
from meridian.core.scheduling.schedule import Schedule
from meridian.core.scheduling.service import Clock, ScheduleService

logger = get_logger(__name__)


class AppContext:
    """Explicit holder of one node's components.

    Components are created eagerly in dependency order: channel, RPC
    registry, schedule store (registered as a module under the schedule
    role name), schedule API.
    """

    def __init__(
        self,
        settings: MeridianSettings | None = None,
        *,
        transport: RpcTransport | None = None,
        backend: SchedulerBackend | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.app_id: str = self.settings.app_id
        self.topology = RpcTopology(self.settings.rpc)
        self.modules: dict[str, Any] = {}

        self.channel = MessageChannel(self)
        self.rpc = RpcRegistry(self, transport or create_transport(self.settings))
        self.schedule_service = ScheduleService(self, backend=backend, clock=clock)
        self.register_module(self.settings.schedule_service, self.schedule_service)
        self.schedule = Schedule(self, clock=clock)

    def register_module(self, name: str, module: Any) -> Any:
        """Make ``module`` resolvable by name for scheduled handlers and RPC."""
        self.modules[name] = module
        return module

    async def serve(self, app_id: str | None = None) -> None:
        """Serve this node under ``app_id`` (default: ``settings.app_id``)."""
        await self.rpc.serve(app_id or self.app_id)

    async def close(self) -> None:
        """Stop the schedule store, close RPC and drain the channel."""
        await self.schedule_service.destroy()
        await self.rpc.close()
        self.channel.close()
        logger.debug("context_closed", app_id=self.app_id)

    async def __aenter__(self) -> AppContext:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"AppContext(app_id={self.app_id!r}, transport={self.rpc.transport.name!r})"
