"""
Per-process RPC registry.

Manifesto:
    A node either serves (holds an RPC server other nodes connect to) or
    only connects. Either way it needs one place that knows which peers are
    connected, which connection attempts are in flight, and which peer to
    ask for a given service role. :class:`RpcRegistry` is that place.

Architecture:
    ::

        serve("schedule-1")
          ├─ topology.ensure()           unknown id → InvalidAppIdError
          ├─ context.app_id = id
          ├─ server.register(service…)   every service listed for the id
          ├─ connect_dependencies()      deferred connects to providers
          ├─ server.open()
          └─ try_connect(self)           self-connection

        connect("schedule-1", defer=True)
          ├─ try_connect()               de-duplicated by the pending set
          │     ├─ connection.open()
          │     └─ peer provides "schedule" and is not us
          │           → local ScheduleService.destroy(transfer_tasks=True)
          └─ failed and deferred → retry every connect_retry_seconds

        route("schedule", task_id)
          ├─ open providers → pick one by hash(task_id)
          └─ none → local instance (fallback_to_local) or ServiceUnavailableError

Tags:
    meridian, rpc, service-discovery, connection-management, handoff

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from meridian.core.errors import ConnectError, ServiceUnavailableError
from meridian.core.hashing import compute_hash
from meridian.core.logging import bind_context, get_logger
from meridian.core.rpc.protocol import RpcConnection, RpcServer, RpcTransport

if TYPE_CHECKING:
    from meridian.core.context import AppContext

__all__ = ["RpcRegistry", "ServiceProxy"]

logger = get_logger(__name__)


class ServiceProxy:
    """Awaitable method proxy for a service on a remote peer.

    ``await proxy.add(task)`` becomes ``connection.call(service, "add", task)``.
    """

    def __init__(self, connection: RpcConnection, service: str) -> None:
        self._connection = connection
        self._service = service

    @property
    def server_id(self) -> str:
        return self._connection.server_id

    def __getattr__(self, method: str) -> Any:
        if method.startswith("_"):
            raise AttributeError(method)

        async def invoke(*args: Any) -> Any:
            return await self._connection.call(self._service, method, *args)

        invoke.__name__ = method
        return invoke

    def __repr__(self) -> str:
        return f"ServiceProxy({self._service!r} @ {self.server_id!r})"


class RpcRegistry:
    """Holder of the RPC server, outbound connections and pending attempts."""

    def __init__(self, context: AppContext, transport: RpcTransport) -> None:
        self._context = context
        self.transport = transport
        self.server: RpcServer | None = None
        self.connections: dict[str, RpcConnection] = {}
        self._pending: set[str] = set()
        self._retries: dict[str, asyncio.Task] = {}

    @property
    def pending(self) -> frozenset[str]:
        return frozenset(self._pending)

    @property
    def retrying(self) -> frozenset[str]:
        return frozenset(self._retries)

    # ── Serving ──────────────────────────────────────────────────

    async def serve(self, app_id: str) -> RpcServer:
        """Start the RPC server for ``app_id`` and connect its dependencies."""
        topology = self._context.topology
        cfg = topology.ensure(app_id)

        self._context.app_id = app_id
        bind_context(app_id=app_id)

        server = self.transport.create_server(app_id)
        served: list[Any] = []
        for name in cfg.services:
            service = self._context.modules.get(name)
            if service is None:
                logger.warning("rpc_service_missing", app_id=app_id, service=name)
                continue
            server.register(name, service)
            served.append(service)

        connection = self._connection_for(app_id)
        self.server = server

        await self.connect_dependencies(app_id)
        await server.open()
        # Bound services start with the server.
        for service in served:
            if callable(getattr(service, "init", None)) and getattr(service, "state", None) == "uninitiated":
                await service.init()
        await self.try_connect(connection, app_id)

        logger.info("rpc_serving", app_id=app_id, services=cfg.services, transport=self.transport.name)
        return server

    # ── Connecting ───────────────────────────────────────────────

    async def connect(self, server_id: str, defer: bool = False) -> None:
        """Connect to ``server_id``.

        With ``defer=True`` a failed attempt is retried in the background
        every ``connect_retry_seconds`` until it succeeds.

        Raises:
            InvalidAppIdError: If ``server_id`` is not in the topology.
            ConnectError: If the attempt failed and ``defer`` is False.
        """
        self._context.topology.ensure(server_id)
        connection = self._connection_for(server_id)

        if not await self.try_connect(connection, server_id, defer) and defer:
            if server_id not in self._retries:
                self._retries[server_id] = asyncio.create_task(
                    self._retry_loop(connection, server_id),
                    name=f"meridian-connect-{server_id}",
                )

    async def try_connect(self, connection: RpcConnection, server_id: str, defer: bool = False) -> bool:
        """Open ``connection`` once; concurrent attempts for the same id are dropped.

        Returns:
            True when connected, False when skipped or (deferred) failed.
        """
        cfg = self._context.topology.ensure(server_id)

        if server_id in self._pending:
            return False
        self._pending.add(server_id)

        try:
            await connection.open()
        except Exception as e:
            self._pending.discard(server_id)
            if not defer:
                if isinstance(e, ConnectError):
                    raise
                raise ConnectError(
                    f"Cannot connect to RPC server '{server_id}': {e}", cause=e
                ).with_context(app_id=self._context.app_id, peer_id=server_id) from e
            logger.debug("rpc_connect_deferred", server_id=server_id, error=str(e))
            return False

        try:
            # Another node hosts the schedule store: hand ours over.
            settings = self._context.settings
            if server_id != self._context.app_id and settings.schedule_service in cfg.services:
                await self._context.schedule_service.destroy(transfer_tasks=True)

            retry = self._retries.pop(server_id, None)
            if retry is not None and retry is not asyncio.current_task():
                retry.cancel()
        finally:
            self._pending.discard(server_id)

        if server_id != self._context.app_id:
            logger.info("rpc_connected", server_id=server_id, app_id=self._context.app_id)
        return True

    async def connect_all(self, defer: bool = False) -> None:
        """Connect to every peer in the topology except this one."""
        await asyncio.gather(*[
            self.connect(peer_id, defer)
            for peer_id in self._context.topology
            if peer_id != self._context.app_id
        ])

    async def connect_dependencies(self, app_id: str | None = None) -> None:
        """Connect (deferred) to the providers of every dependency of ``app_id``.

        ``dependencies = "all"`` connects to every peer; a list of service
        names connects to each provider once.
        """
        app_id = app_id or self._context.app_id
        topology = self._context.topology
        cfg = topology.get(app_id)
        dependencies = cfg.dependencies if cfg is not None else None

        if dependencies == "all":
            await self.connect_all(True)
        elif isinstance(dependencies, list):
            met: list[str] = []
            for dependency in dependencies:
                for peer_id in topology.providers_of(dependency):
                    if peer_id != self._context.app_id and peer_id not in met:
                        met.append(peer_id)
            await asyncio.gather(*[self.connect(peer_id, True) for peer_id in met])

    def has_connect(self, server_id: str) -> bool:
        """Whether an open connection to ``server_id`` exists."""
        connection = self.connections.get(server_id)
        return connection is not None and connection.is_open

    # ── Routing ──────────────────────────────────────────────────

    def route(self, service: str, key: str = "") -> Any:
        """Return an object exposing ``service``'s methods as coroutines.

        Connected providers are sorted and one is picked by the hash of
        ``key``, so the same key always lands on the same provider.

        Raises:
            ServiceUnavailableError: No connected provider and local fallback
                is disabled or there is no local instance.
        """
        topology = self._context.topology
        providers = topology.providers_of(service)
        connected = sorted(p for p in providers if self.has_connect(p))

        if connected:
            index = int(compute_hash(key), 16) % len(connected)
            return ServiceProxy(self.connections[connected[index]], service)

        if all(topology.ensure(p).fallback_to_local for p in providers):
            local = self._context.modules.get(service)
            if local is not None:
                return local

        raise ServiceUnavailableError(service).with_context(app_id=self._context.app_id)

    # ── Lifecycle ────────────────────────────────────────────────

    async def close(self) -> None:
        """Cancel retries, close connections and the server."""
        for task in self._retries.values():
            task.cancel()
        self._retries.clear()

        for server_id, connection in list(self.connections.items()):
            try:
                await connection.close()
            except Exception as e:
                logger.warning("rpc_connection_close_error", server_id=server_id, error=str(e))
        self.connections.clear()

        if self.server is not None:
            await self.server.close()
            self.server = None

    # ── Internals ────────────────────────────────────────────────

    def _connection_for(self, server_id: str) -> RpcConnection:
        connection = self.connections.get(server_id)
        if connection is None:
            connection = self.transport.create_connection(self._context.app_id, server_id)
            self._context.channel.mirror_to(connection)
            self.connections[server_id] = connection
        return connection

    async def _retry_loop(self, connection: RpcConnection, server_id: str) -> None:
        interval = self._context.settings.connect_retry_seconds
        try:
            while True:
                await asyncio.sleep(interval)
                if await self.try_connect(connection, server_id, defer=True):
                    return
        finally:
            if self._retries.get(server_id) is asyncio.current_task():
                del self._retries[server_id]
