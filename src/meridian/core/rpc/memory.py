"""
In-memory RPC transport.

Manifesto:
    Test suites and single-interpreter demos need several "processes" talking
    to each other without sockets or Redis. This transport keeps every server
    in a shared hub, but still serializes each request, response and event to
    JSON so no live object crosses a peer boundary.

A single :class:`InMemoryTransport` instance is shared by all the contexts
that should see each other. A connection can only be opened while its
server is open, which makes "peer offline" and deferred-retry scenarios easy
to reproduce.

Tags:
    meridian, rpc, in-memory, testing, single-process

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
from typing import Any

from meridian.core.errors import ConnectError
from meridian.core.logging import get_logger
from meridian.core.rpc.protocol import (
    EventHandler,
    RpcEvent,
    RpcRequest,
    RpcResponse,
    execute_request,
)

__all__ = ["InMemoryTransport", "InMemoryServer", "InMemoryConnection"]

logger = get_logger(__name__)


class InMemoryServer:
    """Serving half living in an :class:`InMemoryTransport` hub."""

    def __init__(self, transport: InMemoryTransport, server_id: str) -> None:
        self.server_id = server_id
        self._transport = transport
        self._services: dict[str, Any] = {}
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def services(self) -> dict[str, Any]:
        return self._services

    async def open(self) -> None:
        self._transport._attach_server(self)
        self._open = True

    async def close(self) -> None:
        self._open = False
        self._transport._detach_server(self)

    def register(self, name: str, obj: Any) -> None:
        self._services[name] = obj

    def publish(self, topic: str, data: Any = None, targets: list[str] | None = None) -> bool:
        if not self._open:
            return False

        raw = RpcEvent(topic=topic, data=data, sender=self.server_id).to_json()
        delivered = False
        for connection in self._transport._connections_to(self.server_id):
            if targets is not None and connection.client_id not in targets:
                continue
            connection._receive(raw)
            delivered = True
        return delivered

    async def handle(self, raw: str) -> str:
        request = RpcRequest.from_json(raw)
        response = await execute_request(self._services, request)
        return response.to_json()


class InMemoryConnection:
    """Client half of an in-memory connection."""

    def __init__(self, transport: InMemoryTransport, client_id: str, server_id: str) -> None:
        self.client_id = client_id
        self.server_id = server_id
        self._transport = transport
        self._handlers: dict[str, EventHandler] = {}
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        if self._transport._server(self.server_id) is None:
            raise ConnectError(
                f"RPC server '{self.server_id}' is not reachable"
            ).with_context(app_id=self.client_id, peer_id=self.server_id)
        self._transport._attach_connection(self)
        self._open = True

    async def close(self) -> None:
        self._open = False
        self._transport._detach_connection(self)

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        self._handlers[topic] = handler

    def unsubscribe(self, topic: str) -> None:
        self._handlers.pop(topic, None)

    async def call(self, service: str, method: str, *args: Any) -> Any:
        server = self._transport._server(self.server_id) if self._open else None
        if server is None:
            self._open = False
            raise ConnectError(
                f"Not connected to RPC server '{self.server_id}'"
            ).with_context(app_id=self.client_id, peer_id=self.server_id, method=method)

        request = RpcRequest(service=service, method=method, args=list(args), sender=self.client_id)
        raw = await server.handle(request.to_json())
        return RpcResponse.from_json(raw).unwrap()

    def _receive(self, raw: str) -> None:
        event = RpcEvent.from_json(raw)
        handler = self._handlers.get(event.topic)
        if handler is None:
            return
        try:
            handler(event.data)
        except Exception as e:
            logger.warning(
                "rpc_event_handler_error",
                topic=event.topic,
                server_id=self.server_id,
                error=str(e),
            )


class InMemoryTransport:
    """Hub connecting in-memory servers and connections.

    Example::

        hub = InMemoryTransport()
        server = hub.create_server("schedule-1")
        server.register("schedule", service)
        await server.open()

        conn = hub.create_connection("web-1", "schedule-1")
        await conn.open()
        await conn.call("schedule", "count")
    """

    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._servers: dict[str, InMemoryServer] = {}
        self._connections: list[InMemoryConnection] = []

    def create_server(self, server_id: str) -> InMemoryServer:
        return InMemoryServer(self, server_id)

    def create_connection(self, client_id: str, server_id: str) -> InMemoryConnection:
        return InMemoryConnection(self, client_id, server_id)

    @property
    def server_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._servers)

    def _server(self, server_id: str) -> InMemoryServer | None:
        with self._lock:
            return self._servers.get(server_id)

    def _attach_server(self, server: InMemoryServer) -> None:
        with self._lock:
            self._servers[server.server_id] = server

    def _detach_server(self, server: InMemoryServer) -> None:
        with self._lock:
            if self._servers.get(server.server_id) is server:
                del self._servers[server.server_id]
            dropped = [c for c in self._connections if c.server_id == server.server_id]
            self._connections = [c for c in self._connections if c.server_id != server.server_id]
        for connection in dropped:
            connection._open = False

    def _attach_connection(self, connection: InMemoryConnection) -> None:
        with self._lock:
            if connection not in self._connections:
                self._connections.append(connection)

    def _detach_connection(self, connection: InMemoryConnection) -> None:
        with self._lock:
            if connection in self._connections:
                self._connections.remove(connection)

    def _connections_to(self, server_id: str) -> list[InMemoryConnection]:
        with self._lock:
            return [c for c in self._connections if c.server_id == server_id and c.is_open]
