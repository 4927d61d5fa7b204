"""RPC wire messages and transport protocols.

┌──────────────────────────────────────────────────────────────────────────────┐
│  RPC TRANSPORT PROTOCOL                                                       │
│                                                                               │
│  A transport provides two halves:                                             │
│                                                                               │
│   ┌─────────────────┐   RpcRequest (JSON)    ┌─────────────────┐             │
│   │  RpcConnection  │ ─────────────────────► │    RpcServer    │             │
│   │  (client side)  │ ◄───────────────────── │  (serving peer) │             │
│   │                 │   RpcResponse (JSON)   │                 │             │
│   │  subscribe()    │                        │  register()     │             │
│   │  call()         │ ◄───────────────────── │  publish()      │             │
│   └─────────────────┘   RpcEvent (JSON)      └─────────────────┘             │
│                                                                               │
│  - Calls address a registered service object by name plus a method name.     │
│  - Events are pushed by the server to the connections of target app ids      │
│    (or to every connection when no targets are given).                       │
│  - Everything crossing the boundary is a JSON document; a remote exception   │
│    comes back as an error payload and is raised as RemoteCallError.          │
│                                                                               │
│  Implementations:                                                             │
│  - InMemoryTransport: hub shared by several contexts in one interpreter      │
│  - RedisTransport: request lists + pub/sub event channels                    │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import inspect
import json
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from meridian.core.errors import RemoteCallError

EventHandler = Callable[[Any], None]


# =============================================================================
# WIRE MESSAGES
# =============================================================================


@dataclass
class RpcRequest:
    """Invoke ``service.method(*args)`` on the serving peer."""

    service: str
    method: str
    args: list[Any] = field(default_factory=list)
    sender: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "service": self.service,
            "method": self.method,
            "args": self.args,
            "sender": self.sender,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RpcRequest:
        return cls(
            service=data.get("service", ""),
            method=data.get("method", ""),
            args=list(data.get("args") or []),
            sender=data.get("sender", ""),
            id=data.get("id") or uuid.uuid4().hex,
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> RpcRequest:
        return cls.from_dict(json.loads(raw))


@dataclass
class RpcResponse:
    """Result (or error) of one :class:`RpcRequest`."""

    id: str
    result: Any = None
    error: str | None = None
    error_type: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id}
        if self.error is not None:
            d["error"] = self.error
            d["errorType"] = self.error_type
        else:
            d["result"] = self.result
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def unwrap(self) -> Any:
        """Return the result, raising :class:`RemoteCallError` for an error payload."""
        if self.error is not None:
            raise RemoteCallError(self.error, remote_type=self.error_type)
        return self.result

    @classmethod
    def success(cls, id: str, result: Any) -> RpcResponse:
        return cls(id=id, result=result)

    @classmethod
    def failure(cls, id: str, exc: BaseException) -> RpcResponse:
        return cls(id=id, error=str(exc), error_type=type(exc).__name__)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RpcResponse:
        return cls(
            id=data.get("id", ""),
            result=data.get("result"),
            error=data.get("error"),
            error_type=data.get("errorType"),
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> RpcResponse:
        return cls.from_dict(json.loads(raw))


@dataclass
class RpcEvent:
    """A published topic pushed from a server to its connections."""

    topic: str
    data: Any = None
    sender: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"topic": self.topic, "data": self.data, "sender": self.sender}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RpcEvent:
        return cls(
            topic=data.get("topic", ""),
            data=data.get("data"),
            sender=data.get("sender", ""),
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> RpcEvent:
        return cls.from_dict(json.loads(raw))


async def execute_request(services: dict[str, Any], request: RpcRequest) -> RpcResponse:
    """Run a request against registered service objects.

    Private methods (leading underscore) are never callable remotely.
    """
    target = services.get(request.service)
    if target is None:
        return RpcResponse(
            id=request.id,
            error=f"Unknown service '{request.service}'",
            error_type="LookupError",
        )

    method = None
    if not request.method.startswith("_"):
        method = getattr(target, request.method, None)
    if method is None or not callable(method):
        return RpcResponse(
            id=request.id,
            error=f"Unknown method '{request.service}.{request.method}'",
            error_type="AttributeError",
        )

    try:
        result = method(*request.args)
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        return RpcResponse.failure(request.id, e)
    return RpcResponse.success(request.id, result)


# =============================================================================
# PROTOCOLS
# =============================================================================


@runtime_checkable
class RpcServer(Protocol):
    """Serving half: exposes service objects and pushes events to clients."""

    server_id: str

    async def open(self) -> None:
        """Start accepting requests."""
        ...

    async def close(self) -> None:
        """Stop accepting requests and release resources."""
        ...

    def register(self, name: str, obj: Any) -> None:
        """Expose ``obj`` under the service name ``name``."""
        ...

    def publish(self, topic: str, data: Any = None, targets: list[str] | None = None) -> bool:
        """Push an event to the connections of ``targets`` (all when ``None``).

        Returns:
            Whether the event was accepted for delivery.
        """
        ...


@runtime_checkable
class RpcConnection(Protocol):
    """Client half: one outbound connection from ``client_id`` to ``server_id``."""

    server_id: str
    client_id: str

    @property
    def is_open(self) -> bool: ...

    async def open(self) -> None:
        """Connect to the server.

        Raises:
            ConnectError: If the server is unreachable.
        """
        ...

    async def close(self) -> None: ...

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        """Deliver events for ``topic`` pushed by the server to ``handler``."""
        ...

    def unsubscribe(self, topic: str) -> None: ...

    async def call(self, service: str, method: str, *args: Any) -> Any:
        """Invoke a remote method and return its (JSON) result.

        Raises:
            RemoteCallError: If the remote method raised.
        """
        ...


@runtime_checkable
class RpcTransport(Protocol):
    """Factory for servers and connections of one transport kind."""

    name: str

    def create_server(self, server_id: str) -> RpcServer: ...

    def create_connection(self, client_id: str, server_id: str) -> RpcConnection: ...


__all__ = [
    "EventHandler",
    "RpcRequest",
    "RpcResponse",
    "RpcEvent",
    "execute_request",
    "RpcServer",
    "RpcConnection",
    "RpcTransport",
]
