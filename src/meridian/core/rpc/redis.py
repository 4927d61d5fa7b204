"""
Redis-backed RPC transport.

Manifesto:
    Multi-host clusters need requests and events to cross process
    boundaries. Redis already runs next to most deployments and provides
    both halves: lists for request/reply and Pub/Sub for fire-and-forget
    events.

Key layout (``prefix`` defaults to ``meridian:rpc``)::

    {prefix}:servers:{server_id}                  presence marker of an open server
    {prefix}:{server_id}:requests                 request list (RPUSH / BLPOP)
    {prefix}:reply:{request_id}                   one-shot reply list
    {prefix}:{server_id}:events:{client_id}       events addressed to one client
    {prefix}:{server_id}:events:*broadcast*       events for every client

A server drains its request list on a worker thread and runs each request
to completion there. Connections receive events through a Pub/Sub worker
thread. The synchronous ``redis`` client is used throughout because the
schedule tick runs on its own thread and event loop; blocking calls made
from coroutines go through :func:`asyncio.to_thread`.

Requires: ``pip install redis``

Tags:
    meridian, rpc, redis, pub-sub, multi-node

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any

import redis

from meridian.core.errors import ConnectError
from meridian.core.logging import get_logger
from meridian.core.rpc.protocol import (
    EventHandler,
    RpcEvent,
    RpcRequest,
    RpcResponse,
    execute_request,
)

__all__ = ["RedisTransport", "RedisServer", "RedisConnection"]

logger = get_logger(__name__)

BROADCAST = "*broadcast*"


class RedisServer:
    """Serving half backed by a Redis request list."""

    def __init__(self, transport: RedisTransport, server_id: str) -> None:
        self.server_id = server_id
        self._transport = transport
        self._services: dict[str, Any] = {}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def requests_key(self) -> str:
        return self._transport.requests_key(self.server_id)

    async def open(self) -> None:
        if self._open:
            return
        client = self._transport.client
        try:
            await asyncio.to_thread(client.set, self._transport.presence_key(self.server_id), "1")
        except redis.RedisError as e:
            raise ConnectError(
                f"Cannot open RPC server '{self.server_id}': {e}", cause=e
            ).with_context(app_id=self.server_id) from e

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._serve_loop,
            name=f"meridian-rpc-{self.server_id}",
            daemon=True,
        )
        self._thread.start()
        self._open = True
        logger.info("rpc_server_opened", server_id=self.server_id, transport="redis")

    async def close(self) -> None:
        if not self._open:
            return
        self._open = False
        self._stop_event.set()
        try:
            await asyncio.to_thread(self._transport.client.delete, self._transport.presence_key(self.server_id))
        except redis.RedisError as e:
            logger.warning("rpc_server_close_error", server_id=self.server_id, error=str(e))
        if self._thread is not None:
            await asyncio.to_thread(self._thread.join, self._transport.poll_seconds * 2 + 1)
            self._thread = None

    def register(self, name: str, obj: Any) -> None:
        self._services[name] = obj

    def publish(self, topic: str, data: Any = None, targets: list[str] | None = None) -> bool:
        if not self._open:
            return False

        raw = RpcEvent(topic=topic, data=data, sender=self.server_id).to_json()
        client = self._transport.client
        channels = (
            [self._transport.event_channel(self.server_id, BROADCAST)]
            if targets is None
            else [self._transport.event_channel(self.server_id, t) for t in targets]
        )
        receivers = 0
        try:
            for channel in channels:
                receivers += client.publish(channel, raw) or 0
        except redis.RedisError as e:
            logger.warning("rpc_publish_error", server_id=self.server_id, topic=topic, error=str(e))
            return False
        return receivers > 0

    def _serve_loop(self) -> None:
        client = self._transport.client
        timeout = max(1, int(self._transport.poll_seconds))
        while not self._stop_event.is_set():
            try:
                item = client.blpop([self.requests_key], timeout=timeout)
            except redis.RedisError as e:
                logger.warning("rpc_server_poll_error", server_id=self.server_id, error=str(e))
                self._stop_event.wait(self._transport.poll_seconds)
                continue
            if not item:
                continue
            self._handle(item[1])

    def _handle(self, raw: bytes | str) -> None:
        try:
            request = RpcRequest.from_json(raw)
        except ValueError as e:
            logger.warning("rpc_request_parse_error", server_id=self.server_id, error=str(e))
            return

        response = asyncio.run(execute_request(self._services, request))
        reply_key = self._transport.reply_key(request.id)
        client = self._transport.client
        try:
            client.rpush(reply_key, response.to_json())
            client.expire(reply_key, int(self._transport.timeout_seconds) + 1)
        except redis.RedisError as e:
            logger.warning("rpc_reply_error", server_id=self.server_id, request_id=request.id, error=str(e))


class RedisConnection:
    """Client half: request/reply over lists, events over Pub/Sub."""

    def __init__(self, transport: RedisTransport, client_id: str, server_id: str) -> None:
        self.client_id = client_id
        self.server_id = server_id
        self._transport = transport
        self._handlers: dict[str, EventHandler] = {}
        self._pubsub: Any = None
        self._worker: Any = None
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        if self._open:
            return
        await asyncio.to_thread(self._open_sync)
        self._open = True

    def _open_sync(self) -> None:
        client = self._transport.client
        try:
            online = client.exists(self._transport.presence_key(self.server_id))
        except redis.RedisError as e:
            raise ConnectError(
                f"RPC server '{self.server_id}' is not reachable: {e}", cause=e
            ).with_context(app_id=self.client_id, peer_id=self.server_id) from e
        if not online:
            raise ConnectError(
                f"RPC server '{self.server_id}' is not reachable"
            ).with_context(app_id=self.client_id, peer_id=self.server_id)

        self._pubsub = client.pubsub(ignore_subscribe_messages=True)
        self._pubsub.subscribe(**{
            self._transport.event_channel(self.server_id, self.client_id): self._on_message,
            self._transport.event_channel(self.server_id, BROADCAST): self._on_message,
        })
        self._worker = self._pubsub.run_in_thread(
            sleep_time=self._transport.poll_seconds, daemon=True
        )

    async def close(self) -> None:
        self._open = False
        if self._worker is not None:
            self._worker.stop()
            self._worker = None
        if self._pubsub is not None:
            self._pubsub.close()
            self._pubsub = None

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        self._handlers[topic] = handler

    def unsubscribe(self, topic: str) -> None:
        self._handlers.pop(topic, None)

    async def call(self, service: str, method: str, *args: Any) -> Any:
        if not self._open:
            raise ConnectError(
                f"Not connected to RPC server '{self.server_id}'"
            ).with_context(app_id=self.client_id, peer_id=self.server_id, method=method)

        request = RpcRequest(service=service, method=method, args=list(args), sender=self.client_id)
        raw = await asyncio.to_thread(self._roundtrip, request)
        return RpcResponse.from_json(raw).unwrap()

    def _roundtrip(self, request: RpcRequest) -> bytes | str:
        client = self._transport.client
        timeout = self._transport.timeout_seconds
        try:
            client.rpush(self._transport.requests_key(self.server_id), request.to_json())
            item = client.blpop([self._transport.reply_key(request.id)], timeout=max(1, int(timeout)))
        except redis.RedisError as e:
            raise ConnectError(
                f"RPC call to '{self.server_id}' failed: {e}", cause=e
            ).with_context(peer_id=self.server_id, method=request.method) from e
        if not item:
            raise ConnectError(
                f"RPC call {request.service}.{request.method} to '{self.server_id}' timed out",
                retry_after=1,
            ).with_context(peer_id=self.server_id, method=request.method)
        return item[1]

    def _on_message(self, message: dict[str, Any]) -> None:
        try:
            event = RpcEvent.from_json(message["data"])
        except (KeyError, ValueError) as e:
            logger.warning("rpc_event_parse_error", server_id=self.server_id, error=str(e))
            return
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


class RedisTransport:
    """Redis transport factory.

    Example::

        transport = RedisTransport("redis://localhost:6379/0")
        server = transport.create_server("schedule-1")
        conn = transport.create_connection("web-1", "schedule-1")
    """

    name = "redis"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        prefix: str = "meridian:rpc",
        timeout_seconds: float = 10.0,
        poll_seconds: float = 0.1,
        client: Any = None,
    ) -> None:
        self._redis_url = redis_url
        self._prefix = prefix
        self._client = client
        self.timeout_seconds = timeout_seconds
        self.poll_seconds = poll_seconds

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = redis.Redis.from_url(self._redis_url)
        return self._client

    def create_server(self, server_id: str) -> RedisServer:
        return RedisServer(self, server_id)

    def create_connection(self, client_id: str, server_id: str) -> RedisConnection:
        return RedisConnection(self, client_id, server_id)

    # ── Key layout ───────────────────────────────────────────────

    def presence_key(self, server_id: str) -> str:
        return f"{self._prefix}:servers:{server_id}"

    def requests_key(self, server_id: str) -> str:
        return f"{self._prefix}:{server_id}:requests"

    def reply_key(self, request_id: str) -> str:
        return f"{self._prefix}:reply:{request_id}"

    def event_channel(self, server_id: str, client_id: str) -> str:
        return f"{self._prefix}:{server_id}:events:{client_id}"
