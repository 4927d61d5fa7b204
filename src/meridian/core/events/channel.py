"""
Message channel: named pub/sub that routes locally or over RPC.

Manifesto:
    Schedule dispatch must reach the process that owns a task, wherever
    that is. The channel hides the difference: on a serving node a publish
    goes out through the RPC server to the target app ids; on any other
    node it is delivered to in-process listeners. Subscriptions are mirrored
    onto outbound connections so a remote server can route events back.

Architecture:
    ::

        publish("abc123", data, targets=["web-1"])
            │
            ├─ context.rpc.server set ──► server.publish("app.message#abc123", data, ["web-1"])
            │
            ├─ local listeners ─────────► delivery worker (1 thread)
            │                               listener(data)   isolated, in order
            │
            └─ neither ─────────────────► False

        subscribe("abc123", fn)
            ├─ local table["app.message#abc123"].append(fn)
            └─ every connection.subscribe("app.message#abc123", relay)
                                             relay → delivery worker

Listeners receive the payload as their single argument. A coroutine
listener is run to completion on the delivery worker. Listener failures are
logged and never reach the publisher.

Tags:
    meridian, events, pub-sub, message-channel, rpc-routing

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from functools import partial
from typing import TYPE_CHECKING, Any

from meridian.core.logging import get_logger

if TYPE_CHECKING:
    from meridian.core.context import AppContext
    from meridian.core.rpc.protocol import RpcConnection

__all__ = ["MessageChannel", "Listener"]

Listener = Callable[[Any], Any]

logger = get_logger(__name__)


class MessageChannel:
    """Named pub/sub bus bound to an application context.

    Example::

        channel = MessageChannel(context)
        channel.subscribe("greet", lambda data: print("hello", data))
        channel.publish("greet", "world")   # True
        channel.publish("nobody", 1)        # False
    """

    def __init__(self, context: AppContext, name: str | None = None) -> None:
        self._context = context
        self.name = name or context.settings.channel_name
        self._topics: dict[str, list[Listener]] = {}
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="meridian-channel")
        self._futures: set[Future] = set()
        self._closed = False

    def topic(self, topic: str) -> str:
        """Namespaced form of ``topic``."""
        return f"{self.name}#{topic}"

    # ── Publishing ───────────────────────────────────────────────

    def publish(self, topic: str, data: Any = None, targets: list[str] | None = None) -> bool:
        """Publish ``data`` on ``topic``.

        Returns:
            True if the RPC server accepted the event or local listeners
            were scheduled; False if no subscriber is reachable.
        """
        full = self.topic(topic)
        rpc = getattr(self._context, "rpc", None)
        server = rpc.server if rpc is not None else None

        if server is not None:
            return server.publish(full, data, targets)

        with self._lock:
            has_listeners = bool(self._topics.get(full))
        if not has_listeners:
            return False

        return self._deliver(full, data)

    # ── Subscriptions ────────────────────────────────────────────

    def subscribe(self, topic: str, listener: Listener) -> MessageChannel:
        full = self.topic(topic)
        with self._lock:
            self._topics.setdefault(full, []).append(listener)

        for connection in self._connections():
            connection.subscribe(full, self._relay(full))
        return self

    def unsubscribe(self, topic: str, listener: Listener | None = None) -> bool:
        """Remove ``listener`` (or every listener) from ``topic``.

        Returns:
            Whether a local listener was removed.
        """
        full = self.topic(topic)
        removed = False
        with self._lock:
            listeners = self._topics.get(full, [])
            if listeners:
                if listener is None:
                    del self._topics[full]
                    removed = True
                elif listener in listeners:
                    listeners.remove(listener)
                    removed = True
                    if not listeners:
                        del self._topics[full]
            remaining = bool(self._topics.get(full))

        if not remaining:
            for connection in self._connections():
                connection.unsubscribe(full)
        return removed

    def mirror_to(self, connection: RpcConnection) -> None:
        """Subscribe every current topic on a newly created connection."""
        with self._lock:
            topics = [t for t, listeners in self._topics.items() if listeners]
        for full in topics:
            connection.subscribe(full, self._relay(full))

    def listener_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(self.topic(topic), []))

    def topics(self) -> list[str]:
        """Subscribed topic names, without the channel prefix."""
        prefix = f"{self.name}#"
        with self._lock:
            return [t[len(prefix):] for t, listeners in self._topics.items() if listeners]

    # ── Delivery worker ──────────────────────────────────────────

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until already-queued deliveries have finished.

        Returns:
            False if the timeout expired first.
        """
        with self._lock:
            pending = list(self._futures)
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def close(self) -> None:
        """Finish queued deliveries and stop the delivery worker."""
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)

    def _relay(self, full: str) -> Callable[[Any], bool]:
        return partial(self._deliver, full)

    def _deliver(self, full: str, data: Any) -> bool:
        with self._lock:
            if self._closed:
                logger.debug("channel_closed_drop", topic=full)
                return False
            listeners = list(self._topics.get(full, []))
            if not listeners:
                return False
            future = self._executor.submit(self._run_listeners, full, listeners, data)
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return True

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def _run_listeners(self, full: str, listeners: list[Listener], data: Any) -> None:
        for listener in listeners:
            try:
                result = listener(data)
                if inspect.iscoroutine(result):
                    asyncio.run(result)
            except Exception as e:
                logger.warning(
                    "channel_listener_error",
                    channel=self.name,
                    topic=full,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(e),
                )

    def _connections(self) -> list[RpcConnection]:
        rpc = getattr(self._context, "rpc", None)
        if rpc is None:
            return []
        return list(rpc.connections.values())
