"""Schedule tick backend protocol.

┌──────────────────────────────────────────────────────────────────────────────┐
│  TICK BACKEND PROTOCOL                                                        │
│                                                                               │
│  The schedule store operates as "beat-as-poller": a backend controls WHEN    │
│  ticks happen, while ScheduleService controls WHAT happens on each tick      │
│  (fire due tasks, advance timetables, retire expired tasks).                 │
│                                                                               │
│   ┌─────────────────┐       tick()       ┌─────────────────┐                 │
│   │  Thread Backend │ ─────────────────► │  Schedule       │                 │
│   │  (default)      │                    │  Service        │                 │
│   └─────────────────┘                    │                 │                 │
│                                          │  - Lock table   │                 │
│   ┌─────────────────┐   tick() (tests)   │  - Fire due     │                 │
│   │  Manual driver  │ ─────────────────► │  - Retire ended │                 │
│   └─────────────────┘                    └─────────────────┘                 │
│                                                                               │
│  Responsibility Split:                                                        │
│  - Backend: Controls timing (daemon thread, fixed interval)                  │
│  - Service: Controls logic (task evaluation, dispatch, removal)              │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Protocol for pluggable tick backends.

    A backend is responsible ONLY for timing: calling the tick callback at
    the given interval, one tick at a time. All task evaluation lives in
    ScheduleService.

    Example (custom backend):
        >>> class MyBackend:
        ...     name = "custom"
        ...
        ...     def start(self, tick_callback, interval_seconds=1.0):
        ...         my_timer.every(interval_seconds, lambda: asyncio.run(tick_callback()))
        ...
        ...     def stop(self):
        ...         my_timer.cancel()
        ...
        ...     def health(self) -> dict:
        ...         return {"healthy": True, "backend": "custom"}
    """

    name: str

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 1.0,
    ) -> None:
        """Start the tick loop.

        Args:
            tick_callback: Async function to call on each tick.
            interval_seconds: How often to tick (default: 1s).
        """
        ...

    def stop(self) -> None:
        """Stop the tick loop, waiting for the current tick to complete."""
        ...

    def health(self) -> dict[str, Any]:
        """Return backend health status.

        Returns:
            dict with at least:
                - healthy: bool - whether backend is running
                - backend: str - backend name
                - tick_count: int - number of ticks executed
                - last_tick: str | None - ISO timestamp of last tick
        """
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }
