"""
Shared pytest fixtures for meridian tests.

This module provides:
- A manual tick backend so tests drive ``ScheduleService.tick`` themselves
- A controllable clock
- Settings / context factories over a shared in-memory RPC hub

Usage:
    async def test_fires(context, clock):
        task_id = await context.schedule.create({"key": "k"}, handler=ping)
        await context.schedule_service.tick()
        context.channel.wait_idle(2)
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
import pytest_asyncio

from meridian.core.config import MeridianSettings, clear_settings_cache
from meridian.core.context import AppContext
from meridian.core.logging import clear_context
from meridian.core.rpc import InMemoryTransport

T0 = 1_700_000_000


class ManualBackend:
    """Tick backend that never ticks on its own."""

    name = "manual"

    def __init__(self) -> None:
        self.callback = None
        self.interval: float | None = None
        self.started = 0
        self.stopped = 0

    def start(self, tick_callback, interval_seconds: float = 1.0) -> None:
        self.callback = tick_callback
        self.interval = interval_seconds
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1

    def health(self) -> dict[str, Any]:
        running = self.started > self.stopped
        return {"healthy": running, "backend": self.name, "tick_count": 0, "last_tick": None}


class FakeClock:
    """Callable clock returning a settable UNIX time."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


CLUSTER = {
    "schedule-1": {"port": 8000, "services": ["schedule"]},
    "web-1": {"port": 8001, "dependencies": ["schedule"]},
    "web-2": {"port": 8002, "dependencies": ["schedule"]},
}


@pytest.fixture(autouse=True)
def _reset_global_state():
    clear_settings_cache()
    clear_context()
    yield
    clear_settings_cache()
    clear_context()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hub() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def make_settings(tmp_path) -> Callable[..., MeridianSettings]:
    """Settings factory rooted in a temp dir; keyword arguments override."""

    def factory(**overrides: Any) -> MeridianSettings:
        values: dict[str, Any] = {
            "app_id": "web-1",
            "root_path": tmp_path,
            "connect_retry_seconds": 0.05,
        }
        values.update(overrides)
        return MeridianSettings(**values)

    return factory


@pytest_asyncio.fixture
async def make_context(make_settings, hub, clock):
    """Context factory; every context created is closed at teardown."""
    created: list[AppContext] = []

    def factory(app_id: str = "web-1", **overrides: Any) -> AppContext:
        settings = make_settings(app_id=app_id, **overrides)
        context = AppContext(settings, transport=hub, backend=ManualBackend(), clock=clock)
        created.append(context)
        return context

    yield factory

    for context in reversed(created):
        await context.close()


@pytest_asyncio.fixture
async def context(make_context) -> AppContext:
    """Standalone node with an empty topology."""
    return make_context("web-1")


@pytest_asyncio.fixture
async def cluster(make_context):
    """Serving schedule host plus a non-serving web node (not yet connected)."""
    host = make_context("schedule-1", rpc=CLUSTER)
    web = make_context("web-1", rpc=CLUSTER)
    await host.serve()
    return host, web


class Recorder:
    """Collects handler invocations from the delivery thread."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.ended: list[tuple] = []

    def record(self, *args: Any) -> None:
        self.calls.append(args)

    def end(self, *args: Any) -> None:
        self.ended.append(args)


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()
