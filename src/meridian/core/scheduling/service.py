"""Schedule service - the authoritative task table.

Manifesto:
    Exactly one node holds the live task table for the cluster. It decides
    when each task fires and retires expired ones, but it never runs a
    handler itself: firing is a publish toward the task's owner, so work
    always executes on the node that created it.

The ScheduleService owns the in-memory table, drives it with a tick
backend, persists it to a snapshot file, and hands it over to the real
host when this node turns out not to be the one.

Tags:
    meridian, scheduling, authoritative-store, beat-as-poller, service

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULE SERVICE                                                             │
│                                                                               │
│   States:  uninitiated ──init()──► running ──destroy()──► stopped            │
│                                                                               │
│   add(task) ─► (init on first call) ─► tasks[task_id] = task                 │
│                                                                               │
│   tick(), every tick_interval_seconds, for each task:                        │
│     1. expired = end is set and now >= end                                   │
│     2. timetable set:                                                        │
│          empty → expired                                                     │
│          scan tail→head for first entry <= now                               │
│            dispatch; entry += repeat (re-sort) or drop it                    │
│            emptied → expired                                                 │
│     3. no timetable and now >= start:                                        │
│          dispatch; start += repeat, or expired                               │
│     4. expired → remove + dispatch onEnd                                     │
│                                                                               │
│   dispatch(task):                                                             │
│     handler name → publish(schedule_name, [module, handler, data], [appId])  │
│     otherwise    → publish(taskId | taskId.onEnd, data, [appId])             │
│                                                                               │
│   destroy(transfer_tasks=True) on a non-host:                                 │
│     every task → route("schedule", task_id).add(task), dropped locally      │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import copy
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from meridian.core.config.factory import create_scheduler_backend
from meridian.core.errors import ServiceUnavailableError, SnapshotError
from meridian.core.hashing import EMPTY_HASH
from meridian.core.logging import get_logger
from meridian.core.timestamps import now_ts, utc_now

from .protocol import SchedulerBackend
from .query import compile_query
from .snapshot import SnapshotStore
from .types import ScheduleTask

if TYPE_CHECKING:
    from meridian.core.context import AppContext

logger = get_logger(__name__)

Clock = Callable[[], int]


class ServiceState(str, Enum):
    UNINITIATED = "uninitiated"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class ScheduleStats:
    """Statistics for the schedule service."""

    tick_count: int = 0
    ticks_skipped: int = 0
    dispatched: int = 0
    expired: int = 0
    failed: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "ticks_skipped": self.ticks_skipped,
            "dispatched": self.dispatched,
            "expired": self.expired,
            "failed": self.failed,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_error": self.last_error,
        }


class ScheduleService:
    """Authoritative holder of the cluster task table.

    Example:
        >>> service = ScheduleService(context)
        >>> await service.add({"taskId": "abc", "appId": "web-1", "start": 0})
        True
        >>> await service.count()
        1
        >>> await service.destroy()
    """

    def __init__(
        self,
        context: AppContext,
        backend: SchedulerBackend | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the schedule service.

        Args:
            context: Application context (settings, topology, channel, rpc)
            backend: Tick backend (default: from settings, thread backend)
            clock: Returns the current UNIX time in seconds (default: wall clock)
        """
        self._context = context
        self.backend = backend or create_scheduler_backend(context.settings)
        self._clock = clock or now_ts
        self._tasks: dict[str, ScheduleTask] = {}
        self._lock = threading.RLock()
        self._tick_guard = threading.Lock()
        self._state = ServiceState.UNINITIATED
        self._stats = ScheduleStats()

    # === State ===

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == ServiceState.RUNNING

    @property
    def is_host(self) -> bool:
        """Whether the topology lists this node as a schedule provider.

        Evaluated on every access; never cached.
        """
        settings = self._context.settings
        return self._context.topology.serves(self._context.app_id, settings.schedule_service)

    @property
    def snapshot(self) -> SnapshotStore:
        return SnapshotStore(self._context.settings.snapshot_path(self._context.app_id))

    # === Remote API ===

    async def add(self, task: ScheduleTask | dict[str, Any]) -> bool:
        """Insert or overwrite a task. Initializes the service on first use."""
        record = ScheduleTask.coerce(task)
        if self._state == ServiceState.UNINITIATED:
            await self.init()

        with self._lock:
            self._tasks[record.task_id] = record
        logger.debug("task_added", task_id=record.task_id, app_id=record.app_id)
        return True

    async def delete(self, task_id: str) -> bool:
        """Remove a task, firing its onEnd. False if the id is unknown."""
        with self._lock:
            task = self._tasks.pop(task_id, None)
        if task is None:
            return False

        self._dispatch(task, on_end=True)
        logger.debug("task_deleted", task_id=task_id)
        return True

    async def query(
        self,
        condition: str | dict[str, Any] | Callable[[dict[str, Any]], bool] | None = None,
    ) -> dict[str, Any] | list[dict[str, Any]] | None:
        """Look up one task by id, or list tasks matching a filter.

        Args:
            condition: A task id, a query document (see ``query.py``), or a
                predicate over task dicts (local calls only). ``None`` lists
                every task.

        Returns:
            The task dict (or None) for an id; otherwise a list of task dicts.
            Results are copies.
        """
        if isinstance(condition, str):
            with self._lock:
                task = self._tasks.get(condition)
                return copy.deepcopy(task.to_dict()) if task is not None else None

        with self._lock:
            records = [copy.deepcopy(task.to_dict()) for task in self._tasks.values()]

        if not condition:
            return records
        predicate = condition if callable(condition) else compile_query(condition)
        return [record for record in records if predicate(record)]

    async def count(
        self,
        condition: dict[str, Any] | Callable[[dict[str, Any]], bool] | None = None,
    ) -> int:
        """Size of the table, or the number of tasks matching ``condition``."""
        if not condition:
            with self._lock:
                return len(self._tasks)
        return len(await self.query(condition))

    # === Lifecycle ===

    async def init(self) -> None:
        """Start ticking, reload the snapshot and register housekeeping."""
        settings = self._context.settings
        self._state = ServiceState.RUNNING
        self.backend.start(self.tick, settings.tick_interval_seconds)
        logger.info(
            "schedule_service_started",
            app_id=self._context.app_id,
            backend=self.backend.name,
            interval_seconds=settings.tick_interval_seconds,
        )

        if not settings.save_schedules:
            return

        try:
            loaded = await self.snapshot.load()
        except SnapshotError as e:
            logger.debug("snapshot_load_skipped", error=str(e))
            loaded = []
        with self._lock:
            for task in loaded:
                self._tasks[task.task_id] = task
        if loaded:
            logger.info("snapshot_loaded", tasks=len(loaded))

        if self.is_host:
            # Continuously flush the table to disk.
            await self.add(ScheduleTask(
                task_id=EMPTY_HASH,
                app_id=self._context.app_id,
                start=self._clock() + settings.flush_interval_seconds,
                repeat=settings.flush_interval_seconds,
                module=settings.schedule_service,
                handler="flush",
            ))

    async def destroy(self, transfer_tasks: bool = False) -> None:
        """Stop ticking; optionally hand every task to the real host.

        A no-op unless running. On the host, the table is flushed when
        ``save_schedules`` is on.
        """
        if self._state != ServiceState.RUNNING:
            return
        self._state = ServiceState.STOPPED
        # stop() joins the tick thread.
        await asyncio.to_thread(self.backend.stop)

        is_host = self.is_host
        settings = self._context.settings

        if transfer_tasks and not is_host:
            await self._transfer_tasks()

        if settings.save_schedules and is_host:
            await self.flush()

        logger.info("schedule_service_stopped", app_id=self._context.app_id)

    async def _transfer_tasks(self) -> None:
        """Forward every task to the host. A task leaves the table only once the host has it."""
        settings = self._context.settings
        with self._lock:
            pending = list(self._tasks.values())

        sent: list[ScheduleTask] = []
        jobs = []
        for task in pending:
            try:
                target = self._context.rpc.route(settings.schedule_service, task.task_id)
            except ServiceUnavailableError as e:
                logger.warning("schedule_transfer_failed", task_id=task.task_id, error=str(e))
                continue
            if target is self:
                logger.warning("schedule_transfer_no_host", task_id=task.task_id)
                continue
            sent.append(task)
            jobs.append(target.add(task.to_dict()))

        results = await asyncio.gather(*jobs, return_exceptions=True)
        transferred = 0
        for task, result in zip(sent, results):
            if isinstance(result, BaseException):
                logger.warning("schedule_transfer_failed", task_id=task.task_id, error=str(result))
                continue
            with self._lock:
                if self._tasks.get(task.task_id) is task:
                    del self._tasks[task.task_id]
            transferred += 1
        if transferred:
            logger.info("schedule_tasks_transferred", count=transferred, failed=len(sent) - transferred)

    async def flush(self) -> int:
        """Write every task except housekeeping to the snapshot file.

        Returns:
            Number of records written.
        """
        with self._lock:
            tasks = [t.copy() for t in self._tasks.values() if t.task_id != EMPTY_HASH]
        await self.snapshot.save(tasks)
        return len(tasks)

    # === Tick Processing ===

    async def tick(self, now: int | None = None) -> None:
        """Single evaluation pass. Skipped if the previous one is still running."""
        if not self._tick_guard.acquire(blocking=False):
            self._stats.ticks_skipped += 1
            return

        try:
            now = self._clock() if now is None else now
            self._stats.tick_count += 1
            self._stats.last_tick = utc_now()

            with self._lock:
                for task in list(self._tasks.values()):
                    try:
                        self._evaluate(task, now)
                    except Exception as e:
                        self._stats.failed += 1
                        self._stats.last_error = str(e)
                        logger.exception("task_evaluation_failed", task_id=task.task_id, error=str(e))
        finally:
            self._tick_guard.release()

    def _evaluate(self, task: ScheduleTask, now: int) -> None:
        expired = task.end is not None and now >= task.end

        if not expired:
            timetable = task.timetable
            if timetable is not None:
                if not timetable:
                    expired = True
                else:
                    for i in range(len(timetable) - 1, -1, -1):
                        if now >= timetable[i]:
                            self._dispatch(task)
                            if task.repeat:
                                timetable[i] += task.repeat
                                timetable.sort()
                            else:
                                del timetable[i]
                                if not timetable:
                                    expired = True
                            break
            elif now >= task.start:
                self._dispatch(task)
                if task.repeat:
                    task.start += task.repeat
                else:
                    expired = True

        if expired:
            self._tasks.pop(task.task_id, None)
            self._stats.expired += 1
            self._dispatch(task, on_end=True)

    def _dispatch(self, task: ScheduleTask, on_end: bool = False) -> bool:
        """Publish a firing toward the task owner. Never runs the handler here."""
        channel = self._context.channel
        name = task.on_end if on_end else task.handler
        data = copy.deepcopy(task.data)

        if name:
            accepted = channel.publish(
                self._context.settings.schedule_name,
                [task.module, name, data],
                [task.app_id],
            )
        else:
            topic = f"{task.task_id}.onEnd" if on_end else task.task_id
            accepted = channel.publish(topic, data, [task.app_id])

        self._stats.dispatched += 1
        logger.debug(
            "task_dispatched",
            task_id=task.task_id,
            app_id=task.app_id,
            on_end=on_end,
            accepted=accepted,
        )
        return accepted

    # === Health & Stats ===

    def health(self) -> dict[str, Any]:
        backend = self.backend.health()
        with self._lock:
            size = len(self._tasks)
        return {
            "healthy": self.is_running and bool(backend.get("healthy", False)),
            "state": self._state.value,
            "is_host": self.is_host,
            "tasks": size,
            "backend": backend,
            "stats": self._stats.to_dict(),
        }

    def get_stats(self) -> ScheduleStats:
        return self._stats
