"""Cluster task scheduling.

Manifesto:
    Jobs are registered from any node, held by exactly one authoritative
    node, and always executed on the node that owns them. The table
    survives restarts through a snapshot and moves to the real host when
    topology changes.

Architecture::

    schedule.py        Schedule (client API: create / cancel, task ids, time normalization)
    service.py         ScheduleService (authoritative table, tick, snapshot, transfer)
    types.py           ScheduleTask (wire form) + TaskOptions (validated options)
    query.py           Mongo-style filter predicates for query / count
    snapshot.py        SnapshotStore (JSON array file, legacy unwrapping)
    protocol.py        SchedulerBackend protocol + BackendHealth
    thread_backend.py  ThreadSchedulerBackend (daemon thread, default)

Quick start::

    from meridian.core.context import AppContext

    context = AppContext()
    task_id = await context.schedule.create({"key": "ping", "repeat": 60}, handler=ping)
    await context.schedule.cancel(task_id)

Tags:
    meridian, scheduling, beat-as-poller, authoritative-store, snapshot

Doc-Types:
    package-overview, module-index
"""

from .protocol import BackendHealth, SchedulerBackend, TickCallback
from .query import compile_query, filter_documents
from .schedule import Schedule
from .service import ScheduleService, ScheduleStats, ServiceState
from .snapshot import SnapshotStore, unwrap_records
from .thread_backend import ThreadSchedulerBackend
from .types import ScheduleTask, TaskOptions

__all__ = [
    "BackendHealth",
    "Schedule",
    "ScheduleService",
    "ScheduleStats",
    "ScheduleTask",
    "SchedulerBackend",
    "ServiceState",
    "SnapshotStore",
    "TaskOptions",
    "ThreadSchedulerBackend",
    "TickCallback",
    "compile_query",
    "filter_documents",
    "unwrap_records",
]
