"""Schedule task record and creation options.

``ScheduleTask`` is the unit stored in the authoritative table and shipped
between nodes. Its wire form is a camelCase JSON object with ``None``
fields omitted:

    {"taskId": "…", "appId": "web-1", "start": 1735689600, "repeat": 60,
     "module": "reports", "handler": "send", "data": [1, 2]}

The loader accepts snake_case keys as well.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

TimeValue = int | float | str | datetime

_WIRE_KEYS = {
    "task_id": "taskId",
    "app_id": "appId",
    "start": "start",
    "end": "end",
    "repeat": "repeat",
    "timetable": "timetable",
    "module": "module",
    "handler": "handler",
    "on_end": "onEnd",
    "data": "data",
}


@dataclass
class ScheduleTask:
    """A pending job in the schedule table.

    Attributes:
        task_id: Deterministic md5 id of the identifying tuple
        app_id: Owner process, where the handler actually runs
        start: Next fire time (UNIX seconds); ignored when ``timetable`` is set
        end: Expiry time, if any
        repeat: Interval in seconds, if recurring
        timetable: Ascending explicit fire times; takes priority over ``start``
        module: Module name registered on the owner
        handler: Method name on ``module``
        on_end: Method name on ``module`` called at expiry
        data: JSON-serializable positional arguments for the handler
    """

    task_id: str
    app_id: str
    start: int = 0
    end: int | None = None
    repeat: int | None = None
    timetable: list[int] | None = None
    module: str | None = None
    handler: str | None = None
    on_end: str | None = None
    data: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Wire / snapshot form (camelCase, ``None`` omitted)."""
        result: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, list):
                value = list(value)
            result[_WIRE_KEYS[f.name]] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduleTask:
        """Build a task from wire form; snake_case keys are accepted too."""
        values: dict[str, Any] = {}
        for name, wire in _WIRE_KEYS.items():
            if wire in data:
                values[name] = data[wire]
            elif name in data:
                values[name] = data[name]

        if "task_id" not in values or "app_id" not in values:
            raise ValueError("A schedule task needs 'taskId' and 'appId'")

        if values.get("timetable") is not None:
            values["timetable"] = sorted(int(t) for t in values["timetable"])
        if values.get("data") is None:
            values["data"] = []
        else:
            values["data"] = list(values["data"])
        return cls(**values)

    @classmethod
    def coerce(cls, task: ScheduleTask | dict[str, Any]) -> ScheduleTask:
        """Accept a task or its wire dict; always returns a private copy."""
        if isinstance(task, ScheduleTask):
            return task.copy()
        return cls.from_dict(task)

    def copy(self) -> ScheduleTask:
        return copy.deepcopy(self)


class TaskOptions(BaseModel):
    """Options accepted by ``Schedule.create``.

    ``handler`` / ``on_end`` are either callables (bound locally on the
    creating node) or method names on ``module`` (resolved on the owner).
    ``key`` is the caller's identifying key for the call site; together with
    the owner id, ``salt``, ``module`` and the handler name it makes up the
    task id.
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    start: TimeValue | None = None
    start_in: float | None = None
    end: TimeValue | None = None
    end_in: float | None = None
    timetable: list[TimeValue] | None = None
    repeat: float | None = Field(default=None, gt=0)
    key: str | None = None
    salt: str | None = None
    module: str | None = None
    handler: Callable[..., Any] | str | None = None
    on_end: Callable[..., Any] | str | None = None
    data: list[Any] = Field(default_factory=list)


__all__ = ["ScheduleTask", "TaskOptions", "TimeValue"]
