"""
Schedule client API.

``Schedule.create`` turns caller options into a :class:`ScheduleTask` with a
deterministic id and submits it to whichever node hosts the schedule role;
``Schedule.cancel`` removes it again. Callable handlers stay on the creating
node (bound as channel listeners under the task id); named handlers are
resolved on the owner through the module registry when the host dispatches
``[module, handler, data]`` on the schedule topic.

Examples:
    >>> task_id = await context.schedule.create(
    ...     {"key": "reports", "start_in": 60, "repeat": 3600},
    ...     handler=send_report,
    ... )
    >>> await context.schedule.create({
    ...     "module": "mailer", "handler": "send", "timetable": ["2030-01-01T09:00:00"],
    ...     "data": ["weekly"],
    ... })
    >>> await context.schedule.cancel(task_id)

Tags:
    meridian, scheduling, client-api, task-id, time-normalization

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import math
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import pydantic

from meridian.core.errors import ScheduleContractError
from meridian.core.hashing import compute_hash, handler_fingerprint
from meridian.core.logging import get_logger
from meridian.core.timestamps import is_millis, now_ts, to_timestamp

from .types import ScheduleTask, TaskOptions

if TYPE_CHECKING:
    from meridian.core.context import AppContext

logger = get_logger(__name__)


class Schedule:
    """Creates and cancels cluster tasks on behalf of this node."""

    def __init__(
        self,
        context: AppContext,
        name: str | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._context = context
        self.name = name or context.settings.schedule_name
        self._clock = clock or now_ts
        context.channel.subscribe(self.name, self._on_dispatch)

    async def create(
        self,
        options: TaskOptions | dict[str, Any] | None = None,
        handler: Callable[..., Any] | str | None = None,
        **kwargs: Any,
    ) -> str:
        """Create (or redefine) a task and return its id.

        Raises:
            ScheduleContractError: Missing handler, a string handler without
                ``module``, fewer than 3 identifying components, unknown
                options, or an unparseable time value.
        """
        opts = _validate_options(options, kwargs)
        handler = handler or opts.handler
        task_id = self._task_id(opts, handler)

        now = self._clock()
        repeat = opts.repeat
        # 13-digit start: the caller used milliseconds throughout.
        if repeat and is_millis(opts.start):
            repeat = math.ceil(repeat / 1000)
        repeat = math.ceil(repeat) if repeat else None

        try:
            start, timetable = self._resolve_start(opts, repeat, now)
            end = self._resolve_end(opts, now)
        except ValueError as e:
            raise ScheduleContractError(str(e), cause=e) from e

        bound: list[str] = []
        if callable(handler):
            self._bind(task_id, handler)
            bound.append(task_id)
        if callable(opts.on_end):
            self._bind(f"{task_id}.onEnd", opts.on_end, unbind=[task_id])
            bound.append(f"{task_id}.onEnd")

        task = ScheduleTask(
            task_id=task_id,
            app_id=self._context.app_id,
            start=start,
            end=end,
            repeat=repeat,
            timetable=timetable,
            module=opts.module,
            handler=handler if isinstance(handler, str) else None,
            on_end=opts.on_end if isinstance(opts.on_end, str) else None,
            data=list(opts.data),
        )

        service = self._context.settings.schedule_service
        try:
            await self._context.rpc.route(service, task_id).add(task.to_dict())
        except Exception:
            for topic in bound:
                self._context.channel.unsubscribe(topic)
            raise
        logger.debug("task_created", task_id=task_id, start=start, repeat=repeat)
        return task_id

    async def cancel(self, task_id: str) -> bool:
        """Drop the local handler binding and delete the task on the host."""
        self._context.channel.unsubscribe(task_id)
        service = self._context.settings.schedule_service
        return await self._context.rpc.route(service, task_id).delete(task_id)

    # ── Identity ─────────────────────────────────────────────────

    def _task_id(self, opts: TaskOptions, handler: Callable[..., Any] | str | None) -> str:
        params: list[str] = [self._context.app_id]
        salt = opts.salt

        if opts.key:
            params.append(opts.key)
        if salt:
            params.append(salt)
        if opts.module:
            params.append(opts.module)

        if not handler:
            raise ScheduleContractError("'handler' must be provided for scheduling")
        if isinstance(handler, str):
            if not opts.module:
                raise ScheduleContractError(
                    "'module' option must be provided when 'handler' is provided a string"
                )
            params.append(handler)
        elif _callable_name(handler):
            params.append(_callable_name(handler))
        else:
            digest = handler_fingerprint(handler)
            if not salt:
                params.insert(0, digest)
            params.append(digest)

        if len(params) < 3:
            raise ScheduleContractError(
                "not enough options for scheduling, try providing a 'key' or 'salt'"
            )
        return compute_hash(*params)

    # ── Time normalization ───────────────────────────────────────

    @staticmethod
    def _resolve_start(opts: TaskOptions, repeat: int | None, now: int) -> tuple[int, list[int] | None]:
        if opts.timetable is None:
            if not opts.start:
                start = int(now + opts.start_in) if opts.start_in else now
            else:
                start = to_timestamp(opts.start)
            return start, None

        timetable: list[int] = []
        for entry in sorted(to_timestamp(t) for t in opts.timetable):
            if entry < now:
                if repeat:
                    timetable.append(entry + repeat)
            else:
                timetable.append(entry)
        timetable.sort()
        return now, timetable

    @staticmethod
    def _resolve_end(opts: TaskOptions, now: int) -> int | None:
        if not opts.end:
            return int(now + opts.end_in) if opts.end_in else None
        return to_timestamp(opts.end)

    # ── Local bindings ───────────────────────────────────────────

    def _bind(self, topic: str, fn: Callable[..., Any], unbind: list[str] | None = None) -> None:
        channel = self._context.channel

        def spread(data: Any) -> Any:
            if unbind is not None:
                # onEnd fires once; the task is gone afterwards.
                for other in [topic, *unbind]:
                    channel.unsubscribe(other)
            return fn(*(data or []))

        spread.__qualname__ = f"{_callable_name(fn) or 'handler'}@{topic}"
        channel.unsubscribe(topic)
        channel.subscribe(topic, spread)

    def _on_dispatch(self, message: Any) -> Any:
        try:
            module_name, handler_name, data = message
        except (TypeError, ValueError):
            logger.warning("schedule_message_malformed", message=repr(message))
            return None

        module = self._context.modules.get(module_name) if module_name else None
        if module is None:
            logger.warning("schedule_module_unknown", module=module_name, handler=handler_name)
            return None

        method = None
        if isinstance(handler_name, str) and not handler_name.startswith("_"):
            method = getattr(module, handler_name, None)
        if not callable(method):
            logger.warning("schedule_handler_unknown", module=module_name, handler=handler_name)
            return None

        return method(*(data or []))


def _validate_options(options: TaskOptions | dict[str, Any] | None, extra: dict[str, Any]) -> TaskOptions:
    if isinstance(options, TaskOptions) and not extra:
        return options
    raw = options.model_dump() if isinstance(options, TaskOptions) else dict(options or {})
    raw.update(extra)
    try:
        return TaskOptions.model_validate(raw)
    except pydantic.ValidationError as e:
        raise ScheduleContractError(f"Invalid task options: {e}", cause=e) from e


def _callable_name(fn: Any) -> str | None:
    name = getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None)
    if not name or name.endswith("<lambda>"):
        return None
    return name
