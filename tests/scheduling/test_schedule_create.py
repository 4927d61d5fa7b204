"""Tests for Schedule.create / cancel: task ids, contracts and time normalization."""

from unittest.mock import patch

import pytest

from meridian.core.errors import ScheduleContractError, ServiceUnavailableError
from meridian.core.hashing import compute_hash, handler_fingerprint
from meridian.core.scheduling import TaskOptions

from conftest import T0


def ping(*args):
    return args


async def task(context, task_id):
    return await context.schedule_service.query(task_id)


class TestTaskIds:
    """Task ids are md5 over the identifying tuple."""

    @pytest.mark.asyncio
    async def test_create_is_idempotent(self, context):
        first = await context.schedule.create({"key": "nightly", "start_in": 10}, handler=ping)
        second = await context.schedule.create({"key": "nightly", "start_in": 10}, handler=ping)

        assert first == second == compute_hash("web-1", "nightly", "ping")
        assert await context.schedule_service.count() == 1
        assert context.channel.listener_count(first) == 1

    @pytest.mark.asyncio
    async def test_redefinition_overwrites(self, context, clock):
        task_id = await context.schedule.create({"key": "k", "start_in": 10}, handler=ping)
        await context.schedule.create({"key": "k", "start_in": 99}, handler=ping)
        assert (await task(context, task_id))["start"] == T0 + 99

    @pytest.mark.asyncio
    async def test_all_components(self, context):
        task_id = await context.schedule.create(
            {"key": "k", "salt": "s", "module": "mailer", "handler": "send"}
        )
        assert task_id == compute_hash("web-1", "k", "s", "mailer", "send")

    @pytest.mark.asyncio
    async def test_string_handler_with_module_needs_no_key(self, context):
        task_id = await context.schedule.create({"module": "mailer"}, handler="send")
        assert task_id == compute_hash("web-1", "mailer", "send")
        stored = await task(context, task_id)
        assert stored["module"] == "mailer"
        assert stored["handler"] == "send"

    @pytest.mark.asyncio
    async def test_lambda_without_salt(self, context):
        fn = lambda: None  # noqa: E731
        digest = handler_fingerprint(fn)
        task_id = await context.schedule.create(handler=fn)
        assert task_id == compute_hash(digest, "web-1", digest)

    @pytest.mark.asyncio
    async def test_lambda_with_salt(self, context):
        fn = lambda: None  # noqa: E731
        task_id = await context.schedule.create({"salt": "v2"}, handler=fn)
        assert task_id == compute_hash("web-1", "v2", handler_fingerprint(fn))

    @pytest.mark.asyncio
    async def test_kwargs_and_model_options(self, context):
        via_kwargs = await context.schedule.create(handler=ping, key="k", start_in=5)
        via_model = await context.schedule.create(TaskOptions(key="k", start_in=5, handler=ping))
        assert via_kwargs == via_model


class TestContract:
    """Contract violations raise before anything is stored."""

    @pytest.mark.asyncio
    async def test_missing_handler(self, context):
        with pytest.raises(ScheduleContractError, match="'handler' must be provided"):
            await context.schedule.create({"key": "k"})

    @pytest.mark.asyncio
    async def test_string_handler_without_module(self, context):
        with pytest.raises(ScheduleContractError, match="'module' option must be provided"):
            await context.schedule.create({"key": "k"}, handler="send")

    @pytest.mark.asyncio
    async def test_too_few_components(self, context):
        with pytest.raises(ScheduleContractError, match="not enough options"):
            await context.schedule.create(handler=ping)
        assert await context.schedule_service.count() == 0
        assert context.channel.listener_count(compute_hash("web-1", "ping")) == 0

    @pytest.mark.asyncio
    async def test_unknown_option(self, context):
        with pytest.raises(ScheduleContractError):
            await context.schedule.create({"key": "k", "every": 5}, handler=ping)

    @pytest.mark.asyncio
    async def test_non_positive_repeat(self, context):
        with pytest.raises(ScheduleContractError):
            await context.schedule.create({"key": "k", "repeat": 0}, handler=ping)

    @pytest.mark.asyncio
    async def test_unparseable_time(self, context):
        with pytest.raises(ScheduleContractError):
            await context.schedule.create({"key": "k", "start": "tomorrow-ish"}, handler=ping)

    @pytest.mark.asyncio
    async def test_contract_error_is_type_error(self, context):
        with pytest.raises(TypeError):
            await context.schedule.create(handler="send")


class TestTimeNormalization:
    """start / end / timetable / repeat resolution."""

    @pytest.mark.asyncio
    async def test_defaults_to_now(self, context):
        stored = await task(context, await context.schedule.create({"key": "k"}, handler=ping))
        assert stored["start"] == T0
        assert "end" not in stored
        assert "repeat" not in stored

    @pytest.mark.asyncio
    async def test_relative_start_and_end(self, context):
        task_id = await context.schedule.create({"key": "k", "start_in": 30, "end_in": 300}, handler=ping)
        stored = await task(context, task_id)
        assert stored["start"] == T0 + 30
        assert stored["end"] == T0 + 300

    @pytest.mark.asyncio
    async def test_absolute_start_iso(self, context):
        task_id = await context.schedule.create(
            {"key": "k", "start": "2023-11-14T22:13:20Z", "end": T0 + 5}, handler=ping
        )
        stored = await task(context, task_id)
        assert stored["start"] == 1_700_000_000
        assert stored["end"] == T0 + 5

    @pytest.mark.asyncio
    async def test_absolute_start_wins_over_start_in(self, context):
        task_id = await context.schedule.create({"key": "k", "start": T0 + 7, "start_in": 60}, handler=ping)
        assert (await task(context, task_id))["start"] == T0 + 7

    @pytest.mark.asyncio
    async def test_fractional_repeat_rounds_up(self, context):
        task_id = await context.schedule.create({"key": "k", "repeat": 1.2}, handler=ping)
        assert (await task(context, task_id))["repeat"] == 2

    @pytest.mark.asyncio
    async def test_millisecond_repeat_fixed(self, context):
        start_ms = (T0 + 60) * 1000
        task_id = await context.schedule.create({"key": "k", "start": start_ms, "repeat": 5000}, handler=ping)
        assert (await task(context, task_id))["repeat"] == 5

    @pytest.mark.asyncio
    async def test_timetable_sorted_and_past_dropped(self, context):
        task_id = await context.schedule.create(
            {"key": "k", "timetable": [T0 + 20, T0 - 30, T0 + 10]}, handler=ping
        )
        stored = await task(context, task_id)
        assert stored["timetable"] == [T0 + 10, T0 + 20]
        assert stored["start"] == T0

    @pytest.mark.asyncio
    async def test_timetable_past_rolls_forward_with_repeat(self, context):
        task_id = await context.schedule.create(
            {"key": "k", "timetable": [T0 - 30, T0 + 10], "repeat": 60}, handler=ping
        )
        assert (await task(context, task_id))["timetable"] == [T0 + 10, T0 + 30]

    @pytest.mark.asyncio
    async def test_timetable_accepts_iso_strings(self, context):
        task_id = await context.schedule.create(
            {"key": "k", "timetable": ["2023-11-14T22:13:30Z"]}, handler=ping
        )
        assert (await task(context, task_id))["timetable"] == [T0 + 10]

    @pytest.mark.asyncio
    async def test_data_stored(self, context):
        task_id = await context.schedule.create({"key": "k", "data": [1, {"a": 2}]}, handler=ping)
        assert (await task(context, task_id))["data"] == [1, {"a": 2}]


class TestSubmission:
    """Local bindings exist only for tasks the host accepted."""

    @pytest.mark.asyncio
    async def test_unroutable_task_leaves_no_bindings(self, context, recorder):
        with patch.object(context.rpc, "route", side_effect=ServiceUnavailableError("schedule")):
            with pytest.raises(ServiceUnavailableError):
                await context.schedule.create({"key": "k", "on_end": recorder.end}, handler=ping)

        task_id = compute_hash("web-1", "k", "ping")
        assert context.channel.listener_count(task_id) == 0
        assert context.channel.listener_count(f"{task_id}.onEnd") == 0
        assert await context.schedule_service.count() == 0


class TestCancel:
    """cancel() drops the local binding and deletes the task."""

    @pytest.mark.asyncio
    async def test_cancel(self, context, recorder):
        task_id = await context.schedule.create({"key": "k", "on_end": recorder.end}, handler=recorder.record)

        assert await context.schedule.cancel(task_id) is True
        context.channel.wait_idle(2)

        assert await context.schedule_service.count() == 0
        assert context.channel.listener_count(task_id) == 0
        assert recorder.ended == [()]
        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, context):
        assert await context.schedule.cancel("0" * 32) is False
