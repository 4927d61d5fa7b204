"""Cross-node scheduling over the in-memory transport.

The host holds the table and fires; handlers always run on the owning node.
"""

import pytest

from conftest import CLUSTER, T0


class Reports:
    def __init__(self):
        self.built = []

    def build(self, *args):
        self.built.append(args)


async def connected_web(make_context, app_id="web-1"):
    web = make_context(app_id, rpc=CLUSTER)
    await web.rpc.connect("schedule-1")
    return web


class TestRemoteScheduling:
    """A web node schedules on the host and receives the firings."""

    @pytest.mark.asyncio
    async def test_create_lands_on_host(self, cluster):
        host, web = cluster
        await web.rpc.connect("schedule-1")

        task_id = await web.schedule.create({"key": "k", "start_in": 60}, handler=print)

        assert await host.schedule_service.count() == 1
        stored = await host.schedule_service.query(task_id)
        assert stored["appId"] == "web-1"
        assert stored["start"] == T0 + 60
        assert web.schedule_service.state.value == "uninitiated"

    @pytest.mark.asyncio
    async def test_callable_handler_runs_on_owner(self, cluster, recorder):
        host, web = cluster
        await web.rpc.connect("schedule-1")
        await web.schedule.create({"key": "k", "data": [7]}, handler=recorder.record)

        await host.schedule_service.tick()
        assert web.channel.wait_idle(2)

        assert recorder.calls == [(7,)]
        assert await host.schedule_service.count() == 0

    @pytest.mark.asyncio
    async def test_named_handler_runs_on_owner(self, cluster):
        host, web = cluster
        host_reports = host.register_module("reports", Reports())
        web_reports = web.register_module("reports", Reports())
        await web.rpc.connect("schedule-1")

        await web.schedule.create({"module": "reports", "handler": "build", "data": ["daily"]})
        await host.schedule_service.tick()
        web.channel.wait_idle(2)
        host.channel.wait_idle(2)

        assert web_reports.built == [("daily",)]
        assert host_reports.built == []

    @pytest.mark.asyncio
    async def test_only_owner_receives(self, cluster, make_context, recorder):
        host, web1 = cluster
        await web1.rpc.connect("schedule-1")
        web2 = await connected_web(make_context, "web-2")
        other = []
        web2.channel.subscribe("app.schedule", other.append)

        await web1.schedule.create({"key": "k"}, handler=recorder.record)
        await host.schedule_service.tick()
        web1.channel.wait_idle(2)
        web2.channel.wait_idle(2)

        assert len(recorder.calls) == 1
        assert other == []

    @pytest.mark.asyncio
    async def test_cancel_remote(self, cluster, recorder):
        host, web = cluster
        await web.rpc.connect("schedule-1")
        task_id = await web.schedule.create(
            {"key": "k", "start_in": 60, "on_end": recorder.end}, handler=recorder.record
        )

        assert await web.schedule.cancel(task_id) is True
        web.channel.wait_idle(2)

        assert await host.schedule_service.count() == 0
        assert recorder.ended == [()]
        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_transferred_tasks_keep_firing_on_owner(self, cluster, recorder):
        host, web = cluster
        await web.schedule.create({"key": "k", "start_in": 10}, handler=recorder.record)
        assert await web.schedule_service.count() == 1

        await web.rpc.connect("schedule-1")
        host_clock_now = T0 + 10
        await host.schedule_service.tick(host_clock_now)
        web.channel.wait_idle(2)

        assert recorder.calls == [()]
