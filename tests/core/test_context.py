"""Tests for AppContext wiring."""

import pytest

from meridian.core.context import AppContext
from meridian.core.scheduling import ScheduleService

from conftest import ManualBackend


class TestAppContext:
    """Components are built once per node and share the context."""

    @pytest.mark.asyncio
    async def test_components(self, context):
        assert context.app_id == "web-1"
        assert isinstance(context.schedule_service, ScheduleService)
        assert context.modules["schedule"] is context.schedule_service
        assert context.channel.name == "app.message"
        assert context.schedule.name == "app.schedule"
        assert context.channel.listener_count("app.schedule") == 1

    @pytest.mark.asyncio
    async def test_register_module(self, context):
        module = object()
        assert context.register_module("mailer", module) is module
        assert context.modules["mailer"] is module

    @pytest.mark.asyncio
    async def test_custom_names(self, make_context):
        context = make_context(channel_name="bus", schedule_name="cron", schedule_service="timetable")
        assert context.channel.topic("x") == "bus#x"
        assert context.modules["timetable"] is context.schedule_service
        assert context.channel.listener_count("cron") == 1

    @pytest.mark.asyncio
    async def test_async_context_manager(self, make_settings, hub):
        backend = ManualBackend()
        async with AppContext(make_settings(), transport=hub, backend=backend) as context:
            await context.schedule_service.init()
        assert backend.stopped == 1
        assert context.channel.publish("anything", 1) is False

    @pytest.mark.asyncio
    async def test_repr(self, context):
        assert repr(context) == "AppContext(app_id='web-1', transport='memory')"
