"""Tests for MessageChannel local delivery and RPC routing."""

import threading
from unittest.mock import MagicMock

import pytest


class TestLocalDelivery:
    """Without an RPC server, publish reaches in-process listeners."""

    @pytest.mark.asyncio
    async def test_publish_to_listener(self, context):
        received = []
        context.channel.subscribe("greet", received.append)

        assert context.channel.publish("greet", "world") is True
        assert context.channel.wait_idle(2)
        assert received == ["world"]

    @pytest.mark.asyncio
    async def test_publish_without_listener_returns_false(self, context):
        assert context.channel.publish("nobody", 1) is False

    @pytest.mark.asyncio
    async def test_topics_are_namespaced(self, context):
        assert context.channel.topic("abc") == "app.message#abc"
        context.channel.subscribe("abc", print)
        assert "abc" in context.channel.topics()

    @pytest.mark.asyncio
    async def test_listeners_run_in_subscription_order(self, context):
        calls = []
        context.channel.subscribe("t", lambda d: calls.append(("first", d)))
        context.channel.subscribe("t", lambda d: calls.append(("second", d)))

        context.channel.publish("t", 1)
        context.channel.publish("t", 2)
        context.channel.wait_idle(2)

        assert calls == [("first", 1), ("second", 1), ("first", 2), ("second", 2)]

    @pytest.mark.asyncio
    async def test_failing_listener_is_isolated(self, context):
        received = []

        def broken(data):
            raise RuntimeError("boom")

        context.channel.subscribe("t", broken)
        context.channel.subscribe("t", received.append)

        assert context.channel.publish("t", "x") is True
        context.channel.wait_idle(2)
        assert received == ["x"]

    @pytest.mark.asyncio
    async def test_coroutine_listener(self, context):
        done = threading.Event()

        async def listener(data):
            if data == "ping":
                done.set()

        context.channel.subscribe("t", listener)
        context.channel.publish("t", "ping")
        context.channel.wait_idle(2)
        assert done.is_set()

    @pytest.mark.asyncio
    async def test_delivery_is_not_on_the_publishing_thread(self, context):
        threads = []
        context.channel.subscribe("t", lambda d: threads.append(threading.current_thread()))

        context.channel.publish("t")
        context.channel.wait_idle(2)
        assert threads and threads[0] is not threading.current_thread()

    @pytest.mark.asyncio
    async def test_closed_channel_drops(self, context):
        context.channel.subscribe("t", print)
        context.channel.close()
        assert context.channel.publish("t", 1) is False


class TestUnsubscribe:
    """Removing listeners."""

    @pytest.mark.asyncio
    async def test_unsubscribe_one_listener(self, context):
        a, b = MagicMock(), MagicMock()
        context.channel.subscribe("t", a)
        context.channel.subscribe("t", b)

        assert context.channel.unsubscribe("t", a) is True
        assert context.channel.listener_count("t") == 1

        context.channel.publish("t", 1)
        context.channel.wait_idle(2)
        a.assert_not_called()
        b.assert_called_once_with(1)

    @pytest.mark.asyncio
    async def test_unsubscribe_all(self, context):
        context.channel.subscribe("t", print)
        context.channel.subscribe("t", repr)

        assert context.channel.unsubscribe("t") is True
        assert context.channel.listener_count("t") == 0
        assert context.channel.publish("t", 1) is False

    @pytest.mark.asyncio
    async def test_unsubscribe_unknown(self, context):
        assert context.channel.unsubscribe("never") is False
        context.channel.subscribe("t", print)
        assert context.channel.unsubscribe("t", repr) is False


class TestRpcRouting:
    """With an RPC server, publish goes through it and never delivers locally."""

    @pytest.mark.asyncio
    async def test_publish_through_server(self, context):
        local = MagicMock()
        context.channel.subscribe("t", local)
        server = MagicMock()
        server.publish.return_value = True
        context.rpc.server = server

        assert context.channel.publish("t", {"n": 1}, ["web-2"]) is True

        server.publish.assert_called_once_with("app.message#t", {"n": 1}, ["web-2"])
        context.channel.wait_idle(2)
        local.assert_not_called()
        context.rpc.server = None

    @pytest.mark.asyncio
    async def test_server_result_is_returned(self, context):
        server = MagicMock()
        server.publish.return_value = False
        context.rpc.server = server

        assert context.channel.publish("t", 1) is False
        context.rpc.server = None

    @pytest.mark.asyncio
    async def test_subscriptions_mirrored_to_connections(self, context):
        connection = MagicMock()
        context.rpc.connections["schedule-1"] = connection

        context.channel.subscribe("t", print)
        topic, relay = connection.subscribe.call_args.args
        assert topic == "app.message#t"

        received = []
        context.channel.subscribe("t", received.append)
        relay("via-rpc")
        context.channel.wait_idle(2)
        assert received == ["via-rpc"]

        context.channel.unsubscribe("t")
        connection.unsubscribe.assert_called_once_with("app.message#t")
        context.rpc.connections.clear()

    @pytest.mark.asyncio
    async def test_remote_unsubscribe_waits_for_last_listener(self, context):
        connection = MagicMock()
        context.rpc.connections["schedule-1"] = connection
        context.channel.subscribe("t", print)
        context.channel.subscribe("t", repr)

        context.channel.unsubscribe("t", print)
        connection.unsubscribe.assert_not_called()
        context.channel.unsubscribe("t", repr)
        connection.unsubscribe.assert_called_once_with("app.message#t")
        context.rpc.connections.clear()

    @pytest.mark.asyncio
    async def test_mirror_to_new_connection(self, context):
        context.channel.subscribe("a", print)
        context.channel.subscribe("b", print)
        connection = MagicMock()

        context.channel.mirror_to(connection)

        topics = {c.args[0] for c in connection.subscribe.call_args_list}
        assert {"app.message#a", "app.message#b", "app.message#app.schedule"} == topics
