"""Tests for NotificationConnectionManager, the socket sender and the stale connection sweeper."""

import asyncio
import contextlib
import logging
from datetime import timedelta

import pytest

from crm_notifications.api.v2.websocket import _pump
from crm_notifications.services.event_sources import InMemoryEventSource
from crm_notifications.services.websocket_manager import (
    NOTIFICATION_CREATED,
    NotificationConnectionManager,
)
from crm_notifications.tasks.connection_sweeper import sweep_stale_connections
from tests.factories import NotificationFactory


class FakeWebSocket:
    def __init__(self):
        self.accepted = False
        self.closed_with = None

    async def accept(self):
        self.accepted = True

    async def close(self, code=1000, reason=None):
        self.closed_with = code


@pytest.fixture
def source():
    return InMemoryEventSource()


@pytest.fixture
def manager(source):
    return NotificationConnectionManager(source)


class TestConnections:
    @pytest.mark.asyncio
    async def test_tabs_of_one_user_share_a_stream(self, manager, source):
        first, second = FakeWebSocket(), FakeWebSocket()

        outbox_a = await manager.connect(first, user_id=1)
        outbox_b = await manager.connect(second, user_id=1)

        assert first.accepted and second.accepted
        assert source.opened_count == 1

        record = NotificationFactory(user_id=1)
        source.publish(record)

        for outbox in (outbox_a, outbox_b):
            message = outbox.get_nowait()
            assert message["type"] == NOTIFICATION_CREATED
            assert message["data"]["id"] == record["id"]

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, manager, source):
        outbox_one = await manager.connect(FakeWebSocket(), user_id=1)
        outbox_two = await manager.connect(FakeWebSocket(), user_id=2)

        source.publish(NotificationFactory(user_id=2))

        assert outbox_one.empty()
        assert outbox_two.qsize() == 1

    @pytest.mark.asyncio
    async def test_last_disconnect_closes_stream_and_prunes_dispatcher(self, manager, source):
        first, second = FakeWebSocket(), FakeWebSocket()
        await manager.connect(first, user_id=1)
        await manager.connect(second, user_id=1)

        await manager.disconnect(first)
        assert source.active_subscriptions == 1

        await manager.disconnect(second)
        assert source.active_subscriptions == 0
        assert manager.get_dispatcher(1) is None
        assert manager.get_connection_stats() == {
            "total_connections": 0,
            "unique_users": 0,
            "active_streams": 0,
        }

    @pytest.mark.asyncio
    async def test_in_process_subscribe(self, manager, source):
        received = []
        release = await manager.subscribe(5, received.append)

        source.publish(NotificationFactory(user_id=5))
        await release()

        assert len(received) == 1
        assert manager.get_dispatcher(5) is None

    @pytest.mark.asyncio
    async def test_shutdown(self, manager, source):
        await manager.connect(FakeWebSocket(), user_id=1)
        await manager.connect(FakeWebSocket(), user_id=2)

        await manager.shutdown()

        assert source.active_subscriptions == 0


class TestStaleConnections:
    @pytest.mark.asyncio
    async def test_stale_sockets_are_closed(self, manager, source):
        stale, fresh = FakeWebSocket(), FakeWebSocket()
        await manager.connect(stale, user_id=1)
        await manager.connect(fresh, user_id=2)
        manager._heartbeats[stale] -= timedelta(minutes=10)

        closed = await manager.check_stale_connections(timeout_seconds=120)

        assert closed == 1
        assert stale.closed_with == 4002
        assert fresh.closed_with is None
        assert manager.connected_users == {2}
        assert source.active_subscriptions == 1

    @pytest.mark.asyncio
    async def test_sweeper_job_uses_configured_timeout(self, manager):
        websocket = FakeWebSocket()
        await manager.connect(websocket, user_id=1)
        manager.update_heartbeat(websocket)

        assert await sweep_stale_connections(manager) == 0
        assert manager.total_connections == 1


class SendingWebSocket(FakeWebSocket):
    def __init__(self, fail_after: int = None):
        super().__init__()
        self.sent = []
        self.fail_after = fail_after

    async def send_json(self, message):
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise RuntimeError('Cannot call "send" once a close message has been sent.')
        self.sent.append(message)


class TestSender:
    @pytest.mark.asyncio
    async def test_sends_in_queue_order(self):
        websocket = SendingWebSocket()
        outbox = asyncio.Queue()
        for n in range(3):
            outbox.put_nowait({"type": "pong", "n": n})

        sender = asyncio.create_task(_pump(websocket, outbox))
        await asyncio.sleep(0.01)
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sender

        assert [m["n"] for m in websocket.sent] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_stops_quietly_when_socket_closed(self, caplog):
        websocket = SendingWebSocket(fail_after=1)
        outbox = asyncio.Queue()
        outbox.put_nowait({"type": "connected"})
        outbox.put_nowait({"type": "pong"})

        with caplog.at_level(logging.INFO):
            await asyncio.wait_for(_pump(websocket, outbox), timeout=1)

        assert websocket.sent == [{"type": "connected"}]
        assert "closed WebSocket" in caplog.text
