"""Tests for realtime status channels."""

import asyncio
from uuid import UUID

from awash.realtime import Broadcaster, get_broadcaster, relay, status_channel


def test_status_channel_name():
    key = UUID("8f1c2a6e-0000-4000-8000-000000000001")
    assert status_channel(key) == "ai-status-8f1c2a6e-0000-4000-8000-000000000001"


def test_broadcaster_singleton():
    assert get_broadcaster() is get_broadcaster()


class TestBroadcaster:
    def test_publish_without_subscribers(self):
        assert Broadcaster().publish("ai-status-x", "job:progress", {"progress": 10}) == 0

    async def test_subscribers_receive_events(self):
        broadcaster = Broadcaster()

        async with broadcaster.subscribe("ai-status-x") as first, broadcaster.subscribe("ai-status-x") as second:
            reached = broadcaster.publish("ai-status-x", "job:progress", {"progress": 10}, source="queue")
            broadcaster.publish("ai-status-y", "job:progress", {"progress": 99})

            assert reached == 2
            for queue in (first, second):
                message = queue.get_nowait()
                assert message["event"] == "job:progress"
                assert message["payload"]["progress"] == 10
                assert message["payload"]["source"] == "queue"
                assert "timestamp" in message["payload"]
                assert queue.empty()

    async def test_full_queue_drops_oldest(self):
        broadcaster = Broadcaster(queue_size=2)

        async with broadcaster.subscribe("ai-status-x") as queue:
            for step in range(3):
                broadcaster.publish("ai-status-x", "job:progress", {"step": step})

            steps = [queue.get_nowait()["payload"]["step"] for _ in range(queue.qsize())]

        assert steps == [1, 2]

    async def test_channel_removed_after_last_subscriber(self):
        broadcaster = Broadcaster()

        async with broadcaster.subscribe("ai-status-x"):
            assert broadcaster.subscriber_count("ai-status-x") == 1

        assert broadcaster.subscriber_count("ai-status-x") == 0
        assert broadcaster.publish("ai-status-x", "route:complete", {}) == 0


class FakeSocket:
    """WebSocket stand-in; ``leave()`` makes the next receive a disconnect."""

    def __init__(self):
        self.sent = []
        self._left = asyncio.Event()

    def leave(self):
        self._left.set()

    async def receive(self):
        await self._left.wait()
        return {"type": "websocket.disconnect", "code": 1000}

    async def send_json(self, data):
        self.sent.append(data)


async def _until(condition):
    while not condition():
        await asyncio.sleep(0)


class TestRelay:
    async def test_idle_client_leaving_ends_relay(self):
        broadcaster = Broadcaster()
        socket = FakeSocket()

        async with broadcaster.subscribe("ai-status-x") as queue:
            task = asyncio.create_task(relay(socket, queue))
            await asyncio.sleep(0)
            socket.leave()
            await asyncio.wait_for(task, timeout=1)

        assert socket.sent == []
        assert broadcaster.subscriber_count("ai-status-x") == 0

    async def test_events_forwarded_in_order(self):
        broadcaster = Broadcaster()
        socket = FakeSocket()

        async with broadcaster.subscribe("ai-status-x") as queue:
            task = asyncio.create_task(relay(socket, queue))
            for step in range(3):
                broadcaster.publish("ai-status-x", "job:progress", {"step": step})
            await asyncio.wait_for(_until(lambda: len(socket.sent) == 3), timeout=1)
            socket.leave()
            await asyncio.wait_for(task, timeout=1)

        assert [m["payload"]["step"] for m in socket.sent] == [0, 1, 2]
