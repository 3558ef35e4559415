"""In-process realtime channels.

Progress of routed requests and queued jobs is published to channels named
``ai-status-<id>``; WebSocket clients subscribe to a channel and receive
each event as JSON.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator
from uuid import UUID

from fastapi import WebSocket


logger = logging.getLogger(__name__)


def status_channel(key: UUID | str) -> str:
    """Channel name for a project, conversation or job id."""
    return f"ai-status-{key}"


class Broadcaster:
    """Fan-out of events to per-channel subscriber queues."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    def publish(self, channel: str, event: str, payload: dict[str, Any], source: str = "awash") -> int:
        """Deliver an event to every subscriber of ``channel``.

        Returns the number of subscribers reached. A subscriber whose queue
        is full loses its oldest event.
        """
        subscribers = self._subscribers.get(channel)
        if not subscribers:
            return 0

        message = {
            "event": event,
            "payload": {
                **payload,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "source": source,
            },
        }
        for queue in subscribers:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(message)
        return len(subscribers)

    @asynccontextmanager
    async def subscribe(self, channel: str) -> AsyncIterator[asyncio.Queue]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[channel].add(queue)
        logger.debug(f"Subscribed to {channel} ({self.subscriber_count(channel)} listeners)")
        try:
            yield queue
        finally:
            self._subscribers[channel].discard(queue)
            if not self._subscribers[channel]:
                del self._subscribers[channel]


# Singleton instance
_broadcaster: Broadcaster | None = None


def get_broadcaster() -> Broadcaster:
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = Broadcaster()
    return _broadcaster


async def relay(websocket: WebSocket, queue: asyncio.Queue) -> None:
    """Send each queued event to ``websocket`` until the client disconnects.

    The socket is read concurrently, so a client that leaves while no
    events are flowing is noticed right away.
    """
    incoming = asyncio.ensure_future(websocket.receive())
    outgoing = asyncio.ensure_future(queue.get())
    try:
        while True:
            done, _ = await asyncio.wait({incoming, outgoing}, return_when=asyncio.FIRST_COMPLETED)
            if outgoing in done:
                await websocket.send_json(outgoing.result())
                outgoing = asyncio.ensure_future(queue.get())
            if incoming in done:
                if incoming.result()["type"] == "websocket.disconnect":
                    return
                incoming = asyncio.ensure_future(websocket.receive())
    finally:
        incoming.cancel()
        outgoing.cancel()
