"""Broadcast channel for real-time subscribers.

Owns:
- registering subscribers with an initial snapshot
- fanning out patch messages to every open subscriber
- pruning closed subscribers

Each subscriber has its own ordered outbound queue drained by
:meth:`Subscriber.pump`.  The snapshot is queued in the same synchronous
step that registers the subscriber, so it is always the first message a
subscriber sees and no patch can fall between the two.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

from feedrouter.state.events import StateMessage, build_snapshot, utcnow

_logger = logging.getLogger(__name__)


class MessageSink(Protocol):
    """The part of a WebSocket connection the channel needs."""

    @property
    def closed(self) -> bool:
        ...

    async def send_str(self, data: str) -> None:
        ...

    async def close(self) -> bool:
        ...


class Subscriber:
    """A connected sink plus its outbound queue."""

    def __init__(self, sink: MessageSink, subscriber_id: int) -> None:
        self.id = subscriber_id
        self._sink = sink
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._failed = False

    @property
    def closed(self) -> bool:
        return self._failed or self._sink.closed

    async def close(self) -> None:
        if not self._sink.closed:
            await self._sink.close()

    def offer(self, payload: str) -> None:
        self._queue.put_nowait(payload)

    async def pump(self) -> None:
        """Send queued payloads in order until the sink closes or a send fails."""
        while not self.closed:
            payload = await self._queue.get()
            if self._sink.closed:
                return
            try:
                await self._sink.send_str(payload)
            except (ConnectionError, RuntimeError) as exc:
                self._failed = True
                _logger.debug("Subscriber %d send failed: %r", self.id, exc)
                return


class BroadcastChannel:
    """Fan-out of state messages to connected subscribers."""

    def __init__(
        self,
        snapshot: Callable[[], dict[str, str]],
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._snapshot = snapshot
        self._clock = clock
        self._subscribers: dict[int, Subscriber] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._subscribers)

    def connect(self, sink: MessageSink) -> Subscriber:
        """Register *sink* and queue its snapshot of the current state."""
        subscriber = Subscriber(sink, next(self._ids))
        message = build_snapshot(self._snapshot(), clock=self._clock)
        subscriber.offer(message.model_dump_json())
        self._subscribers[subscriber.id] = subscriber
        _logger.info("Subscriber %d connected (%d total)", subscriber.id, len(self._subscribers))
        return subscriber

    def disconnect(self, subscriber: Subscriber) -> None:
        if self._subscribers.pop(subscriber.id, None) is not None:
            _logger.info("Subscriber %d disconnected (%d total)", subscriber.id, len(self._subscribers))

    async def close(self) -> None:
        """Close every subscriber sink and forget all subscribers."""
        subscribers = list(self._subscribers.values())
        self._subscribers.clear()
        for subscriber in subscribers:
            await subscriber.close()

    def publish(self, message: StateMessage) -> int:
        """Offer *message* to every open subscriber; return how many received it."""
        payload = message.model_dump_json()
        delivered = 0
        for subscriber in list(self._subscribers.values()):
            if subscriber.closed:
                self._subscribers.pop(subscriber.id, None)
                _logger.debug("Pruned closed subscriber %d", subscriber.id)
                continue
            subscriber.offer(payload)
            delivered += 1
        return delivered
