from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping, Protocol

logger = logging.getLogger(__name__)

RECEIVE_REPLY = "ReceiveReply"


def topic_for(ticket_id: str) -> str:
    return f"ticket:{ticket_id}"


@dataclass(frozen=True, slots=True)
class LiveEvent:
    """Message delivered to subscribers of a topic."""

    topic: str
    event: str
    data: Mapping[str, Any]

    def to_frame(self) -> dict[str, Any]:
        return {"event": self.event, "data": dict(self.data)}


class EventPublisher(Protocol):
    async def publish(self, topic: str, event: str, data: Mapping[str, Any]) -> int:
        ...


class TicketHub:
    """In-process pub/sub keyed by topic.

    Every subscriber owns a bounded queue. Publishing never waits on a slow
    consumer: when a queue is full the event is dropped for that subscriber
    and a warning is logged. Subscribers reconcile ordering themselves using
    ``sent_at`` and the reply id carried in the payload.
    """

    def __init__(self, *, queue_size: int = 100) -> None:
        self._queue_size = max(1, queue_size)
        self._subscribers: dict[str, set[asyncio.Queue[LiveEvent]]] = {}

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    @asynccontextmanager
    async def subscribe(self, topic: str) -> AsyncIterator[asyncio.Queue[LiveEvent]]:
        queue: asyncio.Queue[LiveEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.setdefault(topic, set()).add(queue)
        logger.debug("Subscriber joined %s", topic)
        try:
            yield queue
        finally:
            self._unsubscribe(topic, queue)

    def _unsubscribe(self, topic: str, queue: asyncio.Queue[LiveEvent]) -> None:
        queues = self._subscribers.get(topic)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[topic]
        logger.debug("Subscriber left %s", topic)

    async def publish(self, topic: str, event: str, data: Mapping[str, Any]) -> int:
        """Fan ``event`` out to current subscribers; return how many received it."""

        message = LiveEvent(topic=topic, event=event, data=data)
        delivered = 0
        for queue in list(self._subscribers.get(topic, ())):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("Dropping %s event for slow subscriber on %s", event, topic)
                continue
            delivered += 1
        return delivered
