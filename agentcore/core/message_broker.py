"""
Event Broker Implementation for agentcore
Broadcast publish/subscribe over per-subscriber bounded queues.
Publishing never blocks: a subscriber whose queue is full misses the event.
"""

import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_QUEUE_SIZE = 64

_CLOSED = object()


class EventKind(Enum):
    """Kinds of change carried by a broker envelope"""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass
class Event(Generic[T]):
    """Envelope delivered to subscribers"""
    kind: EventKind
    payload: T
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        payload = self.payload.to_dict() if hasattr(self.payload, "to_dict") else self.payload
        return {
            'id': self.id,
            'kind': self.kind.value,
            'payload': payload,
            'timestamp': self.timestamp,
        }


class EventChannel(Generic[T]):
    """
    Single-consumer async channel.

    `send` never blocks; once `maxsize` items are waiting further sends are
    dropped and report False. `close` is idempotent. Iterating the channel
    yields items until it is closed and drained.
    """

    def __init__(self, maxsize: int = 0):
        self.maxsize = maxsize
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self.subscriber_id: Optional[str] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    def send(self, item: T) -> bool:
        if self._closed:
            return False
        if self.maxsize > 0 and self._queue.qsize() >= self.maxsize:
            return False
        self._queue.put_nowait(item)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def receive(self) -> T:
        """Wait for the next item; raises StopAsyncIteration once closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            # keep the sentinel for any later reader
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        return await self.receive()

    async def collect(self) -> List[T]:
        """Drain the channel until it is closed."""
        return [item async for item in self]


class EventBroker(Generic[T]):
    """
    In-memory broadcast broker.

    Every subscriber owns a bounded channel. `publish` may be called from any
    coroutine on the broker's loop and returns immediately.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: Dict[str, EventChannel[Event[T]]] = {}
        self._lock = threading.Lock()
        self.running = True

        self.stats = {
            'published': 0,
            'delivered': 0,
            'dropped': 0,
        }

    def subscribe(self, subscriber_id: Optional[str] = None) -> EventChannel[Event[T]]:
        """Register a new subscriber and return its channel"""
        channel: EventChannel[Event[T]] = EventChannel(self.queue_size)
        if not self.running:
            channel.close()
            return channel
        subscriber_id = subscriber_id or str(uuid.uuid4())
        channel.subscriber_id = subscriber_id
        with self._lock:
            self._subscribers[subscriber_id] = channel
        logger.debug(f"Subscriber {subscriber_id} registered")
        return channel

    def unsubscribe(self, channel: EventChannel[Event[T]]) -> bool:
        subscriber_id = getattr(channel, "subscriber_id", None)
        with self._lock:
            removed = self._subscribers.pop(subscriber_id, None)
        if removed is None:
            return False
        removed.close()
        logger.debug(f"Subscriber {subscriber_id} removed")
        return True

    def publish(self, kind: EventKind, payload: T) -> int:
        """Deliver an event to every subscriber; returns the delivery count"""
        if not self.running:
            return 0
        event = Event(kind=kind, payload=payload)
        with self._lock:
            subscribers = list(self._subscribers.items())
        self.stats['published'] += 1

        delivered = 0
        for subscriber_id, channel in subscribers:
            if channel.send(event):
                delivered += 1
            else:
                self.stats['dropped'] += 1
                logger.warning(f"Subscriber {subscriber_id} queue full, dropping event {event.id}")
        self.stats['delivered'] += delivered
        return delivered

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            'subscribers': self.subscriber_count(),
        }

    def shutdown(self) -> None:
        """Close every subscription; later publishes are ignored"""
        if not self.running:
            return
        self.running = False
        with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for channel in subscribers:
            channel.close()
        logger.info("Event broker stopped")
