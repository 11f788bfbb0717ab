"""
Fan-out of controller events to real-time subscribers.

Every subscriber owns a bounded queue. Publishing never blocks: a full or
closed queue is skipped and the drop counted.
"""

from __future__ import annotations

import itertools
import queue
import threading
from typing import Any, Callable, Iterable, Optional

from utils.constants import QUEUE_MAX_SIZE
from utils.logging import events_logger as logger
from utils.sse import clear_queue

Event = dict[str, Any]


class Subscription:
    """One subscriber's mailbox."""

    def __init__(self, subscriber_id: int, maxsize: int = QUEUE_MAX_SIZE):
        self.id = subscriber_id
        self.queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self.dropped = 0
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def offer(self, event: Event) -> bool:
        """Enqueue without blocking; False when the event was dropped."""
        if self.closed:
            return False
        try:
            self.queue.put_nowait(event)
            return True
        except queue.Full:
            self.dropped += 1
            return False

    def get(self, timeout: float | None = None) -> Optional[Event]:
        """Next event, or None on timeout or once closed."""
        if self.closed:
            return None
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[Event]:
        """Take everything queued right now without waiting."""
        events = []
        while True:
            try:
                events.append(self.queue.get_nowait())
            except queue.Empty:
                return events

    def close(self) -> None:
        self._closed.set()
        clear_queue(self.queue)


class EventBroadcaster:
    """Publishes controller events to every open subscription."""

    def __init__(self, maxsize: int = QUEUE_MAX_SIZE):
        self.maxsize = maxsize
        self._lock = threading.Lock()
        self._subscribers: dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, snapshot: Callable[[], Iterable[Event]] | None = None) -> Subscription:
        """
        Register a subscriber.

        Args:
            snapshot: Produces the replay for a late joiner. It is called
                under the broadcaster lock, so no event published afterwards
                can reach the new subscriber ahead of its replay.
        """
        with self._lock:
            sub = Subscription(next(self._ids), self.maxsize)
            if snapshot is not None:
                for event in snapshot():
                    sub.offer(event)
            self._subscribers[sub.id] = sub
        logger.debug(f"Subscriber {sub.id} joined ({len(self._subscribers)} total)")
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            self._subscribers.pop(sub.id, None)
        sub.close()
        logger.debug(f"Subscriber {sub.id} left")

    def publish(self, event: Event) -> int:
        """Deliver an event to every subscriber, returning how many accepted it."""
        with self._lock:
            subscribers = list(self._subscribers.values())

        delivered = 0
        for sub in subscribers:
            if sub.offer(event):
                delivered += 1
            elif not sub.closed:
                logger.debug(f"Subscriber {sub.id} is full, dropped {event.get('type')}")
        return delivered
