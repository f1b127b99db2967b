"""Best-effort fan-out of temple status and alert events to stream subscribers."""

from __future__ import annotations

import asyncio
import json
import threading
from dataclasses import dataclass
from typing import Any, Optional

from backend.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class BroadcastEvent:
    temple_id: int
    event: str
    payload: dict[str, Any]

    def to_sse(self) -> str:
        return f"event: {self.event}\ndata: {json.dumps(self.payload, default=str)}\n\n"


class Subscription:
    """One subscriber's bounded queue, bound to the event loop that reads it."""

    def __init__(self, temple_id: int, loop: asyncio.AbstractEventLoop, max_size: int) -> None:
        self.temple_id = temple_id
        self.dropped = 0
        self._loop = loop
        self._queue: asyncio.Queue[BroadcastEvent] = asyncio.Queue(maxsize=max_size)

    def _offer(self, event: BroadcastEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1

    def deliver(self, event: BroadcastEvent) -> None:
        try:
            self._loop.call_soon_threadsafe(self._offer, event)
        except RuntimeError:
            # Loop already closed; the subscriber is gone.
            self.dropped += 1

    async def next_event(self, timeout: Optional[float] = None) -> Optional[BroadcastEvent]:
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None


class BroadcastHub:
    """Publish events keyed by temple id.

    Publishing never blocks: events go to each subscriber's bounded queue and
    are dropped for that subscriber when its queue is full. There is no replay.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[int, set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, temple_id: int) -> Subscription:
        subscription = Subscription(temple_id, asyncio.get_running_loop(), self._queue_size)
        with self._lock:
            self._subscribers.setdefault(temple_id, set()).add(subscription)
        logger.info("Stream subscriber added | temple_id=%s", temple_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.temple_id)
            if subscribers is None:
                return
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[subscription.temple_id]
        logger.info(
            "Stream subscriber removed | temple_id=%s | dropped=%s",
            subscription.temple_id,
            subscription.dropped,
        )

    def subscriber_count(self, temple_id: int) -> int:
        with self._lock:
            return len(self._subscribers.get(temple_id, ()))

    def publish(self, temple_id: int, event: str, payload: dict[str, Any]) -> int:
        """Queue an event for every subscriber of `temple_id`; returns how many were offered it."""
        with self._lock:
            subscribers = list(self._subscribers.get(temple_id, ()))
        if not subscribers:
            return 0
        message = BroadcastEvent(temple_id=temple_id, event=event, payload=payload)
        for subscription in subscribers:
            subscription.deliver(message)
        return len(subscribers)
