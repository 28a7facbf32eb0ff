"""
clawguard.extended.fanout
~~~~~~~~~~~~~~~~~~~~~~~~~~
Live-subscriber fanout. Producers on any thread call ``publish``; each
subscriber owns a bounded asyncio.Queue on the server loop. A full queue
drops the message for that subscriber only.
"""

from __future__ import annotations

import asyncio
import logging
import threading

logger = logging.getLogger("clawguard.fanout")

DEFAULT_QUEUE_SIZE = 100


class LiveFanout:

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._loop: asyncio.AbstractEventLoop | None = None
        self._subscribers: set[asyncio.Queue] = set()
        self._lock = threading.Lock()
        self.published = 0
        self.dropped = 0

    def bind(self, loop: asyncio.AbstractEventLoop | None) -> None:
        self._loop = loop

    def subscribe(self) -> asyncio.Queue:
        """Register a subscriber; call from the bound loop."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        with self._lock:
            self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, message: dict) -> bool:
        """Hand ``message`` to every subscriber; safe from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return False
        try:
            loop.call_soon_threadsafe(self._deliver, message)
        except RuntimeError as e:
            logger.debug("Fanout loop unavailable: %s", e)
            return False
        return True

    def _deliver(self, message: dict) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        self.published += 1
        for queue in subscribers:
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                self.dropped += 1
                logger.debug("Subscriber queue full — dropping %s", message.get("type"))
