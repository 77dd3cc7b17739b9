"""Bounded progress stream for refinement events.

Publishing never blocks: when the queue is full the oldest event is
dropped to make room. Consumers either iterate the stream until it is
closed or drain whatever is buffered.
"""

import asyncio
import logging
from typing import AsyncIterator

from models.schemas.events import RefinementEvent

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256

_CLOSED = object()


class EventStream:
    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._sequence = 0
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _put(self, item) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                dropped = self._queue.get_nowait()
                if dropped is not _CLOSED:
                    self.dropped += 1
                    logger.warning("Event queue full, dropped %s #%d", dropped.type, dropped.sequence)

    def publish(self, event: RefinementEvent) -> RefinementEvent:
        """Stamp the next sequence number and enqueue; returns the stamped event."""
        if self._closed:
            raise RuntimeError("event stream is closed")
        self._sequence += 1
        stamped = event.model_copy(update={"sequence": self._sequence})
        self._put(stamped)
        return stamped

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._put(_CLOSED)

    def drain(self) -> list[RefinementEvent]:
        """Everything buffered right now, oldest first."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not _CLOSED:
                events.append(item)
        return events

    async def __aiter__(self) -> AsyncIterator[RefinementEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
