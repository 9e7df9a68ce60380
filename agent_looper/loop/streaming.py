"""Fan-out of loop events to async subscribers."""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncGenerator, List, Optional

from agent_looper.loop.contracts import LoopEvent


logger = logging.getLogger(__name__)


class LoopStreamManager:
    """Buffers LoopEvents and delivers them to every subscriber.

    The manager is itself an event sink: a controller calls it synchronously
    from inside the event loop. Events published before anyone subscribes are
    buffered (oldest dropped when full) and replayed to the first subscriber.
    """

    def __init__(self, buffer_size: int = 1000) -> None:
        """Initialize stream manager.

        Args:
            buffer_size: Maximum number of events to buffer per queue
        """
        self._buffer_size = buffer_size
        self._queue: asyncio.Queue[LoopEvent] = asyncio.Queue(maxsize=buffer_size)
        self._consumers: List[asyncio.Queue[Optional[LoopEvent]]] = []
        self._closed = False
        self._published = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def published_count(self) -> int:
        return self._published

    @property
    def subscriber_count(self) -> int:
        return len(self._consumers)

    def __call__(self, event: LoopEvent) -> None:
        self.publish(event)

    def publish(self, event: LoopEvent) -> None:
        """Broadcast ``event`` to all subscribers, or buffer it if there are none.

        Args:
            event: Event to broadcast
        """
        if self._closed:
            logger.debug(f"Stream closed, dropped {event.kind} event")
            return

        self._published += 1

        if not self._consumers:
            try:
                self._queue.put_nowait(event)
            except asyncio.QueueFull:
                oldest = self._queue.get_nowait()
                logger.warning(f"Buffer full, dropped oldest {oldest.kind} event")
                self._queue.put_nowait(event)
            return

        for consumer_queue in self._consumers:
            try:
                consumer_queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Consumer queue full, dropped {event.kind} event")

    def close(self) -> None:
        """Stop accepting events and end every active subscription."""
        if self._closed:
            return
        self._closed = True
        for consumer_queue in self._consumers:
            try:
                consumer_queue.put_nowait(None)
            except asyncio.QueueFull:
                consumer_queue.get_nowait()
                consumer_queue.put_nowait(None)

    async def subscribe(self) -> AsyncGenerator[LoopEvent, None]:
        """Subscribe to loop events as an async generator.

        Yields:
            LoopEvent objects as they are published, until ``close()``.

        Example:
            async for event in manager.subscribe():
                print(f"{event.kind}: {event.payload}")
        """
        consumer_queue: asyncio.Queue[Optional[LoopEvent]] = asyncio.Queue(
            maxsize=self._buffer_size + 1
        )
        self._consumers.append(consumer_queue)
        while not self._queue.empty():
            consumer_queue.put_nowait(self._queue.get_nowait())
        if self._closed:
            consumer_queue.put_nowait(None)

        try:
            while True:
                event = await consumer_queue.get()
                if event is None:
                    return
                yield event
        finally:
            if consumer_queue in self._consumers:
                self._consumers.remove(consumer_queue)
