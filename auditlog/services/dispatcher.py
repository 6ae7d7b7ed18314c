"""
In-process post-write event dispatch.

Written events are published to a bounded queue and delivered, in publish
order, to the registered handlers on a background task. This keeps slow
consumers such as notification delivery off the write path.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from auditlog.models import EventRecord

logger = logging.getLogger(__name__)

EventHandler = Callable[[EventRecord], Awaitable[None]]


class EventDispatcher:
    """
    Ordered, best-effort delivery of written events to subscribers.

    Handlers run sequentially per event; a failing handler is logged and
    does not prevent delivery to the others.
    """

    def __init__(self, max_queue_size: int = 1000):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._handlers: List[EventHandler] = []
        self._worker: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def subscribe(self, handler: EventHandler) -> None:
        """
        Register an event handler.

        Args:
            handler: Async function that takes the written event as argument
        """
        self._handlers.append(handler)
        logger.info(f"Registered event handler: {getattr(handler, '__name__', type(handler).__name__)}")

    def publish(self, event: EventRecord) -> bool:
        """
        Queue an event for delivery without blocking.

        Returns:
            False if the queue is full and the event was dropped
        """
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Dispatch queue full, dropping event id={event.id} type={event.type}")
            return False
        return True

    async def _deliver(self, event: EventRecord) -> None:
        for handler in self._handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"Handler {getattr(handler, '__name__', handler)} failed for event {event.id}: {e}")

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def drain(self) -> int:
        """Deliver everything currently queued on the calling task."""
        delivered = 0
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()
            delivered += 1
        return delivered

    def start(self) -> None:
        """Start the background delivery task."""
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="event-dispatcher")
        logger.info("Event dispatcher started")

    async def stop(self) -> None:
        """Stop the background task and flush whatever is still queued."""
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        flushed = await self.drain()
        logger.info(f"Event dispatcher stopped ({flushed} pending events flushed)")
