from __future__ import annotations

"""Per-execution event fan-out.

Subscribers get their own ``asyncio.Queue``; publishing puts the event on
every queue registered for the execution. When the last subscriber of an
execution leaves, its entry is removed from the map.

Queues are bounded. A subscriber that stops draining loses its oldest events
rather than blocking the engine.
"""

import asyncio
import logging
from typing import AsyncIterator, Dict, Optional, Set

from ..schemas.domain import ExecutionEvent

logger = logging.getLogger(__name__)

_DEFAULT_QUEUE_SIZE = 256


class Subscription:
    """A single listener on one execution. Async-iterable; use ``close()`` or ``async with``."""

    def __init__(self, bus: "ExecutionEventBus", execution_id: str, maxsize: int) -> None:
        self.execution_id = execution_id
        self.queue: asyncio.Queue[ExecutionEvent] = asyncio.Queue(maxsize=maxsize)
        self._bus = bus
        self._closed = False

    async def get(self, timeout: Optional[float] = None) -> ExecutionEvent:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._bus.unsubscribe(self)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    def __aiter__(self) -> AsyncIterator[ExecutionEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ExecutionEvent]:
        while not self._closed:
            yield await self.queue.get()


class ExecutionEventBus:
    """Fan out ``ExecutionEvent`` objects to the subscribers of each execution."""

    def __init__(self, *, queue_size: int = _DEFAULT_QUEUE_SIZE) -> None:
        self._subscribers: Dict[str, Set[Subscription]] = {}
        self._queue_size = queue_size

    def subscribe(self, execution_id: str) -> Subscription:
        sub = Subscription(self, execution_id, self._queue_size)
        self._subscribers.setdefault(execution_id, set()).add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        subs = self._subscribers.get(sub.execution_id)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._subscribers[sub.execution_id]

    def subscriber_count(self, execution_id: Optional[str] = None) -> int:
        if execution_id is not None:
            return len(self._subscribers.get(execution_id, ()))
        return sum(len(s) for s in self._subscribers.values())

    def publish(self, event: ExecutionEvent) -> None:
        for sub in list(self._subscribers.get(event.execution_id, ())):
            if sub.queue.full():
                sub.queue.get_nowait()
                logger.debug("Dropped oldest event for a slow subscriber of %s", event.execution_id)
            sub.queue.put_nowait(event)
