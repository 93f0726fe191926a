"""Fan-out of controller events to connected UI clients."""
from __future__ import annotations

import asyncio
import logging
from asyncio import QueueEmpty
from typing import List

from .state import ControllerEvent

logger = logging.getLogger(__name__)


class UiChannel:
    """Per-client bounded queues; a slow client loses its oldest event, never blocks the controller."""

    def __init__(self, queue_size: int = 16) -> None:
        self._queue_size = queue_size
        self._subscribers: List[asyncio.Queue[ControllerEvent]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def register_ui(self) -> asyncio.Queue[ControllerEvent]:
        queue: asyncio.Queue[ControllerEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.append(queue)
        return queue

    def unregister_ui(self, queue: asyncio.Queue[ControllerEvent]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def clear(self) -> None:
        self._subscribers.clear()

    async def broadcast(self, event: ControllerEvent) -> None:
        """Broadcast event to all UI subscribers with error handling."""
        for queue in list(self._subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)


__all__ = ["UiChannel"]
