"""
Job lifecycle events.

Consumers either register a listener callback or subscribe to a bounded
asyncio.Queue. Publishing never blocks: a full queue drops its oldest event.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field

from ..core.utils.date_utils import utcnow

logger = structlog.get_logger()


class JobEventType(str, Enum):
    """Closed set of lifecycle events."""

    STARTED = "job:started"
    COMPLETED = "job:completed"
    FAILED = "job:failed"
    CANCELLED = "job:cancelled"


class JobEvent(BaseModel):
    """A lifecycle notification for one job."""

    type: JobEventType
    job_id: str
    wallet: str
    service: str
    cost: float | None = None
    error: str | None = None
    duration_ms: int | None = None
    timestamp: datetime = Field(default_factory=utcnow)


Listener = Callable[[JobEvent], Awaitable[None] | None]


class EventBus:
    """Fan-out of JobEvents to listeners and queue subscribers."""

    def __init__(self, queue_size: int = 1000):
        self.queue_size = queue_size
        self._listeners: list[Listener] = []
        self._queues: list[asyncio.Queue[JobEvent]] = []

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """
        Register a callback (sync or async).

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def subscribe(self) -> asyncio.Queue[JobEvent]:
        """New bounded queue receiving every subsequent event."""
        queue: asyncio.Queue[JobEvent] = asyncio.Queue(maxsize=self.queue_size)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[JobEvent]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    async def publish(self, event: JobEvent) -> None:
        """Deliver an event. Listener errors are logged, never propagated."""
        for queue in self._queues:
            if queue.full():
                dropped = queue.get_nowait()
                logger.warning(
                    "Event queue full - dropping oldest event",
                    dropped_type=dropped.type.value,
                    dropped_job_id=dropped.job_id,
                )
            queue.put_nowait(event)

        for listener in list(self._listeners):
            try:
                result: Any = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "Event listener failed",
                    event_type=event.type.value,
                    job_id=event.job_id,
                    error=str(e),
                    exc_info=True,
                )
