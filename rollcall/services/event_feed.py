"""In-process change feed of newly recorded attendance events."""
import asyncio
from typing import List

from rollcall.core.logging import get_logger
from rollcall.domain.entities.attendance import AttendanceEvent
from rollcall.domain.interfaces.notification.dispatcher import AttendanceEventPublisher

logger = get_logger(__name__)


class AttendanceEventFeed(AttendanceEventPublisher):
    """Fans attendance events out to subscriber queues.

    Each subscriber gets a bounded queue. A subscriber whose queue is full is
    dropped instead of slowing down recording.
    """

    def __init__(self, max_queue_size: int = 50) -> None:
        self.max_queue_size = max_queue_size
        self._subscribers: List[asyncio.Queue] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: AttendanceEvent) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self._subscribers.remove(queue)
                logger.warning("Dropped slow attendance feed subscriber", remaining=len(self._subscribers))
