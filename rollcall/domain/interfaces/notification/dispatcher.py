"""Outbound notification and change-feed interfaces."""
from abc import ABC, abstractmethod

from ...entities.attendance import AttendanceEvent
from ...value_objects.attendance import Notification


class NotificationDispatcher(ABC):
    """Delivers rendered notifications (email, SMS). Delivery is not our concern."""

    @abstractmethod
    async def send(self, notification: Notification) -> None:
        pass


class AttendanceEventPublisher(ABC):
    """Push channel informing other parts of the system about new events."""

    @abstractmethod
    async def publish(self, event: AttendanceEvent) -> None:
        pass
