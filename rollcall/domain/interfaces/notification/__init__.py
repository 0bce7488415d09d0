"""Notification interfaces."""
from .dispatcher import AttendanceEventPublisher, NotificationDispatcher

__all__ = ["AttendanceEventPublisher", "NotificationDispatcher"]
