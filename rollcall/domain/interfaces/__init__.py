"""Service interfaces package."""
from .notification import AttendanceEventPublisher, NotificationDispatcher
from .recognition import FaceDetector, FrameSource
from .storage import AttendanceStore, GalleryStore, SettingsStore

__all__ = [
    "AttendanceEventPublisher",
    "AttendanceStore",
    "FaceDetector",
    "FrameSource",
    "GalleryStore",
    "NotificationDispatcher",
    "SettingsStore",
]
