"""Storage interfaces."""
from .attendance_store import AttendanceStore
from .gallery_store import GalleryStore
from .settings_store import SettingsStore

__all__ = ["AttendanceStore", "GalleryStore", "SettingsStore"]
