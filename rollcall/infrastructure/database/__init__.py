"""SQLAlchemy persistence for the gallery, attendance events and settings."""
from .repositories import AttendanceRepository, GalleryRepository, SettingsRepository
from .session import build_engine, build_session_factory, create_schema, session_scope

__all__ = [
    "AttendanceRepository",
    "GalleryRepository",
    "SettingsRepository",
    "build_engine",
    "build_session_factory",
    "create_schema",
    "session_scope",
]
