"""SQLAlchemy models for the attendance service."""
import uuid
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import JSON, Date, DateTime, Float, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class FaceDescriptorRecord(Base):
    """Enrolled descriptor of one identity."""

    __tablename__ = "face_descriptors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    identity_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        comment="External identity (user profile) identifier"
    )
    vector: Mapped[List[float]] = mapped_column(JSON, nullable=False)
    dimension: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    image_ref: Mapped[Optional[str]] = mapped_column(
        String(1024),
        nullable=True,
        comment="Reference to the enrollment image in blob storage"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow
    )


class AttendanceRecord(Base):
    """One attendance event.

    ``arrival_date`` is set only for recognized identities; the unique
    constraint on (identity_id, arrival_date) keeps one arrival per day even
    across processes. Rows without an identity are never constrained.
    """

    __tablename__ = "attendance_events"
    __table_args__ = (
        UniqueConstraint("identity_id", "arrival_date", name="uq_attendance_identity_day"),
        Index("idx_attendance_timestamp", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    identity_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    arrival_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    image_ref: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class AttendanceSetting(Base):
    """Key/value attendance settings such as the cutoff time."""

    __tablename__ = "attendance_settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow
    )
