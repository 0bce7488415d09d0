"""Attendance domain entities."""
import uuid
from datetime import date, datetime, time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AttendanceStatus(str, Enum):
    """Closed set of attendance outcomes."""
    PRESENT = "present"
    LATE = "late"
    ABSENT = "absent"
    UNAUTHORIZED = "unauthorized"


class CutoffTime(BaseModel):
    """Daily time-of-day boundary separating present from late."""
    hour: int = Field(9, ge=0, le=23)
    minute: int = Field(0, ge=0, le=59)

    @classmethod
    def parse(cls, value: str) -> "CutoffTime":
        """Parse an ``HH:MM`` string.

        Raises:
            ValueError: If the string is malformed or out of range
        """
        hour_str, sep, minute_str = value.strip().partition(":")
        if not sep:
            raise ValueError(f"Cutoff time must be HH:MM, got {value!r}")
        return cls(hour=int(hour_str), minute=int(minute_str))

    def on(self, day: date) -> datetime:
        """The cutoff instant on ``day`` (seconds and microseconds zero)."""
        return datetime.combine(day, time(self.hour, self.minute))

    def format_12h(self) -> str:
        period = "PM" if self.hour >= 12 else "AM"
        display_hour = self.hour % 12 or 12
        return f"{display_hour}:{self.minute:02d} {period}"

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


class AttendanceEvent(BaseModel):
    """Durable attendance outcome handed to the attendance store."""
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    identity_id: Optional[str] = Field(None, description="Recognized identity, None when unrecognized")
    status: AttendanceStatus
    confidence: Optional[float] = None
    timestamp: datetime = Field(default_factory=datetime.now)
    image_ref: Optional[str] = None
    name: Optional[str] = None

    @property
    def arrival_date(self) -> Optional[date]:
        """Calendar day an arrival counts for; None for unrecognized events."""
        if self.identity_id is None:
            return None
        return self.timestamp.date()

    @property
    def recognized(self) -> bool:
        return self.identity_id is not None and self.status != AttendanceStatus.UNAUTHORIZED
