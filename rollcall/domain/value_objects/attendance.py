"""Attendance and capture value objects."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from rollcall.domain.entities.alerts import Priority
from rollcall.domain.entities.attendance import AttendanceEvent, AttendanceStatus
from rollcall.domain.value_objects.recognition import FrameResult


class RecordOutcome(BaseModel):
    """Result of a record call: the authoritative event and whether this call created it."""
    event: AttendanceEvent
    created: bool


class PendingWrite(BaseModel):
    """A decision whose write failed; kept so the caller can retry it."""
    identity_id: Optional[str]
    status: AttendanceStatus
    confidence: Optional[float] = None
    timestamp: datetime
    error: str


class AlertContext(BaseModel):
    """Face-analysis facts evaluated by alert conditions alongside the event."""
    quality_score: Optional[float] = None
    expression_score: Optional[float] = Field(None, description="Happiness score (0-1)")
    face_count: Optional[int] = None
    is_live: Optional[bool] = None
    user_name: Optional[str] = None


class TriggeredAlert(BaseModel):
    """A rule that fired for an event, with its rendered action messages."""
    rule_id: str
    rule_name: str
    priority: Priority
    messages: List[str] = Field(default_factory=list)
    event: AttendanceEvent
    triggered_at: datetime = Field(default_factory=datetime.now)


class Notification(BaseModel):
    """Rendered message handed to the notification dispatcher."""
    recipient: str
    subject: str
    body: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CaptureResult(BaseModel):
    """Everything one capture produced."""
    frame: FrameResult
    records: List[RecordOutcome] = Field(default_factory=list)
    alerts: List[TriggeredAlert] = Field(default_factory=list)
    failed_writes: List[PendingWrite] = Field(default_factory=list)

    @property
    def created_events(self) -> List[AttendanceEvent]:
        return [r.event for r in self.records if r.created]


class BatchAttendanceResult(BaseModel):
    """Counters returned by a batch attendance pass."""
    processed: int = 0
    recognized: int = 0
    recorded: int = 0
    errors: List[str] = Field(default_factory=list)
