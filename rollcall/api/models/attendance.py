"""API specific attendance, gallery and alert models."""
import base64
import binascii
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from rollcall.core.exceptions import InvalidImageError
from rollcall.domain.entities.alerts import AlertAction, AlertCondition, AlertType, Priority
from rollcall.domain.entities.attendance import AttendanceEvent, AttendanceStatus, CutoffTime
from rollcall.domain.entities.face import BoundingBox
from rollcall.domain.value_objects.recognition import FrameResult, RecognitionMode

# Constants for validation ranges used in API models
MIN_FACES = 1
MAX_FACES = 60


def decode_base64_image(data: str) -> bytes:
    """Decode a base64 payload, accepting ``data:`` URLs.

    Raises:
        InvalidImageError: If the payload is not valid base64
    """
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError(f"Image is not valid base64: {e}") from e


class CutoffRequest(BaseModel):
    """Request model for updating the cutoff time."""
    hour: int = Field(..., description="Hour (0-23)")
    minute: int = Field(..., description="Minute (0-59)")


class CutoffResponse(BaseModel):
    """Response model for the cutoff endpoints."""
    hour: int
    minute: int
    formatted: str = Field(..., description="12-hour display form, e.g. 9:00 AM")

    @classmethod
    def from_cutoff(cls, cutoff: CutoffTime) -> "CutoffResponse":
        return cls(hour=cutoff.hour, minute=cutoff.minute, formatted=cutoff.format_12h())


class EnrollRequest(BaseModel):
    """Request model for enrolling a descriptor directly."""
    identity_id: str = Field(..., min_length=1, max_length=255)
    vector: List[float] = Field(..., min_length=1, description="Face descriptor")
    name: Optional[str] = Field(None, max_length=255)
    image_ref: Optional[str] = Field(None, max_length=1024)


class EnrollImageRequest(BaseModel):
    """Request model for enrolling from a face image."""
    identity_id: str = Field(..., min_length=1, max_length=255)
    image: str = Field(..., description="Base64-encoded JPEG or PNG")
    name: Optional[str] = Field(None, max_length=255)
    image_ref: Optional[str] = Field(None, max_length=1024)


class EnrollResponse(BaseModel):
    identity_id: str
    dimension: int
    name: Optional[str] = None


class RecognizeRequest(BaseModel):
    """Request model for single-image recognition."""
    image: str = Field(..., description="Base64-encoded JPEG or PNG")
    mode: RecognitionMode = RecognitionMode.SINGLE
    max_faces: Optional[int] = Field(None, ge=MIN_FACES, le=MAX_FACES)
    record: bool = Field(False, description="Record attendance for recognized faces")
    image_ref: Optional[str] = Field(None, max_length=1024)


class RecognizedFace(BaseModel):
    bounding_box: BoundingBox
    detection_confidence: float
    recognized: bool
    identity_id: Optional[str] = None
    confidence: float
    status: AttendanceStatus
    recorded: Optional[bool] = Field(None, description="True if this call created the arrival")
    error: Optional[str] = None


class RecognizeResponse(BaseModel):
    face_count: int
    faces: List[RecognizedFace]
    processing_time_ms: float

    @classmethod
    def from_frame(cls, frame: FrameResult, recorded: Optional[Dict[int, bool]] = None) -> "RecognizeResponse":
        recorded = recorded or {}
        return cls(
            face_count=frame.face_count,
            faces=[
                RecognizedFace(
                    bounding_box=o.bounding_box,
                    detection_confidence=o.detection_confidence,
                    recognized=o.recognized,
                    identity_id=o.identity_id,
                    confidence=o.confidence,
                    status=o.status,
                    recorded=recorded.get(i),
                    error=o.error
                )
                for i, o in enumerate(frame.outcomes)
            ],
            processing_time_ms=frame.processing_time_ms
        )


class AttendanceEventResponse(BaseModel):
    event_id: str
    identity_id: Optional[str]
    name: Optional[str]
    status: AttendanceStatus
    confidence: Optional[float]
    timestamp: datetime
    image_ref: Optional[str]

    @classmethod
    def from_event(cls, event: AttendanceEvent) -> "AttendanceEventResponse":
        return cls(**event.model_dump(include=set(cls.model_fields)))


class AlertRuleUpdate(BaseModel):
    """Partial update of an alert rule; omitted fields are unchanged."""
    name: Optional[str] = None
    type: Optional[AlertType] = None
    conditions: Optional[List[AlertCondition]] = None
    actions: Optional[List[AlertAction]] = None
    enabled: Optional[bool] = None
    priority: Optional[Priority] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class TriggeredAlertResponse(BaseModel):
    rule_id: str
    rule_name: str
    priority: Priority
    messages: List[str]
    event_id: str
    triggered_at: datetime
