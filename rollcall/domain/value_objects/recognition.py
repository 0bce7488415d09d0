"""Face recognition value objects."""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from rollcall.domain.entities.attendance import AttendanceStatus
from rollcall.domain.entities.face import BoundingBox, TrackState


class RecognitionMode(str, Enum):
    """How many faces a frame is expected to hold."""
    SINGLE = "single"
    MULTIPLE = "multiple"
    CLASSROOM = "classroom"


class ModelTier(str, Enum):
    """Detector accuracy/latency tier."""
    FAST = "fast"
    ACCURATE = "accurate"


class SimilarityMetric(str, Enum):
    """Descriptor comparison metric. Bound to one embedding source, never mixed."""
    EUCLIDEAN = "euclidean"
    COSINE = "cosine"


class DetectionProfile(BaseModel):
    """Detector parameters for one pass."""
    input_size: int = Field(..., gt=0, description="Detector input resolution")
    score_threshold: float = Field(..., ge=0.0, le=1.0, description="Minimum detection score")
    max_faces: int = Field(..., ge=1, description="Maximum detections kept per frame")


class MatchResult(BaseModel):
    """Outcome of one gallery query."""
    recognized: bool
    identity_id: Optional[str] = None
    score: float = Field(0.0, description="Confidence: 1 - distance (euclidean) or similarity (cosine)")
    distance: Optional[float] = Field(None, description="Raw metric value of the best candidate")
    metric: SimilarityMetric


class TrackingDecision(BaseModel):
    """Tracker verdict for one detection."""
    stable_id: str
    needs_processing: bool
    state: TrackState


class DetectionOutcome(BaseModel):
    """Per-face result of processing one frame."""
    stable_id: Optional[str] = None
    bounding_box: BoundingBox
    detection_confidence: float
    recognized: bool = False
    identity_id: Optional[str] = None
    confidence: float = 0.0
    status: AttendanceStatus = AttendanceStatus.UNAUTHORIZED
    reprocessed: bool = Field(True, description="False when the result was reused from tracking")
    error: Optional[str] = None


class FrameResult(BaseModel):
    """Structured result of processing one frame."""
    mode: RecognitionMode
    tier: ModelTier
    face_count: int = Field(0, description="Faces found by the detector before capping")
    outcomes: List[DetectionOutcome] = Field(default_factory=list)
    processing_time_ms: float = 0.0

    @property
    def recognized(self) -> List[DetectionOutcome]:
        return [o for o in self.outcomes if o.recognized]

    @property
    def unrecognized(self) -> List[DetectionOutcome]:
        return [o for o in self.outcomes if not o.recognized]

    @property
    def best(self) -> Optional[DetectionOutcome]:
        """Highest-confidence detection, the dominant face in single mode."""
        if not self.outcomes:
            return None
        return max(self.outcomes, key=lambda o: o.detection_confidence)
