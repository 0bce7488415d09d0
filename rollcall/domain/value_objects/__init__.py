"""Value objects package."""
from .attendance import (
    AlertContext,
    BatchAttendanceResult,
    CaptureResult,
    Notification,
    PendingWrite,
    RecordOutcome,
    TriggeredAlert,
)
from .recognition import (
    DetectionOutcome,
    DetectionProfile,
    FrameResult,
    MatchResult,
    ModelTier,
    RecognitionMode,
    SimilarityMetric,
    TrackingDecision,
)

__all__ = [
    "AlertContext",
    "BatchAttendanceResult",
    "CaptureResult",
    "DetectionOutcome",
    "DetectionProfile",
    "FrameResult",
    "MatchResult",
    "ModelTier",
    "Notification",
    "PendingWrite",
    "RecognitionMode",
    "RecordOutcome",
    "SimilarityMetric",
    "TrackingDecision",
    "TriggeredAlert",
]
