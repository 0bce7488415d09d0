"""Domain entities package."""
from .alerts import (
    ActionType,
    AlertAction,
    AlertCondition,
    AlertRule,
    AlertType,
    ConditionType,
    Operator,
    Priority,
)
from .attendance import AttendanceEvent, AttendanceStatus, CutoffTime
from .face import BoundingBox, Detection, FaceDescriptor, TrackedFace, TrackState

__all__ = [
    "ActionType",
    "AlertAction",
    "AlertCondition",
    "AlertRule",
    "AlertType",
    "AttendanceEvent",
    "AttendanceStatus",
    "BoundingBox",
    "ConditionType",
    "CutoffTime",
    "Detection",
    "FaceDescriptor",
    "Operator",
    "Priority",
    "TrackedFace",
    "TrackState",
]
