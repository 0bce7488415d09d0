"""Recognition, tracking and attendance services."""
from .alert_rules import AlertRuleEngine, default_rules
from .attendance_decider import AttendanceDecider, decide_status
from .capture_session import CaptureSession
from .cutoff import CutoffService
from .detection_scheduler import DetectionScheduler
from .event_feed import AttendanceEventFeed
from .face_tracker import FaceTracker
from .gallery import GalleryService
from .model_loader import LoaderState, ModelLoader
from .recognition_engine import RecognitionEngine
from .similarity_index import SimilarityIndex

__all__ = [
    "AlertRuleEngine",
    "AttendanceDecider",
    "AttendanceEventFeed",
    "CaptureSession",
    "CutoffService",
    "DetectionScheduler",
    "FaceTracker",
    "GalleryService",
    "LoaderState",
    "ModelLoader",
    "RecognitionEngine",
    "SimilarityIndex",
    "decide_status",
    "default_rules",
]
