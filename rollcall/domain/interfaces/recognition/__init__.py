"""Recognition capability interfaces."""
from .face_detector import FaceDetector
from .frame_source import FrameSource

__all__ = ["FaceDetector", "FrameSource"]
