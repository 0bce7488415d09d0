"""Core face domain entities."""
from enum import Enum
from typing import List, Optional, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_vector(v: Optional[Union[np.ndarray, list, tuple]]) -> Optional[np.ndarray]:
    if v is None:
        return None
    return np.asarray(v, dtype=np.float32).reshape(-1)


class BoundingBox(BaseModel):
    """Face bounding box in pixel coordinates of the source frame."""
    x: float = Field(..., description="Left edge in pixels")
    y: float = Field(..., description="Top edge in pixels")
    width: float = Field(..., ge=0, description="Width in pixels")
    height: float = Field(..., ge=0, description="Height in pixels")

    def offset_to(self, other: "BoundingBox") -> float:
        """Summed absolute x/y delta between the two boxes' top-left corners."""
        return abs(self.x - other.x) + abs(self.y - other.y)

    def translate(self, dx: float, dy: float) -> "BoundingBox":
        return BoundingBox(x=self.x + dx, y=self.y + dy, width=self.width, height=self.height)

    def scale(self, factor: float) -> "BoundingBox":
        return BoundingBox(
            x=self.x * factor,
            y=self.y * factor,
            width=self.width * factor,
            height=self.height * factor
        )


class Detection(BaseModel):
    """One face found in one frame. Transient: discarded after the frame is processed."""
    bounding_box: BoundingBox = Field(..., description="Bounding box coordinates")
    confidence: float = Field(..., description="Detector confidence score (0-1)")
    embedding: Optional[np.ndarray] = Field(None, description="Face embedding vector")
    landmarks: Optional[List[Tuple[float, float]]] = Field(None, description="Facial landmark points")

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("embedding", mode="before")
    @classmethod
    def validate_embedding(cls, v: Optional[Union[np.ndarray, list]]) -> Optional[np.ndarray]:
        """Validate and convert embedding to a flat float32 array."""
        return _as_vector(v)


class FaceDescriptor(BaseModel):
    """An enrolled identity's descriptor. Immutable once created."""
    identity_id: str = Field(..., min_length=1, description="Owning identity")
    vector: np.ndarray = Field(..., description="Fixed-length descriptor vector")
    name: Optional[str] = Field(None, description="Display name")
    image_ref: Optional[str] = Field(None, description="Reference to the enrollment image")

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    @field_validator("vector", mode="before")
    @classmethod
    def validate_vector(cls, v: Union[np.ndarray, list]) -> np.ndarray:
        vector = _as_vector(v)
        if vector is None or vector.size == 0:
            raise ValueError("Descriptor vector must not be empty")
        if not np.all(np.isfinite(vector)):
            raise ValueError("Descriptor vector contains non-finite values")
        return vector

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])


class TrackState(str, Enum):
    """Lifecycle of a tracked face. Evicted faces are removed rather than flagged."""
    NEW = "new"
    ACTIVE = "active"
    STALE = "stale"


class TrackedFace(BaseModel):
    """The tracker's memory of a face seen in previous frames.

    ``descriptor``/``bounding_box``/``last_seen`` follow every observation and are
    used for correlation. The ``processed_*`` fields snapshot the observation that
    last went through matching and decide when the face needs processing again.
    """
    tracking_id: str
    descriptor: np.ndarray
    bounding_box: BoundingBox
    first_seen: float
    last_seen: float
    processed_descriptor: np.ndarray
    processed_box: BoundingBox
    processed_at: float
    state: TrackState = TrackState.NEW
    observations: int = 1
    recognized: Optional[bool] = None
    identity_id: Optional[str] = None
    match_score: Optional[float] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)
