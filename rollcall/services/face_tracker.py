"""
Per-source face tracking that decides which detections need matching.

A detection is correlated with an existing tracked face when both its
descriptor distance and its top-left offset are small; the first tracked face
(in creation order) satisfying both wins. Within one frame a tracked face is
claimed by at most one detection. A tracked face needs processing again when its
descriptor or position drifted from the last processed observation or the last
processing is older than the refresh interval. Faces unseen for longer than the
inactivity timeout are evicted.

One tracker instance belongs to one video source. It is mutated from a single
scheduling context and holds no locks.
"""
import itertools
from typing import Dict, Iterable, List, Optional, Set, Tuple

import numpy as np

from rollcall.core.config import settings
from rollcall.core.logging import get_logger
from rollcall.domain.entities.face import BoundingBox, TrackedFace, TrackState
from rollcall.domain.value_objects.recognition import MatchResult, TrackingDecision

logger = get_logger(__name__)

Observation = Tuple[np.ndarray, BoundingBox]


def descriptor_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Euclidean distance, or infinity for descriptors of different length."""
    if a.shape != b.shape:
        return float("inf")
    return float(np.linalg.norm(a.astype(np.float64) - b.astype(np.float64)))


class FaceTracker:
    """Assigns stable ids to detections across frames.

    Example:
        ```python
        tracker = FaceTracker()
        decisions = tracker.observe_frame([(descriptor, box)], now=time.monotonic())
        if decisions[0].needs_processing:
            ...
        ```
    """

    def __init__(
        self,
        correlation_distance: Optional[float] = None,
        correlation_pixels: Optional[float] = None,
        reprocess_distance: Optional[float] = None,
        reprocess_pixels: Optional[float] = None,
        refresh_seconds: Optional[float] = None,
        inactivity_timeout: Optional[float] = None,
    ) -> None:
        self.correlation_distance = _pick(correlation_distance, settings.TRACK_CORRELATION_DISTANCE)
        self.correlation_pixels = _pick(correlation_pixels, settings.TRACK_CORRELATION_PIXELS)
        self.reprocess_distance = _pick(reprocess_distance, settings.TRACK_REPROCESS_DISTANCE)
        self.reprocess_pixels = _pick(reprocess_pixels, settings.TRACK_REPROCESS_PIXELS)
        self.refresh_seconds = _pick(refresh_seconds, settings.TRACK_REFRESH_SECONDS)
        self.inactivity_timeout = _pick(inactivity_timeout, settings.TRACK_INACTIVITY_TIMEOUT)

        self._faces: Dict[str, TrackedFace] = {}
        self._counter = itertools.count(1)

    def __len__(self) -> int:
        return len(self._faces)

    def __contains__(self, tracking_id: object) -> bool:
        return tracking_id in self._faces

    def get(self, tracking_id: str) -> Optional[TrackedFace]:
        return self._faces.get(tracking_id)

    def observe(
        self,
        descriptor: np.ndarray,
        box: BoundingBox,
        now: float,
        candidate_id_hint: Optional[str] = None,
    ) -> TrackingDecision:
        """Record one detection and decide whether it needs matching.

        Args:
            descriptor: The detection's embedding
            box: The detection's bounding box
            now: Monotonic timestamp in seconds
            candidate_id_hint: Tracking id the caller believes this is; used
                when it is still tracked

        Returns:
            TrackingDecision with the stable id and the processing verdict
        """
        self.evict_expired(now)
        return self._observe(descriptor, box, now, candidate_id_hint, claimed=set())

    def observe_frame(self, observations: Iterable[Observation], now: float) -> List[TrackingDecision]:
        """Observe every detection of one frame, in detector order.

        A tracked face is matched to at most one detection of the frame; later
        detections that would correlate with an already claimed face start
        their own track.
        """
        self.evict_expired(now)
        claimed: Set[str] = set()
        return [self._observe(descriptor, box, now, None, claimed) for descriptor, box in observations]

    def annotate(self, tracking_id: str, match: MatchResult) -> None:
        """Remember the latest match result of a tracked face."""
        face = self._faces.get(tracking_id)
        if face is None:
            return
        face.recognized = match.recognized
        face.identity_id = match.identity_id
        face.match_score = match.score

    def evict_expired(self, now: float) -> List[str]:
        """Drop faces unseen for longer than the inactivity timeout; mark idle ones stale.

        Returns:
            Tracking ids that were evicted
        """
        evicted = []
        for tracking_id, face in list(self._faces.items()):
            idle = now - face.last_seen
            if idle > self.inactivity_timeout:
                del self._faces[tracking_id]
                evicted.append(tracking_id)
            elif idle > self.refresh_seconds:
                face.state = TrackState.STALE

        if evicted:
            logger.debug("Evicted tracked faces", tracking_ids=evicted, remaining=len(self._faces))
        return evicted

    def active_faces(self, now: float) -> List[TrackedFace]:
        """Tracked faces seen within the inactivity timeout."""
        return [f for f in self._faces.values() if now - f.last_seen <= self.inactivity_timeout]

    def stats(self, now: Optional[float] = None) -> Dict[str, int]:
        faces = list(self._faces.values())
        active = faces if now is None else self.active_faces(now)
        return {
            "total_tracked_faces": len(faces),
            "active_faces": len(active),
            "recognized_faces": sum(1 for f in faces if f.recognized),
        }

    def snapshot(self) -> Dict[str, TrackedFace]:
        """Deep copy of the tracked faces, for rolling back a failed pass."""
        return {tid: face.model_copy(deep=True) for tid, face in self._faces.items()}

    def restore(self, snapshot: Dict[str, TrackedFace]) -> None:
        self._faces = {tid: face.model_copy(deep=True) for tid, face in snapshot.items()}

    def reset(self) -> None:
        """Forget every tracked face and restart id numbering."""
        self._faces.clear()
        self._counter = itertools.count(1)

    def _observe(
        self,
        descriptor: np.ndarray,
        box: BoundingBox,
        now: float,
        candidate_id_hint: Optional[str],
        claimed: Set[str],
    ) -> TrackingDecision:
        vector = np.asarray(descriptor, dtype=np.float32).reshape(-1)

        face = None
        if candidate_id_hint is not None and candidate_id_hint not in claimed:
            face = self._faces.get(candidate_id_hint)
        if face is None:
            face = self._correlate(vector, box, claimed)

        if face is None:
            face = self._create(vector, box, now)
            claimed.add(face.tracking_id)
            return TrackingDecision(stable_id=face.tracking_id, needs_processing=True, state=TrackState.NEW)

        claimed.add(face.tracking_id)
        needs_processing = (
            descriptor_distance(face.processed_descriptor, vector) > self.reprocess_distance
            or face.processed_box.offset_to(box) > self.reprocess_pixels
            or now - face.processed_at > self.refresh_seconds
        )

        face.descriptor = vector
        face.bounding_box = box
        face.last_seen = now
        face.observations += 1
        face.state = TrackState.ACTIVE
        if needs_processing:
            face.processed_descriptor = vector
            face.processed_box = box
            face.processed_at = now

        return TrackingDecision(
            stable_id=face.tracking_id,
            needs_processing=needs_processing,
            state=face.state
        )

    def _correlate(self, vector: np.ndarray, box: BoundingBox, claimed: Set[str]) -> Optional[TrackedFace]:
        for tracking_id, face in self._faces.items():
            if tracking_id in claimed:
                continue
            if (
                descriptor_distance(face.descriptor, vector) < self.correlation_distance
                and face.bounding_box.offset_to(box) < self.correlation_pixels
            ):
                return face
        return None

    def _create(self, vector: np.ndarray, box: BoundingBox, now: float) -> TrackedFace:
        tracking_id = f"face_{next(self._counter)}"
        face = TrackedFace(
            tracking_id=tracking_id,
            descriptor=vector,
            bounding_box=box,
            first_seen=now,
            last_seen=now,
            processed_descriptor=vector,
            processed_box=box,
            processed_at=now,
        )
        self._faces[tracking_id] = face
        logger.debug("Tracking new face", tracking_id=tracking_id, tracked=len(self._faces))
        return face


def _pick(value: Optional[float], default: float) -> float:
    return default if value is None else value
