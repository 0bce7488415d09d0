"""
Frame-level recognition: detect, track, match and decide status.

This module wires the detection capability to the tracker and the similarity
index. Each processed detection yields a ``DetectionOutcome``; faces the tracker
already knows reuse their previous match instead of querying the index again.

Example:
    ```python
    engine = RecognitionEngine(detector, index)
    result = await engine.process_frame(frame, RecognitionMode.MULTIPLE)
    for outcome in result.recognized:
        print(outcome.stable_id, outcome.identity_id, outcome.status)
    ```
"""
import time
from datetime import datetime
from functools import partial
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from rollcall.core.config import settings
from rollcall.core.exceptions import DimensionMismatchError
from rollcall.core.logging import get_logger
from rollcall.core.utils.image import crop_region, limit_image_size
from rollcall.domain.entities.attendance import CutoffTime
from rollcall.domain.entities.face import BoundingBox, Detection
from rollcall.domain.interfaces.recognition.face_detector import FaceDetector
from rollcall.domain.value_objects.recognition import (
    DetectionOutcome,
    DetectionProfile,
    FrameResult,
    MatchResult,
    ModelTier,
    RecognitionMode,
)
from rollcall.services.attendance_decider import decide_status
from rollcall.services.cutoff import default_cutoff
from rollcall.services.detection_scheduler import DetectionScheduler
from rollcall.services.face_tracker import FaceTracker
from rollcall.services.model_loader import ModelLoader
from rollcall.services.similarity_index import SimilarityIndex

logger = get_logger(__name__)


class RecognitionEngine:
    """
    Processes frames for one video source.

    Attributes:
        detector: Detection and embedding capability
        index: Gallery the detections are matched against
        tracker: Per-source face tracker
        scheduler: Detection cache and profile policy
        loaders: One model loader per tier
    """

    def __init__(
        self,
        detector: FaceDetector,
        index: SimilarityIndex,
        tracker: Optional[FaceTracker] = None,
        scheduler: Optional[DetectionScheduler] = None,
        loaders: Optional[Dict[ModelTier, ModelLoader]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if index.metric != detector.metric:
            raise ValueError(
                f"Gallery metric '{index.metric.value}' does not match "
                f"detector metric '{detector.metric.value}'"
            )
        self.detector = detector
        self.index = index
        self.tracker = tracker or FaceTracker()
        self.scheduler = scheduler or DetectionScheduler()
        self.loaders = loaders or {
            tier: ModelLoader(tier.value, partial(detector.load, tier))
            for tier in ModelTier
        }
        self._clock = clock

    async def ensure_ready(self, tier: ModelTier) -> None:
        """Load ``tier`` if needed.

        Raises:
            ModelUnavailableError: If the model cannot be loaded
        """
        await self.loaders[tier].ensure_loaded()

    async def process_frame(
        self,
        frame: np.ndarray,
        mode: RecognitionMode = RecognitionMode.MULTIPLE,
        *,
        tier: ModelTier = ModelTier.ACCURATE,
        cutoff: Optional[CutoffTime] = None,
        at: Optional[datetime] = None,
        now: Optional[float] = None,
        region: Optional[BoundingBox] = None,
        cache_key: Optional[str] = None,
        enable_tracking: bool = True,
        max_faces: Optional[int] = None,
    ) -> FrameResult:
        """Detect, track and match every face of a frame.

        Single mode reports the face count and processes only the most
        confident detection. Multiple and classroom modes process up to the
        profile's face cap, in detector order.

        Args:
            frame: BGR image
            mode: Recognition mode
            tier: Model tier used for detection and embedding
            cutoff: Cutoff deciding present vs late; defaults to the configured one
            at: Wall-clock time of the frame, for status decisions
            now: Monotonic time of the frame, for tracking
            region: Restrict detection to this part of the frame
            cache_key: Reuse detections cached under this key
            enable_tracking: Skip the tracker and match every detection when False
            max_faces: Requested face cap

        Returns:
            FrameResult with one outcome per processed detection

        Raises:
            ModelUnavailableError: If the tier's model cannot be loaded
        """
        started = time.perf_counter()
        mode = self.scheduler.resolve_mode(mode, max_faces)
        profile = self.scheduler.profile_for(mode, tier, max_faces)
        cutoff = cutoff or default_cutoff()
        at = at or datetime.now()
        now = self._clock() if now is None else now

        await self.ensure_ready(tier)
        detections = await self._detect(frame, tier, profile, region, cache_key, embed=True)

        face_count = len(detections)
        if mode == RecognitionMode.SINGLE:
            selected = [max(detections, key=lambda d: d.confidence)] if detections else []
        else:
            selected = detections[:profile.max_faces]

        if enable_tracking:
            outcomes = self._process_tracked(selected, now)
        else:
            outcomes = [self._outcome(d, None, self._match(d)) for d in selected]

        for outcome in outcomes:
            outcome.status = decide_status(outcome.identity_id if outcome.recognized else None, at, cutoff)

        elapsed_ms = (time.perf_counter() - started) * 1000
        result = FrameResult(
            mode=mode,
            tier=tier,
            face_count=face_count,
            outcomes=outcomes,
            processing_time_ms=elapsed_ms
        )
        logger.info(
            "Processed frame",
            mode=mode.value,
            tier=tier.value,
            face_count=face_count,
            processed=sum(1 for o in outcomes if o.reprocessed),
            recognized=len(result.recognized),
            processing_time_ms=round(elapsed_ms, 1)
        )
        return result

    async def preview(
        self,
        frame: np.ndarray,
        *,
        region: Optional[BoundingBox] = None,
        cache_key: Optional[str] = None,
    ) -> FrameResult:
        """Fast detection only, for live feedback: boxes and a face count, no matching."""
        started = time.perf_counter()
        tier = ModelTier.FAST
        profile = self.scheduler.profile_for(RecognitionMode.MULTIPLE, tier)

        await self.ensure_ready(tier)
        detections = await self._detect(frame, tier, profile, region, cache_key, embed=False)

        outcomes = [
            DetectionOutcome(bounding_box=d.bounding_box, detection_confidence=d.confidence, reprocessed=False)
            for d in detections
        ]
        return FrameResult(
            mode=RecognitionMode.MULTIPLE,
            tier=tier,
            face_count=len(detections),
            outcomes=outcomes,
            processing_time_ms=(time.perf_counter() - started) * 1000
        )

    async def _detect(
        self,
        frame: np.ndarray,
        tier: ModelTier,
        profile: DetectionProfile,
        region: Optional[BoundingBox],
        cache_key: Optional[str],
        embed: bool,
    ) -> List[Detection]:
        image = crop_region(frame, region) if region is not None else frame
        image, scale = limit_image_size(image, settings.MAX_IMAGE_PIXELS)
        offset_x = region.x if region is not None else 0.0
        offset_y = region.y if region is not None else 0.0

        async def compute() -> List[Detection]:
            if embed:
                found = await self.detector.detect_and_embed(image, tier, profile)
            else:
                found = await self.detector.detect(image, tier, profile)
            return [self._to_frame_coordinates(d, scale, offset_x, offset_y) for d in found]

        if cache_key is None:
            return await compute()
        return await self.scheduler.get_or_compute(cache_key, compute)

    @staticmethod
    def _to_frame_coordinates(detection: Detection, scale: float, dx: float, dy: float) -> Detection:
        box = detection.bounding_box
        if scale != 1.0:
            box = box.scale(1.0 / scale)
        if dx or dy:
            box = box.translate(dx, dy)
        return detection.model_copy(update={"bounding_box": box})

    def _process_tracked(self, detections: List[Detection], now: float) -> List[DetectionOutcome]:
        trackable = [d for d in detections if d.embedding is not None]
        decisions = iter(self.tracker.observe_frame(
            [(d.embedding, d.bounding_box) for d in trackable],
            now
        ))

        outcomes = []
        for detection in detections:
            if detection.embedding is None:
                outcomes.append(self._outcome(detection, None, self._match(detection)))
                continue

            decision = next(decisions)
            face = self.tracker.get(decision.stable_id)
            if decision.needs_processing or face is None or face.recognized is None:
                match = self._match(detection)
                if match[1] is None:
                    self.tracker.annotate(decision.stable_id, match[0])
                outcomes.append(self._outcome(detection, decision.stable_id, match))
            else:
                outcomes.append(DetectionOutcome(
                    stable_id=decision.stable_id,
                    bounding_box=detection.bounding_box,
                    detection_confidence=detection.confidence,
                    recognized=bool(face.recognized),
                    identity_id=face.identity_id,
                    confidence=face.match_score or 0.0,
                    reprocessed=False
                ))
        return outcomes

    def _match(self, detection: Detection) -> Tuple[MatchResult, Optional[str]]:
        if detection.embedding is None:
            return MatchResult(recognized=False, metric=self.index.metric), "Detection has no embedding"
        try:
            return self.index.match(detection.embedding), None
        except DimensionMismatchError as e:
            logger.error(
                "Skipping detection with wrong descriptor dimension",
                expected=e.expected,
                actual=e.actual
            )
            return MatchResult(recognized=False, metric=self.index.metric), str(e)

    @staticmethod
    def _outcome(
        detection: Detection,
        stable_id: Optional[str],
        match: Tuple[MatchResult, Optional[str]],
    ) -> DetectionOutcome:
        result, error = match
        return DetectionOutcome(
            stable_id=stable_id,
            bounding_box=detection.bounding_box,
            detection_confidence=detection.confidence,
            recognized=result.recognized,
            identity_id=result.identity_id,
            confidence=result.score,
            reprocessed=True,
            error=error
        )
