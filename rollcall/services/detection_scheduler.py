"""
Decides when and where the detector runs.

Three throttles cut detector load on a live feed: frame skipping, a short-lived
detection cache keyed by source and time bucket, and a region of interest around
the last known face. Model tiers and detection profiles are picked here too.
"""
import math
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from rollcall.core.config import settings
from rollcall.core.logging import get_logger
from rollcall.domain.entities.face import BoundingBox
from rollcall.domain.value_objects.recognition import DetectionProfile, ModelTier, RecognitionMode

logger = get_logger(__name__)


def video_cache_key(now: Optional[float] = None, bucket_ms: Optional[int] = None) -> str:
    """Cache key for a live video frame: one key per time bucket."""
    now = time.time() if now is None else now
    bucket_ms = bucket_ms or settings.VIDEO_CACHE_BUCKET_MS
    return f"video_{math.floor(now * 1000 / bucket_ms)}"


def image_cache_key(source_id: str) -> str:
    """Cache key for a still image identified by its source reference."""
    return f"image_{source_id}"


class DetectionScheduler:
    """
    Frame-skip, caching and region-of-interest policy for one video source.

    Attributes:
        frame_skip: Run detection on one frame out of this many
        cache_ttl: Seconds a cached detection result stays valid
    """

    def __init__(
        self,
        frame_skip: Optional[int] = None,
        cache_ttl: Optional[float] = None,
        roi_padding: Optional[int] = None,
        roi_center_ratio: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.frame_skip = max(1, frame_skip if frame_skip is not None else settings.FRAME_SKIP_COUNT)
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.DETECTION_CACHE_TTL
        self.roi_padding = roi_padding if roi_padding is not None else settings.ROI_PADDING
        self.roi_center_ratio = roi_center_ratio if roi_center_ratio is not None else settings.ROI_CENTER_RATIO
        self._clock = clock

        self._frame_counter = 0
        self._cache: Dict[str, Tuple[float, Any]] = {}
        self._hits = 0
        self._misses = 0
        self._skipped = 0

    def should_process(self, frame_index: Optional[int] = None, capture: bool = False) -> bool:
        """Whether detection should run on this frame.

        Capture requests are never skipped. Without an explicit ``frame_index``
        an internal counter is advanced and the frame is processed when the
        counter is a multiple of ``frame_skip``.
        """
        if capture:
            return True
        if frame_index is None:
            self._frame_counter += 1
            frame_index = self._frame_counter
        process = frame_index % self.frame_skip == 0
        if not process:
            self._skipped += 1
        return process

    async def get_or_compute(
        self,
        cache_key: str,
        compute_fn: Callable[[], Awaitable[Any]],
        now: Optional[float] = None,
    ) -> Any:
        """Return the cached result for ``cache_key`` or compute and cache it.

        An entry is valid while its age is strictly below ``cache_ttl``.
        Failures are not cached.
        """
        now = self._clock() if now is None else now
        self._purge(now)

        entry = self._cache.get(cache_key)
        if entry is not None:
            self._hits += 1
            return entry[1]

        self._misses += 1
        result = await compute_fn()
        self._cache[cache_key] = (now, result)
        return result

    def detection_region(
        self,
        frame_width: int,
        frame_height: int,
        last_box: Optional[BoundingBox] = None,
    ) -> BoundingBox:
        """Region the detector should look at.

        Around the last known face (padded, clipped to the frame) when there is
        one, otherwise a centered window covering ``roi_center_ratio`` of each
        side.
        """
        if last_box is not None:
            x1 = max(0.0, last_box.x - self.roi_padding)
            y1 = max(0.0, last_box.y - self.roi_padding)
            x2 = min(float(frame_width), last_box.x + last_box.width + self.roi_padding)
            y2 = min(float(frame_height), last_box.y + last_box.height + self.roi_padding)
            if x2 > x1 and y2 > y1:
                return BoundingBox(x=x1, y=y1, width=x2 - x1, height=y2 - y1)

        width = frame_width * self.roi_center_ratio
        height = frame_height * self.roi_center_ratio
        return BoundingBox(
            x=(frame_width - width) / 2,
            y=(frame_height - height) / 2,
            width=width,
            height=height
        )

    @staticmethod
    def select_tier(capture: bool) -> ModelTier:
        """Fast tier for live preview, accurate tier for captures and batch passes."""
        return ModelTier.ACCURATE if capture else ModelTier.FAST

    @staticmethod
    def resolve_mode(mode: RecognitionMode, max_faces: Optional[int] = None) -> RecognitionMode:
        """Upgrade to classroom mode when many faces are expected."""
        if max_faces is not None and max_faces > settings.CLASSROOM_FACE_THRESHOLD:
            return RecognitionMode.CLASSROOM
        return mode

    @classmethod
    def profile_for(
        cls,
        mode: RecognitionMode,
        tier: ModelTier,
        max_faces: Optional[int] = None,
    ) -> DetectionProfile:
        """Detector parameters for a pass in ``mode`` on ``tier``."""
        mode = cls.resolve_mode(mode, max_faces)
        cap = min(max_faces or settings.MAX_FACES_PER_FRAME, settings.MAX_FACES_PER_FRAME)

        if mode == RecognitionMode.CLASSROOM:
            return DetectionProfile(
                input_size=settings.CLASSROOM_INPUT_SIZE,
                score_threshold=settings.CLASSROOM_SCORE_THRESHOLD,
                max_faces=cap
            )
        if tier == ModelTier.FAST:
            return DetectionProfile(
                input_size=settings.PREVIEW_INPUT_SIZE,
                score_threshold=settings.PREVIEW_SCORE_THRESHOLD,
                max_faces=cap
            )
        return DetectionProfile(
            input_size=settings.CAPTURE_INPUT_SIZE,
            score_threshold=settings.CAPTURE_SCORE_THRESHOLD,
            max_faces=cap
        )

    def stats(self) -> Dict[str, int]:
        return {
            "frames_seen": self._frame_counter,
            "frames_skipped": self._skipped,
            "cache_entries": len(self._cache),
            "cache_hits": self._hits,
            "cache_misses": self._misses,
        }

    def reset(self) -> None:
        self._frame_counter = 0
        self._cache.clear()
        self._hits = 0
        self._misses = 0
        self._skipped = 0

    def _purge(self, now: float) -> None:
        expired = [key for key, (stored_at, _) in self._cache.items() if now - stored_at >= self.cache_ttl]
        for key in expired:
            del self._cache[key]
