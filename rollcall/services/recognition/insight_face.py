"""
InsightFace implementation of the detection and embedding capability.

Two model packs back the two tiers: a small pack for live preview and a large
pack for captures and batch passes. Inference is CPU bound and runs in a worker
thread so the scheduling loop keeps sampling frames.

Example:
    ```python
    detector = InsightFaceDetector()
    await detector.load(ModelTier.ACCURATE)
    detections = await detector.detect_and_embed(image, ModelTier.ACCURATE, profile)
    ```

Note:
    Embeddings are L2-normalized and meant for cosine comparison. Pair this
    detector with a cosine ``SimilarityIndex``.
"""
import asyncio
from typing import Dict, List, Optional, Tuple

import numpy as np
from insightface.app import FaceAnalysis
from insightface.app.common import Face as InsightFace

from rollcall.core.config import settings
from rollcall.core.exceptions import InvalidImageError, ModelUnavailableError
from rollcall.core.logging import get_logger
from rollcall.core.utils.image import crop_region
from rollcall.domain.entities.face import BoundingBox, Detection
from rollcall.domain.interfaces.recognition.face_detector import FaceDetector
from rollcall.domain.value_objects.recognition import DetectionProfile, ModelTier, SimilarityMetric

logger = get_logger(__name__)

# Extra context around a box before re-detecting inside it, as a fraction of its size
EMBED_MARGIN = 0.25


class InsightFaceDetector(FaceDetector):
    """
    Face detection and embedding backed by InsightFace ``FaceAnalysis``.

    Attributes:
        model_names: InsightFace model pack per tier
        default_sizes: Detector input size each tier is prepared with at load
    """

    metric = SimilarityMetric.COSINE

    def __init__(
        self,
        model_names: Optional[Dict[ModelTier, str]] = None,
        providers: Optional[List[str]] = None,
        root: Optional[str] = None,
    ) -> None:
        self.model_names = model_names or {
            ModelTier.FAST: settings.FAST_MODEL_NAME,
            ModelTier.ACCURATE: settings.ACCURATE_MODEL_NAME,
        }
        self.default_sizes = {
            ModelTier.FAST: settings.PREVIEW_INPUT_SIZE,
            ModelTier.ACCURATE: settings.CAPTURE_INPUT_SIZE,
        }
        self.providers = providers or settings.model_providers
        self.root = root or settings.MODEL_CACHE_DIR
        self._models: Dict[ModelTier, FaceAnalysis] = {}
        self._prepared: Dict[ModelTier, Tuple[int, float]] = {}
        # prepare() and inference on one tier never overlap
        self._locks: Dict[ModelTier, asyncio.Lock] = {}

    async def load(self, tier: ModelTier) -> None:
        name = self.model_names[tier]
        logger.info("Loading InsightFace model", tier=tier.value, model=name, providers=self.providers)
        try:
            model = await asyncio.to_thread(self._build, name, self.default_sizes[tier])
        except Exception as e:
            logger.error("InsightFace model load failed", tier=tier.value, model=name, error=str(e))
            raise ModelUnavailableError(
                f"Failed to load InsightFace model '{name}': {e}",
                details={"model": name, "tier": tier.value}
            ) from e
        self._models[tier] = model
        self._prepared[tier] = (self.default_sizes[tier], 0.5)

    def is_loaded(self, tier: ModelTier) -> bool:
        return tier in self._models

    async def detect(
        self,
        image: np.ndarray,
        tier: ModelTier,
        profile: DetectionProfile,
    ) -> List[Detection]:
        """Boxes, scores and landmarks only; no embeddings."""
        self._validate(image)
        async with self._lock(tier):
            model = self._prepare(tier, profile)
            bboxes, kpss = await asyncio.to_thread(
                model.det_model.detect, image, max_num=profile.max_faces
            )

        detections = []
        for i, bbox in enumerate(bboxes):
            score = float(bbox[4])
            if score < profile.score_threshold:
                continue
            landmarks = kpss[i] if kpss is not None else None
            detections.append(self._to_detection(bbox[:4], score, landmarks, None))

        logger.debug("Detected faces", tier=tier.value, faces_found=len(detections))
        return detections[:profile.max_faces]

    async def detect_and_embed(
        self,
        image: np.ndarray,
        tier: ModelTier,
        profile: DetectionProfile,
    ) -> List[Detection]:
        """Single ``FaceAnalysis.get`` call producing boxes and embeddings together."""
        self._validate(image)
        async with self._lock(tier):
            model = self._prepare(tier, profile)
            faces: List[InsightFace] = await asyncio.to_thread(model.get, image, max_num=profile.max_faces)

        detections = [
            self._to_detection(face.bbox, float(face.det_score), face.kps, face.normed_embedding)
            for face in faces
            if float(face.det_score) >= profile.score_threshold
        ]
        logger.debug(
            "Detected faces with embeddings",
            tier=tier.value,
            faces_found=len(faces),
            kept=len(detections)
        )
        return detections[:profile.max_faces]

    async def embed(self, image: np.ndarray, box: BoundingBox) -> np.ndarray:
        """Re-detect inside the (padded) box and return the face's normed embedding.

        Raises:
            InvalidImageError: If no face is found inside the box
        """
        tier = ModelTier.ACCURATE if self.is_loaded(ModelTier.ACCURATE) else ModelTier.FAST
        model = self._require(tier)
        padded = BoundingBox(
            x=box.x - box.width * EMBED_MARGIN,
            y=box.y - box.height * EMBED_MARGIN,
            width=box.width * (1 + 2 * EMBED_MARGIN),
            height=box.height * (1 + 2 * EMBED_MARGIN)
        )
        crop = crop_region(image, padded)
        if crop.size == 0:
            raise InvalidImageError("Face region lies outside the image")

        async with self._lock(tier):
            faces: List[InsightFace] = await asyncio.to_thread(model.get, crop, max_num=1)
        if not faces:
            raise InvalidImageError("No face found inside the region")
        return np.asarray(faces[0].normed_embedding, dtype=np.float32)

    def _build(self, name: str, det_size: int) -> FaceAnalysis:
        model = FaceAnalysis(name=name, root=self.root, providers=self.providers)
        # Detection size affects accuracy significantly
        model.prepare(ctx_id=0, det_size=(det_size, det_size))
        return model

    def _lock(self, tier: ModelTier) -> asyncio.Lock:
        # created on first use, inside the running loop
        lock = self._locks.get(tier)
        if lock is None:
            lock = self._locks[tier] = asyncio.Lock()
        return lock

    def _require(self, tier: ModelTier) -> FaceAnalysis:
        model = self._models.get(tier)
        if model is None:
            raise ModelUnavailableError(
                f"Model tier '{tier.value}' is not loaded",
                details={"tier": tier.value}
            )
        return model

    def _prepare(self, tier: ModelTier, profile: DetectionProfile) -> FaceAnalysis:
        model = self._require(tier)
        wanted = (profile.input_size, profile.score_threshold)
        if self._prepared.get(tier) != wanted:
            model.prepare(
                ctx_id=0,
                det_thresh=profile.score_threshold,
                det_size=(profile.input_size, profile.input_size)
            )
            self._prepared[tier] = wanted
        return model

    @staticmethod
    def _validate(image: np.ndarray) -> None:
        if image is None or image.ndim != 3 or image.size == 0:
            raise InvalidImageError("Expected a non-empty BGR image")

    @staticmethod
    def _to_detection(
        bbox: np.ndarray,
        score: float,
        kps: Optional[np.ndarray],
        embedding: Optional[np.ndarray],
    ) -> Detection:
        x1, y1, x2, y2 = (float(v) for v in bbox[:4])
        return Detection(
            bounding_box=BoundingBox(x=x1, y=y1, width=max(0.0, x2 - x1), height=max(0.0, y2 - y1)),
            confidence=score,
            embedding=embedding,
            landmarks=[(float(p[0]), float(p[1])) for p in kps] if kps is not None else None
        )
