"""Face detection and embedding capability interface."""
from abc import ABC, abstractmethod
from typing import List

import numpy as np

from ...entities.face import BoundingBox, Detection
from ...value_objects.recognition import DetectionProfile, ModelTier, SimilarityMetric


class FaceDetector(ABC):
    """Interface to a detection + embedding backend (local model or remote inference).

    Attributes:
        metric: Metric the backend's embeddings are meant to be compared with
    """

    metric: SimilarityMetric = SimilarityMetric.EUCLIDEAN

    @abstractmethod
    async def load(self, tier: ModelTier) -> None:
        """
        Load the model backing ``tier``. One attempt; retries belong to the caller.

        Raises:
            ModelUnavailableError: If the model cannot be loaded
        """
        pass

    @abstractmethod
    def is_loaded(self, tier: ModelTier) -> bool:
        """Whether ``tier`` is ready to serve calls."""
        pass

    @abstractmethod
    async def detect(
        self,
        image: np.ndarray,
        tier: ModelTier,
        profile: DetectionProfile,
    ) -> List[Detection]:
        """
        Detect faces in an image.

        Args:
            image: BGR image array
            tier: Which model tier to use
            profile: Input size, score threshold and face cap for this pass

        Returns:
            Detections in detector order, at most ``profile.max_faces``.
            Embeddings may be absent.
        """
        pass

    @abstractmethod
    async def embed(self, image: np.ndarray, box: BoundingBox) -> np.ndarray:
        """Compute the embedding of the face inside ``box``."""
        pass

    async def detect_and_embed(
        self,
        image: np.ndarray,
        tier: ModelTier,
        profile: DetectionProfile,
    ) -> List[Detection]:
        """
        Detect faces and make sure every detection carries an embedding.

        Backends that produce embeddings during detection should override this
        with a single combined call.
        """
        detections = await self.detect(image, tier, profile)
        completed = []
        for detection in detections:
            if detection.embedding is None:
                embedding = await self.embed(image, detection.bounding_box)
                detection = detection.model_copy(update={"embedding": np.asarray(embedding, dtype=np.float32)})
            completed.append(detection)
        return completed
