"""
In-memory gallery of enrolled descriptors with exhaustive nearest-neighbour search.

The gallery is read on every processed face and written only on enrollment
changes. Writers build a fresh matrix and swap it in under a lock; readers take
a consistent (ids, matrix) snapshot and scan it without holding the lock.

Example:
    ```python
    index = SimilarityIndex(metric=SimilarityMetric.EUCLIDEAN, threshold=0.6)
    index.add("alice", alice_vector)

    result = index.match(query_vector)
    if result.recognized:
        print(result.identity_id, result.score)
    ```
"""
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from rollcall.core.config import settings
from rollcall.core.exceptions import DimensionMismatchError
from rollcall.core.logging import get_logger
from rollcall.domain.entities.face import FaceDescriptor
from rollcall.domain.value_objects.recognition import MatchResult, SimilarityMetric

logger = get_logger(__name__)

Vector = Union[np.ndarray, Sequence[float]]


def default_threshold(metric: SimilarityMetric) -> float:
    """Configured threshold for ``metric``."""
    if metric == SimilarityMetric.COSINE:
        return settings.COSINE_THRESHOLD
    return settings.EUCLIDEAN_THRESHOLD


class SimilarityIndex:
    """
    Gallery of enrolled descriptors, one per identity.

    Euclidean matching accepts the nearest candidate when its distance is
    strictly below the threshold. Cosine matching accepts the most similar
    candidate when its similarity is at least the threshold. When several
    candidates share the best score the earliest enrolled one wins.

    Attributes:
        metric: Comparison metric bound to this gallery's embedding source
        threshold: Acceptance threshold for ``metric``
    """

    def __init__(
        self,
        metric: Optional[Union[SimilarityMetric, str]] = None,
        threshold: Optional[float] = None,
        dimension: Optional[int] = None,
    ) -> None:
        self.metric = SimilarityMetric(metric or settings.SIMILARITY_METRIC)
        self.threshold = threshold if threshold is not None else default_threshold(self.metric)
        self._fixed_dimension = dimension
        self._dimension = dimension
        self._lock = threading.RLock()
        self._descriptors: Dict[str, FaceDescriptor] = {}
        self._ids: List[str] = []
        self._matrix: Optional[np.ndarray] = None

    @property
    def dimension(self) -> Optional[int]:
        """Descriptor length every entry and query must have, once known."""
        return self._dimension

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, identity_id: object) -> bool:
        return identity_id in self._descriptors

    def identities(self) -> List[str]:
        with self._lock:
            return list(self._ids)

    def get(self, identity_id: str) -> Optional[FaceDescriptor]:
        with self._lock:
            return self._descriptors.get(identity_id)

    def add(
        self,
        identity_id: str,
        vector: Vector,
        *,
        name: Optional[str] = None,
        image_ref: Optional[str] = None,
    ) -> FaceDescriptor:
        """Enroll (or replace) an identity's descriptor.

        Raises:
            DimensionMismatchError: If the vector length differs from the gallery's
        """
        descriptor = FaceDescriptor(
            identity_id=identity_id,
            vector=vector,
            name=name,
            image_ref=image_ref
        )
        self.add_descriptor(descriptor)
        return descriptor

    def add_descriptor(self, descriptor: FaceDescriptor) -> None:
        """Enroll (or replace) a prepared descriptor."""
        with self._lock:
            expected = self._dimension
            if expected is not None and descriptor.dimension != expected:
                raise DimensionMismatchError(expected, descriptor.dimension)

            descriptors = dict(self._descriptors)
            descriptors[descriptor.identity_id] = descriptor
            self._swap(descriptors)

        logger.debug(
            "Enrolled descriptor",
            identity_id=descriptor.identity_id,
            gallery_size=len(self._ids)
        )

    def remove(self, identity_id: str) -> bool:
        """Remove an identity. Returns False if it was not enrolled."""
        with self._lock:
            if identity_id not in self._descriptors:
                return False
            descriptors = dict(self._descriptors)
            del descriptors[identity_id]
            self._swap(descriptors)

        logger.debug("Removed descriptor", identity_id=identity_id, gallery_size=len(self._ids))
        return True

    def load(self, descriptors: Iterable[FaceDescriptor]) -> int:
        """Replace the whole gallery.

        Descriptors whose length disagrees with the gallery dimension (the
        configured one, else the first descriptor's) are logged and skipped.

        Returns:
            Number of descriptors loaded
        """
        accepted: Dict[str, FaceDescriptor] = {}
        dimension = self._fixed_dimension
        for descriptor in descriptors:
            if dimension is None:
                dimension = descriptor.dimension
            if descriptor.dimension != dimension:
                logger.error(
                    "Skipping descriptor with wrong dimension",
                    identity_id=descriptor.identity_id,
                    expected=dimension,
                    actual=descriptor.dimension
                )
                continue
            accepted[descriptor.identity_id] = descriptor

        with self._lock:
            self._swap(accepted, dimension)

        logger.info("Gallery loaded", size=len(accepted), dimension=dimension, metric=self.metric.value)
        return len(accepted)

    def clear(self) -> None:
        with self._lock:
            self._swap({})

    def match(self, query: Vector) -> MatchResult:
        """Find the best enrolled identity for a query descriptor.

        Pure query: same gallery and query always give the same answer.

        Raises:
            DimensionMismatchError: If the query length differs from the gallery's
        """
        q = np.asarray(query, dtype=np.float64).reshape(-1)
        ids, matrix, dimension = self._snapshot()

        if dimension is not None and q.shape[0] != dimension:
            raise DimensionMismatchError(dimension, int(q.shape[0]))

        if matrix is None or not ids:
            return MatchResult(recognized=False, metric=self.metric)

        if self.metric == SimilarityMetric.COSINE:
            scores = self._cosine_similarities(matrix, q)
            best = int(np.argmax(scores))
            similarity = float(scores[best])
            recognized = similarity >= self.threshold
            return MatchResult(
                recognized=recognized,
                identity_id=ids[best] if recognized else None,
                score=similarity,
                distance=similarity,
                metric=self.metric
            )

        distances = np.linalg.norm(matrix - q, axis=1)
        best = int(np.argmin(distances))
        distance = float(distances[best])
        recognized = distance < self.threshold
        return MatchResult(
            recognized=recognized,
            identity_id=ids[best] if recognized else None,
            score=1.0 - distance,
            distance=distance,
            metric=self.metric
        )

    def describe(self) -> Dict[str, object]:
        with self._lock:
            return {
                "size": len(self._ids),
                "dimension": self._dimension,
                "metric": self.metric.value,
                "threshold": self.threshold,
            }

    @staticmethod
    def _cosine_similarities(matrix: np.ndarray, q: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
        dots = matrix @ q
        # zero vectors compare as dissimilar rather than NaN
        return np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

    def _snapshot(self) -> Tuple[List[str], Optional[np.ndarray], Optional[int]]:
        with self._lock:
            return self._ids, self._matrix, self._dimension

    def _swap(self, descriptors: Dict[str, FaceDescriptor], dimension: Optional[int] = None) -> None:
        # Caller holds the lock. Published arrays are never mutated afterwards.
        self._descriptors = descriptors
        self._ids = list(descriptors.keys())
        if descriptors:
            self._matrix = np.vstack([d.vector for d in descriptors.values()]).astype(np.float64)
            self._dimension = dimension or self._matrix.shape[1]
        else:
            self._matrix = None
            self._dimension = dimension if dimension is not None else self._fixed_dimension
