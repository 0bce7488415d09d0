"""Enrollment: keeps the persistent gallery and the in-memory index in step."""
from typing import Optional, Sequence, Union

import numpy as np

from rollcall.core.exceptions import DimensionMismatchError
from rollcall.core.logging import get_logger
from rollcall.domain.entities.face import FaceDescriptor
from rollcall.domain.interfaces.storage.gallery_store import GalleryStore
from rollcall.services.similarity_index import SimilarityIndex

logger = get_logger(__name__)


class GalleryService:
    """
    Enrolls and removes identities.

    Writes go to the store first so the index never holds an identity the store
    does not know about.
    """

    def __init__(self, store: GalleryStore, index: SimilarityIndex) -> None:
        self.store = store
        self.index = index

    async def enroll(
        self,
        identity_id: str,
        vector: Union[np.ndarray, Sequence[float]],
        name: Optional[str] = None,
        image_ref: Optional[str] = None,
    ) -> FaceDescriptor:
        """Enroll or replace an identity's descriptor.

        Raises:
            DimensionMismatchError: If the vector length differs from the gallery's
            PersistenceError: If the store rejects the write
        """
        descriptor = FaceDescriptor(identity_id=identity_id, vector=vector, name=name, image_ref=image_ref)
        dimension = self.index.dimension
        if dimension is not None and descriptor.dimension != dimension:
            raise DimensionMismatchError(dimension, descriptor.dimension)

        await self.store.upsert(descriptor)
        self.index.add_descriptor(descriptor)
        logger.info("Identity enrolled", identity_id=identity_id, dimension=descriptor.dimension)
        return descriptor

    async def deregister(self, identity_id: str) -> bool:
        """Remove an identity from store and index.

        Returns:
            True if the identity was known to either
        """
        deleted = await self.store.delete(identity_id)
        removed = self.index.remove(identity_id)
        if deleted or removed:
            logger.info("Identity deregistered", identity_id=identity_id)
        return deleted or removed

    async def refresh(self) -> int:
        """Reload the index from the store.

        Returns:
            Number of descriptors loaded
        """
        descriptors = await self.store.load_all()
        return self.index.load(descriptors)
