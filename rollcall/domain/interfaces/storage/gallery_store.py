"""Identity gallery store interface."""
from abc import ABC, abstractmethod
from typing import List

from ...entities.face import FaceDescriptor


class GalleryStore(ABC):
    """Persistent store of enrolled face descriptors."""

    @abstractmethod
    async def load_all(self) -> List[FaceDescriptor]:
        """
        Load every enrolled descriptor.

        Malformed rows are skipped by the implementation, not raised.

        Raises:
            PersistenceError: If the store cannot be read
        """
        pass

    @abstractmethod
    async def upsert(self, descriptor: FaceDescriptor) -> None:
        """
        Insert or replace the descriptor of ``descriptor.identity_id``.

        Raises:
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, identity_id: str) -> bool:
        """
        Remove an identity's descriptor.

        Returns:
            True if a descriptor was removed

        Raises:
            PersistenceError: If the write fails
        """
        pass
