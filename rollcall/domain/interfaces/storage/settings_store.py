"""Key/value settings store interface."""
from abc import ABC, abstractmethod
from typing import Optional


class SettingsStore(ABC):
    """Persistent key/value settings (cutoff time and the like)."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Get a setting's raw value.

        Raises:
            PersistenceError: If the store cannot be read
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """
        Insert or update a setting.

        Raises:
            PersistenceError: If the write fails
        """
        pass
