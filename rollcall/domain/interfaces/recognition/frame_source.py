"""Video frame source interface."""
from abc import ABC, abstractmethod

import numpy as np


class FrameSource(ABC):
    """A camera or stream the capture session samples frames from."""

    @abstractmethod
    async def open(self) -> None:
        """
        Acquire the underlying media handle.

        Raises:
            CameraUnavailableError: If the device cannot be opened
        """
        pass

    @abstractmethod
    async def read(self) -> np.ndarray:
        """
        Read the current frame.

        Raises:
            CameraUnavailableError: If no frame can be read
        """
        pass

    @abstractmethod
    async def release(self) -> None:
        """Release the media handle. Safe to call more than once."""
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass
