"""OpenCV-backed camera source."""
import asyncio
from typing import Optional, Union

import cv2
import numpy as np

from rollcall.core.exceptions import CameraUnavailableError
from rollcall.core.logging import get_logger
from rollcall.domain.interfaces.recognition.frame_source import FrameSource

logger = get_logger(__name__)


class OpenCVFrameSource(FrameSource):
    """Reads frames from a local device index or a stream URL via ``cv2.VideoCapture``."""

    def __init__(
        self,
        device: Union[int, str] = 0,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> None:
        self.device = device
        self.width = width
        self.height = height
        self._capture: Optional[cv2.VideoCapture] = None

    @property
    def is_open(self) -> bool:
        return self._capture is not None and self._capture.isOpened()

    async def open(self) -> None:
        if self.is_open:
            return
        capture = await asyncio.to_thread(cv2.VideoCapture, self.device)
        if not capture.isOpened():
            capture.release()
            raise CameraUnavailableError(
                f"Unable to open camera {self.device!r}",
                details={"device": self.device}
            )
        if self.width:
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        if self.height:
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._capture = capture
        logger.info("Camera opened", device=self.device)

    async def read(self) -> np.ndarray:
        if not self.is_open:
            raise CameraUnavailableError("Camera is not open", details={"device": self.device})
        ok, frame = await asyncio.to_thread(self._capture.read)
        if not ok or frame is None:
            raise CameraUnavailableError("Failed to read frame from camera", details={"device": self.device})
        return frame

    async def release(self) -> None:
        capture, self._capture = self._capture, None
        if capture is not None:
            await asyncio.to_thread(capture.release)
            logger.info("Camera released", device=self.device)
