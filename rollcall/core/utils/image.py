"""
Image processing utility functions.
"""
import math
from typing import Tuple

import cv2
import numpy as np

from rollcall.core.exceptions import InvalidImageError
from rollcall.domain.entities.face import BoundingBox


def bytes_to_numpy_array(image_bytes: bytes, flags: int = cv2.IMREAD_COLOR) -> np.ndarray:
    """Convert image bytes to a numpy array.

    Args:
        image_bytes: Raw image bytes
        flags: OpenCV imread flags (default: COLOR)

    Returns:
        numpy.ndarray: Image as a numpy array

    Raises:
        InvalidImageError: If the image cannot be decoded
    """
    np_array = np.frombuffer(image_bytes, np.uint8)
    img = cv2.imdecode(np_array, flags)

    if img is None:
        raise InvalidImageError("Failed to decode image bytes")

    return img


def limit_image_size(image: np.ndarray, max_pixels: int) -> Tuple[np.ndarray, float]:
    """Downscale an image so it holds at most ``max_pixels`` pixels.

    Returns:
        The (possibly resized) image and the scale factor that was applied
    """
    height, width = image.shape[:2]
    pixels = width * height
    if pixels <= max_pixels:
        return image, 1.0

    scale = math.sqrt(max_pixels / pixels)
    resized = cv2.resize(
        image,
        (int(width * scale), int(height * scale)),
        interpolation=cv2.INTER_AREA
    )
    return resized, scale


def crop_region(image: np.ndarray, region: BoundingBox) -> np.ndarray:
    """Crop a pixel-space region out of an image, clipped to its bounds."""
    height, width = image.shape[:2]
    x1 = max(0, int(region.x))
    y1 = max(0, int(region.y))
    x2 = min(width, int(math.ceil(region.x + region.width)))
    y2 = min(height, int(math.ceil(region.y + region.height)))
    return image[y1:y2, x1:x2]
