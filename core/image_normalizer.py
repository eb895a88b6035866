"""
Image Normalizer

Decodes an uploaded image buffer and bounds its size before face detection.
Images are only ever downscaled, never upscaled, and the aspect ratio is kept.

Usage:
    from core.image_normalizer import normalize

    raster = normalize(image_bytes)          # BGR uint8 (H, W, 3)
    raster = normalize(image_bytes, 400)     # longest side <= 400
"""

import logging
import math
from typing import Tuple

import cv2
import numpy as np

from core.errors import InvalidImage

logger = logging.getLogger(__name__)

DEFAULT_MAX_DIMENSION = 600


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def scaled_size(width: int, height: int, max_dimension: int = DEFAULT_MAX_DIMENSION) -> Tuple[int, int]:
    """
    Compute the normalized (width, height) for an image.

    The scale factor is min(max_dimension / width, max_dimension / height, 1).
    """
    ratio = min(max_dimension / width, max_dimension / height, 1.0)
    return (
        max(1, _round_half_up(width * ratio)),
        max(1, _round_half_up(height * ratio)),
    )


def decode_image(buffer: bytes) -> np.ndarray:
    """
    Decode image bytes into a 3-channel BGR array.

    Raises:
        InvalidImage: If the buffer is empty or not a decodable image.
    """
    if not buffer:
        raise InvalidImage("Empty buffer provided to image normalizer")

    np_arr = np.frombuffer(buffer, np.uint8)
    try:
        image = cv2.imdecode(np_arr, cv2.IMREAD_COLOR)
    except cv2.error as e:
        raise InvalidImage(f"Failed to process image: {e}") from e

    if image is None or image.size == 0:
        raise InvalidImage("Failed to process image: unsupported or corrupt image data")

    return image


def normalize(buffer: bytes, max_dimension: int = DEFAULT_MAX_DIMENSION) -> np.ndarray:
    """
    Decode and downscale an image.

    Args:
        buffer: Encoded image bytes (JPEG, PNG, ...).
        max_dimension: Upper bound for the longer side, in pixels.

    Returns:
        BGR uint8 array whose larger side is at most max_dimension.

    Raises:
        InvalidImage: If the buffer is empty or cannot be decoded.
    """
    if max_dimension <= 0:
        raise ValueError(f"max_dimension must be positive, got {max_dimension}")

    image = decode_image(buffer)
    height, width = image.shape[:2]
    new_width, new_height = scaled_size(width, height, max_dimension)

    if (new_width, new_height) == (width, height):
        return image

    logger.debug(f"Downscaling image {width}x{height} -> {new_width}x{new_height}")
    return cv2.resize(image, (new_width, new_height), interpolation=cv2.INTER_AREA)
