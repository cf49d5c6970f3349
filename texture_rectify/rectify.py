"""Resample a source image through a homography into a square raster."""

from __future__ import annotations

import logging
import time
from typing import Sequence, Union

import cv2
import numpy as np

from texture_rectify.errors import InvalidInput

logger = logging.getLogger(__name__)

MIN_OUTPUT_SIZE = 8


def warp_to_square(
    image: np.ndarray,
    H: np.ndarray,
    output_size: int,
    border_value: Union[int, Sequence[int]] = 0,
) -> np.ndarray:
    """Warp ``image`` into an ``output_size`` x ``output_size`` raster.

    Every destination pixel is mapped back through the inverse of ``H`` and
    sampled bicubically; source coordinates outside the image read as
    ``border_value``. The source array is not modified.

    Args:
        image: Source image (grayscale, BGR or BGRA)
        H: 3x3 homography from source to destination pixel coordinates
        output_size: Side of the square output in pixels
        border_value: Constant used outside the source image

    Returns:
        New array of shape (output_size, output_size[, channels])
    """
    if int(output_size) < MIN_OUTPUT_SIZE:
        raise InvalidInput(f"Output size must be at least {MIN_OUTPUT_SIZE}, got {output_size}")
    H = np.asarray(H, dtype=np.float64)
    if H.shape != (3, 3):
        raise InvalidInput(f"Expected 3x3 homography, got shape {H.shape}")

    output_size = int(output_size)
    if np.isscalar(border_value):
        channels = 1 if image.ndim == 2 else image.shape[2]
        # Opaque border for images with alpha
        border = (border_value,) * min(channels, 3) + ((255,) if channels == 4 else ())
    else:
        border = tuple(border_value)

    start_time = time.perf_counter()
    warped = cv2.warpPerspective(
        image, H, (output_size, output_size),
        flags=cv2.INTER_CUBIC,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=border,
    )
    logger.debug(
        f"Warped {image.shape[1]}x{image.shape[0]} -> {output_size}x{output_size} "
        f"(elapsed time: {time.perf_counter() - start_time:.3f}s)"
    )
    return warped
