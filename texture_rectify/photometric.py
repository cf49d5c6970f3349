"""Photometric normalization of rectified textures.

Two stages, both total functions over uint8 images:

1. White balance against the template's own border, which is printed near
   white, so the border band is scaled to a fixed target level per channel.
2. A fixed enhancement: brightness, contrast around mid-grey, HSV saturation
   and unsharp-mask sharpening.

Images are BGR / BGRA as used throughout OpenCV; an alpha channel passes
through untouched and grayscale images skip the saturation step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnhancementParameters:
    """Fixed photometric policy."""

    brightness: float = 0.95
    contrast: float = 1.1
    saturation: float = 1.05
    sharpness: float = 1.3
    blur_sigma: float = 2.0
    white_target: float = 240.0
    sample_border: int = 40
    min_sample_border: int = 5


DEFAULT_PARAMETERS = EnhancementParameters()


def _split_alpha(image: np.ndarray) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    if image.ndim == 3 and image.shape[2] == 4:
        return image[:, :, :3], image[:, :, 3:]
    return image, None


def _merge_alpha(color: np.ndarray, alpha: Optional[np.ndarray]) -> np.ndarray:
    if alpha is None:
        return color
    return np.concatenate([color, alpha], axis=2)


def border_width(height: int, width: int, sample_border: int = 40, minimum: int = 5) -> int:
    """Width of the sampled border band: at most a quarter of either side, at least ``minimum``."""
    return max(minimum, min(sample_border, height // 4, width // 4))


def border_mean(image: np.ndarray, border: int) -> np.ndarray:
    """Average colour of the four edge strips of an image.

    Each strip (top, bottom, left, right) is averaged first and the four
    strip means are then averaged with equal weight.

    Args:
        image: HxW or HxWxC image
        border: Strip width in pixels

    Returns:
        Array of per-channel means (length 1 for grayscale)
    """
    pixels = image.reshape(image.shape[0], image.shape[1], -1).astype(np.float64)
    strips = [
        pixels[:border, :],
        pixels[-border:, :],
        pixels[:, :border],
        pixels[:, -border:],
    ]
    return np.mean([strip.mean(axis=(0, 1)) for strip in strips], axis=0)


def white_balance_using_background(
    image: np.ndarray, params: EnhancementParameters = DEFAULT_PARAMETERS
) -> np.ndarray:
    """Scale each channel so the image border averages ``params.white_target``.

    Args:
        image: uint8 grayscale, BGR or BGRA image
        params: Photometric policy

    Returns:
        New white-balanced uint8 image of the same shape
    """
    color, alpha = _split_alpha(image)
    height, width = color.shape[:2]
    border = border_width(height, width, params.sample_border, params.min_sample_border)

    mean_bg = border_mean(color, border) + 1e-6
    scale = params.white_target / mean_bg

    logger.debug(
        f"White balance: border={border}px, mean={np.round(mean_bg, 1).tolist()}, "
        f"scale={np.round(scale, 4).tolist()}"
    )

    if color.ndim == 2:
        balanced = color.astype(np.float32) * np.float32(scale[0])
    else:
        balanced = color.astype(np.float32) * scale.astype(np.float32)

    balanced = np.clip(np.rint(balanced), 0, 255).astype(np.uint8)
    return _merge_alpha(balanced, alpha)


def enhance(
    image: np.ndarray, params: EnhancementParameters = DEFAULT_PARAMETERS
) -> np.ndarray:
    """Apply brightness, contrast, saturation and sharpness enhancement.

    Args:
        image: uint8 grayscale, BGR or BGRA image
        params: Photometric policy

    Returns:
        New enhanced uint8 image of the same shape
    """
    color, alpha = _split_alpha(image)

    # Brightness and contrast on [0, 1] floats
    values = color.astype(np.float32) / 255.0
    values = values * params.brightness
    values = (values - 0.5) * params.contrast + 0.5
    values = np.clip(values, 0.0, 1.0)

    # Saturation in HSV (float32 input gives S in [0, 1])
    if values.ndim == 3:
        hsv = cv2.cvtColor(values, cv2.COLOR_BGR2HSV)
        hsv[:, :, 1] = np.clip(hsv[:, :, 1] * params.saturation, 0.0, 1.0)
        values = cv2.cvtColor(hsv, cv2.COLOR_HSV2BGR)
        del hsv

    result = np.clip(np.rint(values * 255.0), 0, 255).astype(np.uint8)
    del values

    # Unsharp mask: result * (1 + w) - blurred * w
    weight = params.sharpness - 1.0
    if weight:
        blurred = cv2.GaussianBlur(result, (0, 0), params.blur_sigma)
        result = cv2.addWeighted(result, 1.0 + weight, blurred, -weight, 0)

    return _merge_alpha(result, alpha)


def normalize(
    image: np.ndarray, params: EnhancementParameters = DEFAULT_PARAMETERS
) -> np.ndarray:
    """White balance against the border, then enhance."""
    return enhance(white_balance_using_background(image, params), params)
