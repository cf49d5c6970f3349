"""Visualization utilities for texture rectification.

This module provides overlays of detected markers and outlines, a debug
callback that dumps intermediate stages to disk, and matplotlib figures
comparing the photo with its rectified texture.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import cv2
import matplotlib.pyplot as plt
import numpy as np

logger = logging.getLogger(__name__)

CORNER_COLORS = [
    (0, 0, 255),    # TL red
    (0, 255, 0),    # TR green
    (255, 0, 0),    # BR blue
    (0, 255, 255),  # BL yellow
]


def _to_bgr(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    return image.copy()


def _line_scale(image: np.ndarray) -> int:
    return max(1, int(round(max(image.shape[:2]) / 500)))


def draw_quad(
    image: np.ndarray,
    corners: np.ndarray,
    color: Tuple[int, int, int] = (0, 255, 0),
    label: Optional[str] = None,
) -> np.ndarray:
    """Draw a closed quadrilateral with its corners colour-coded TL, TR, BR, BL.

    Args:
        image: Grayscale, BGR or BGRA image
        corners: 4x2 corners
        color: Outline colour (BGR)
        label: Optional text drawn next to the first corner

    Returns:
        New BGR image with the overlay
    """
    canvas = _to_bgr(image)
    thickness = _line_scale(canvas)
    pts = np.round(np.asarray(corners, dtype=np.float64)).astype(np.int32).reshape(-1, 1, 2)
    cv2.polylines(canvas, [pts], True, color, thickness)

    for i, (x, y) in enumerate(pts.reshape(-1, 2)):
        cv2.circle(canvas, (int(x), int(y)), 3 * thickness, CORNER_COLORS[i % 4], -1)

    if label:
        x, y = pts[0, 0]
        cv2.putText(
            canvas, label, (int(x), int(y) - 4 * thickness),
            cv2.FONT_HERSHEY_SIMPLEX, 0.4 * thickness, color, thickness,
        )
    return canvas


def draw_markers(image: np.ndarray, markers: Iterable) -> np.ndarray:
    """Outline each detected marker and label it with its ID.

    Args:
        image: Grayscale, BGR or BGRA image
        markers: Detected markers with ``id`` and ``corners``

    Returns:
        New BGR image with the overlay
    """
    canvas = _to_bgr(image)
    for marker in markers:
        canvas = draw_quad(canvas, marker.corners, (0, 255, 0), f"id={marker.id}")
    return canvas


class ImageDumper:
    """Debug callback that writes each pipeline stage as a numbered PNG.

    Pass an instance as the ``debug`` argument of ``rectify_texture``.
    """

    def __init__(self, output_dir: Union[str, Path], prefix: str = ""):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        self.paths: List[Path] = []

    def __call__(self, step: str, image: np.ndarray) -> None:
        name = f"{self.prefix}{len(self.paths):02d}_{step}.png"
        path = self.output_dir / name
        cv2.imwrite(str(path), image)
        self.paths.append(path)
        logger.debug(f"Saved debug stage {step} to {path}")


def save_stage_montage(
    stages: Sequence[Tuple[str, np.ndarray]],
    output_path: Union[str, Path],
    title: Optional[str] = None,
) -> None:
    """Save a side-by-side figure of named pipeline stages.

    Args:
        stages: (title, image) pairs, images in OpenCV channel order
        output_path: Path to save the figure
        title: Optional overall title
    """
    fig, axs = plt.subplots(1, len(stages), figsize=(6 * len(stages), 6), squeeze=False)

    for ax, (name, image) in zip(axs[0], stages):
        if image.ndim == 2:
            ax.imshow(image, cmap="gray", vmin=0, vmax=255)
        elif image.shape[2] == 4:
            ax.imshow(cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA))
        else:
            ax.imshow(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))
        ax.set_title(name)
        ax.axis("off")

    if title:
        fig.suptitle(title, fontsize=16)
        plt.tight_layout(rect=[0, 0, 1, 0.96])
    else:
        plt.tight_layout()

    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)

    logger.info(f"Stage montage saved to {output_path}")


def save_rectification_visualization(
    photo: np.ndarray, result, output_path: Union[str, Path]
) -> None:
    """Photo with the source outline next to the rectified texture."""
    overlay = draw_quad(photo, result.corners, (0, 255, 0), result.method)
    if result.markers:
        overlay = draw_markers(overlay, result.markers)

    title = f"Rectified with {result.method}"
    if result.model_id is not None:
        title += f" (model {result.model_id})"
    save_stage_montage(
        [("Source", overlay), ("Rectified", result.image)], output_path, title
    )
