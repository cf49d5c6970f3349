"""Render printable texture templates.

A template is a square sheet with the model's four markers in its corners:
``base_id`` top-left, ``base_id + 1`` top-right, ``base_id + 2``
bottom-right and ``base_id + 3`` bottom-left, all upright. The rectified
texture spans from the outer corner of the top-left marker to the outer
corner of the bottom-right one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from texture_rectify.dictionary import MarkerDictionary, get_dictionary
from texture_rectify.identify import MARKERS_PER_MODEL

logger = logging.getLogger(__name__)


@dataclass
class TemplateLayout:
    """A rendered template and where its canonical corners are."""

    image: np.ndarray
    corners: np.ndarray  # 4x2, TL, TR, BR, BL in pixel-centre coordinates
    marker_side: int
    base_id: int


def render_template(
    base_id: int = 0,
    size: int = 2048,
    marker_fraction: float = 0.12,
    margin_fraction: float = 0.04,
    background: int = 255,
    dictionary: Optional[MarkerDictionary] = None,
    area_fill: Optional[int] = 250,
) -> TemplateLayout:
    """Render a grayscale template sheet for one model.

    Args:
        base_id: First marker ID of the model
        size: Side of the sheet in pixels
        marker_fraction: Marker side as a fraction of the sheet side
        margin_fraction: Blank margin around the markers as a fraction of the sheet
        background: Gray level of the sheet
        dictionary: Marker dictionary; the shared default if None
        area_fill: Gray level of the texture area between the markers, or
            None to leave it as background. Keep it within a few levels of
            the background so the area edge never thresholds as ink.

    Returns:
        The rendered layout
    """
    dictionary = dictionary or get_dictionary()
    if base_id < 0 or base_id + MARKERS_PER_MODEL > len(dictionary):
        raise ValueError(
            f"Base ID {base_id} needs markers up to {base_id + MARKERS_PER_MODEL - 1}, "
            f"dictionary has {len(dictionary)}"
        )

    n_cells = dictionary.marker_size + 2
    cell_px = max(1, int(round(size * marker_fraction / n_cells)))
    marker_side = cell_px * n_cells
    margin = int(round(size * margin_fraction))
    if 2 * (margin + marker_side) >= size:
        raise ValueError(f"Markers and margins do not fit in a {size}px template")

    sheet = np.full((size, size), background, dtype=np.uint8)
    far = size - margin - marker_side

    # Top-left pixel of each marker: TL, TR, BR, BL
    origins = [(margin, margin), (far, margin), (far, far), (margin, far)]

    if area_fill is not None:
        sheet[margin:size - margin, margin:size - margin] = area_fill

    for offset, (x0, y0) in enumerate(origins):
        marker = dictionary.render(base_id + offset, cell_px)
        sheet[y0:y0 + marker_side, x0:x0 + marker_side] = marker

    # Outer marker corners, on pixel edges
    lo = margin - 0.5
    hi = size - margin - 0.5
    corners = np.array([[lo, lo], [hi, lo], [hi, hi], [lo, hi]], dtype=np.float64)

    logger.debug(
        f"Rendered template base_id={base_id}: size={size}, marker_side={marker_side}, "
        f"margin={margin}"
    )
    return TemplateLayout(sheet, corners, marker_side, base_id)
