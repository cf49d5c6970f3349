"""Texture rectification from photos of printed marker templates.

Turns an angled photo of a printed template with fiducial markers in its
corners into a flat, colour-corrected square texture, with a marker-free
boundary fallback.
"""

from __future__ import annotations

__version__ = "0.1.0"

from texture_rectify.errors import (
    BoundaryNotFound,
    IdentificationFailed,
    IncompleteCorners,
    InvalidInput,
    NoMarkersFound,
    RectifyError,
)
from texture_rectify.identify import ModelMarkerRange
from texture_rectify.markers import ArucoMarkerDetector, DetectedMarker
from texture_rectify.pipeline import (
    RectifiedTexture,
    cover_resize,
    rectify_by_boundary,
    rectify_texture,
    rectify_with_corners,
)
from texture_rectify.template import render_template
