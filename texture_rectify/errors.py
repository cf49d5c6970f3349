"""Exceptions raised by the rectification pipeline.

Every geometric stage raises one of these on failure; photometric
normalisation never raises. All of them derive from ``RectifyError`` so a
caller can handle "no processing possible" in one place.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence


class RectifyError(Exception):
    """Base class for all rectification failures."""


class InvalidInput(RectifyError, ValueError):
    """The image, corners or output size cannot be processed."""


class NoMarkersFound(RectifyError):
    """Marker detection returned no decodable markers."""


class IdentificationFailed(RectifyError):
    """Markers were found but no registered model reached quorum."""

    def __init__(self, message: str, detected_ids: Optional[Iterable[int]] = None):
        super().__init__(message)
        self.detected_ids = sorted(detected_ids or [])


class IncompleteCorners(RectifyError):
    """Fewer than four canonical corners could be resolved."""

    def __init__(self, message: str, missing: Sequence[str] = ()):
        super().__init__(message)
        self.missing = list(missing)


class BoundaryNotFound(RectifyError):
    """Every boundary fallback stage failed to produce a quadrilateral."""
