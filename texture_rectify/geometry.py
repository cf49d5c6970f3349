"""Planar geometry for rectification.

This module maps detected markers to the four canonical template corners,
solves the perspective transform (homography) from four correspondences
with the direct linear transform, and orders loose corner sets found by the
boundary fallback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
from scipy import linalg

from texture_rectify.errors import IncompleteCorners, InvalidInput

logger = logging.getLogger(__name__)

CORNER_NAMES = ("top_left", "top_right", "bottom_right", "bottom_left")


@dataclass(frozen=True)
class CornerSet:
    """The four source points of a template, in canonical order."""

    top_left: np.ndarray
    top_right: np.ndarray
    bottom_right: np.ndarray
    bottom_left: np.ndarray

    @classmethod
    def from_array(cls, pts: np.ndarray) -> "CornerSet":
        """Build a corner set from a 4x2 array ordered TL, TR, BR, BL."""
        pts = np.asarray(pts, dtype=np.float64)
        if pts.shape != (4, 2):
            raise InvalidInput(f"Expected 4x2 corner array, got shape {pts.shape}")
        return cls(*(pts[i].copy() for i in range(4)))

    def as_array(self) -> np.ndarray:
        """Return the corners as a 4x2 float64 array ordered TL, TR, BR, BL."""
        return np.array(
            [self.top_left, self.top_right, self.bottom_right, self.bottom_left],
            dtype=np.float64,
        )


def resolve_corners(markers: Iterable, base_id: int) -> CornerSet:
    """Pick the canonical template corners from detected markers.

    The marker ``base_id + k`` sits at canonical position ``k`` (TL, TR, BR,
    BL) and contributes its own corner ``k``: the top-left marker gives its
    top-left corner, the top-right marker its top-right corner, and so on.
    Markers outside the range are ignored.

    Args:
        markers: Detected markers with ``id`` and 4x2 ``corners``
        base_id: First marker ID of the identified template

    Returns:
        Complete corner set

    Raises:
        IncompleteCorners: If any of the four positions has no marker
    """
    points: Dict[str, np.ndarray] = {}
    for marker in markers:
        offset = int(marker.id) - base_id
        if not 0 <= offset < 4:
            continue
        name = CORNER_NAMES[offset]
        if name in points:
            continue
        points[name] = np.asarray(marker.corners, dtype=np.float64)[offset]
        logger.debug(
            f"Marker {marker.id} ({name}): corner[{offset}] at "
            f"({points[name][0]:.1f}, {points[name][1]:.1f})"
        )

    missing = [name for name in CORNER_NAMES if name not in points]
    if missing:
        raise IncompleteCorners(
            f"Could not resolve {len(missing)} corner(s): {', '.join(missing)}",
            missing=missing,
        )

    return CornerSet(**points)


def destination_corners(width: int, height: Optional[int] = None) -> np.ndarray:
    """Corners of the output raster: (0,0), (W-1,0), (W-1,H-1), (0,H-1)."""
    if height is None:
        height = width
    return np.array(
        [[0, 0], [width - 1, 0], [width - 1, height - 1], [0, height - 1]],
        dtype=np.float64,
    )


def normalize_points(pts: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Normalize points using Hartley's method.

    Applies isotropic scaling to 2D points so they have zero mean and
    average distance of sqrt(2) from the origin.

    Args:
        pts: Nx2 array of 2D points

    Returns:
        Tuple of (normalized_points, transformation_matrix)
    """
    pts = np.asarray(pts, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] != 2:
        raise ValueError(f"Expected Nx2 points array, got shape {pts.shape}")

    centroid = np.mean(pts, axis=0)
    centered_pts = pts - centroid

    # Scale factor to achieve sqrt(2) average distance
    avg_distance = np.mean(np.sqrt(np.sum(centered_pts**2, axis=1)))
    scale = np.sqrt(2) / avg_distance if avg_distance > 0 else 1.0

    T = np.array([
        [scale, 0, -scale * centroid[0]],
        [0, scale, -scale * centroid[1]],
        [0, 0, 1]
    ])

    normalized_pts = centered_pts * scale
    return normalized_pts, T


def _check_not_degenerate(pts: np.ndarray, label: str) -> None:
    """Reject point quadruples in which any three points are collinear."""
    scale = max(float(np.ptp(pts, axis=0).max()), 1e-12)
    for i in range(4):
        a, b, c = np.delete(pts, i, axis=0)
        doubled_area = abs((b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0]))
        if doubled_area < 1e-9 * scale * scale:
            raise InvalidInput(f"Degenerate {label} points: three of them are collinear")


def solve_homography(src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """Solve the 3x3 perspective transform mapping ``src`` onto ``dst``.

    Direct linear transform with h33 fixed to 1: each correspondence
    contributes two rows of an 8x8 linear system, solved by LU decomposition.
    Points are Hartley-normalized first for conditioning.

    Args:
        src: 4x2 source points
        dst: 4x2 destination points

    Returns:
        3x3 homography H with dst ~ H @ src (homogeneous)
    """
    src = np.asarray(src, dtype=np.float64)
    dst = np.asarray(dst, dtype=np.float64)
    if src.shape != (4, 2) or dst.shape != (4, 2):
        raise InvalidInput(
            f"Expected two 4x2 point arrays, got shapes {src.shape} and {dst.shape}"
        )
    _check_not_degenerate(src, "source")
    _check_not_degenerate(dst, "destination")

    norm_src, T_src = normalize_points(src)
    norm_dst, T_dst = normalize_points(dst)

    # Two equations per correspondence in the unknowns h11..h32
    A = np.zeros((8, 8))
    b = np.zeros(8)
    for i in range(4):
        x, y = norm_src[i]
        u, v = norm_dst[i]
        A[2 * i] = [x, y, 1, 0, 0, 0, -u * x, -u * y]
        A[2 * i + 1] = [0, 0, 0, x, y, 1, -v * x, -v * y]
        b[2 * i] = u
        b[2 * i + 1] = v

    try:
        h = linalg.solve(A, b)
    except linalg.LinAlgError as e:
        raise InvalidInput(f"Corner correspondences are degenerate: {e}") from e

    H_norm = np.append(h, 1.0).reshape(3, 3)

    # Denormalize: H = T_dst^-1 @ H_norm @ T_src
    H = np.linalg.inv(T_dst) @ H_norm @ T_src
    H = H / H[2, 2]

    logger.debug(
        f"Homography: condition={np.linalg.cond(A):.2f}\n{np.array2string(H, precision=5)}"
    )
    return H


def apply_homography(H: np.ndarray, pts: np.ndarray) -> np.ndarray:
    """Map Nx2 points through a homography."""
    pts = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
    pts_homogeneous = np.hstack((pts, np.ones((pts.shape[0], 1))))
    mapped = (H @ pts_homogeneous.T).T
    return mapped[:, :2] / mapped[:, 2:3]


def order_corners(corners: np.ndarray) -> np.ndarray:
    """Order four loose corners as TL, TR, BR, BL.

    Corners are sorted by angle around their centroid. When the second
    point lies left of the fourth the direction is flipped, giving
    ``[p0, p3, p2, p1]``.

    Args:
        corners: 4x2 array of corner points in any order

    Returns:
        4x2 float32 array of ordered corners
    """
    corners = np.asarray(corners, dtype=np.float32).reshape(-1, 2)
    if corners.shape[0] != 4:
        raise ValueError(f"Expected 4 corners, got {corners.shape[0]}")

    center = corners.mean(axis=0)
    angles = np.arctan2(corners[:, 1] - center[1], corners[:, 0] - center[0])
    ordered = corners[np.argsort(angles, kind="stable")]

    if ordered[1, 0] < ordered[3, 0]:
        return ordered[[0, 3, 2, 1]]
    return ordered


def quad_area(corners: np.ndarray) -> float:
    """Area of a simple quadrilateral (shoelace formula)."""
    pts = np.asarray(corners, dtype=np.float64).reshape(-1, 2)
    x, y = pts[:, 0], pts[:, 1]
    return float(0.5 * abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))))


def corner_errors(H: np.ndarray, src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """Per-correspondence distance between ``H @ src`` and ``dst``."""
    return np.linalg.norm(apply_homography(H, src) - np.asarray(dst, dtype=np.float64), axis=1)


def as_corner_list(corners: np.ndarray) -> List[Tuple[float, float]]:
    """Convert a 4x2 array to a JSON-friendly list of (x, y) tuples."""
    return [(float(x), float(y)) for x, y in np.asarray(corners).reshape(-1, 2)]
