"""Boundary fallback detection.

Finds the outline of the printed template directly, for photos whose
markers are missing or unreadable. Three classical strategies are tried in
order, each on the same edge map:

1. Hough lines: the outermost near-vertical and near-horizontal lines,
   intersected pairwise.
2. Contours: the largest polygon covering at least a few percent of the
   image, reduced to four points.
3. Harris corners on a contrast-boosted copy: the convex hull of the strong
   responses, reduced to four points.

The first strategy producing a plausible quadrilateral wins.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import cv2
import numpy as np

from texture_rectify.config import DEFAULT_CONFIG
from texture_rectify.errors import BoundaryNotFound
from texture_rectify.geometry import order_corners, quad_area
from texture_rectify.markers import to_gray

logger = logging.getLogger(__name__)

DebugCallback = Callable[[str, np.ndarray], None]


def boost_brightness_for_detection(
    image: np.ndarray, gamma: float = 0.5, contrast: float = 1.5
) -> np.ndarray:
    """Gamma lookup ``(i/255)^(1/gamma)`` followed by a saturating contrast gain.

    Only used on the detection copy, never on the rectified output.
    """
    lookup_table = np.array(
        [((i / 255.0) ** (1.0 / gamma)) * 255 for i in range(256)]
    ).astype(np.uint8)
    boosted = cv2.LUT(image, lookup_table)
    return cv2.convertScaleAbs(boosted, alpha=contrast, beta=0)


def edge_map(gray: np.ndarray, config: Dict[str, Any]) -> np.ndarray:
    """Blur, Canny and close small gaps in the edges."""
    k = int(config["blur_kernel"]) | 1
    blurred = cv2.GaussianBlur(gray, (k, k), 0)
    edges = cv2.Canny(blurred, config["canny_low"], config["canny_high"], apertureSize=3)
    kernel = np.ones((3, 3), np.uint8)
    return cv2.morphologyEx(
        edges, cv2.MORPH_CLOSE, kernel, iterations=int(config["close_iterations"])
    )


def _intersect(line1: np.ndarray, line2: np.ndarray) -> Optional[np.ndarray]:
    """Intersection of two lines in Hough normal form (rho, theta)."""
    rho1, theta1 = line1
    rho2, theta2 = line2
    A = np.array([
        [np.cos(theta1), np.sin(theta1)],
        [np.cos(theta2), np.sin(theta2)]
    ])
    if abs(np.linalg.det(A)) < 1e-10:
        return None
    return np.linalg.solve(A, np.array([rho1, rho2]))


def _outermost_lines(lines: List[np.ndarray], tolerance: float) -> List[np.ndarray]:
    """Strongest line near each end of a family ordered by rho.

    ``lines`` must be in HoughLines order (most votes first). Nearby lines
    with slightly different angles are the same edge, so within ``tolerance``
    of the smallest and largest rho the best supported one is taken.
    """
    rhos = [line[0] for line in lines]
    low, high = min(rhos), max(rhos)
    first = next(line for line in lines if line[0] <= low + tolerance)
    last = next(line for line in lines if line[0] >= high - tolerance)
    return [first, last]


def find_square_with_hough_lines(
    edges: np.ndarray, config: Dict[str, Any]
) -> Optional[np.ndarray]:
    """Intersect the outermost vertical and horizontal Hough lines.

    Args:
        edges: Binary edge map
        config: Boundary configuration

    Returns:
        4x2 ordered corners or None
    """
    height, width = edges.shape[:2]
    lines = cv2.HoughLines(edges, 1, np.pi / 180, int(config["hough_threshold"]))
    if lines is None or len(lines) == 0:
        return None

    vertical: List[np.ndarray] = []
    horizontal: List[np.ndarray] = []
    for rho, theta in lines.reshape(-1, 2):
        # A normal near 0 or pi means a near-vertical line
        if theta < np.pi / 4 or abs(theta - np.pi) < np.pi / 4:
            if theta > np.pi / 2:
                # Same line with theta in (-pi/4, pi/4], so rho is its x offset
                rho, theta = -rho, theta - np.pi
            vertical.append(np.array([rho, theta]))
        elif abs(theta - np.pi / 2) < np.pi / 4:
            horizontal.append(np.array([rho, theta]))

    logger.debug(
        f"Hough: {len(lines)} lines, {len(vertical)} vertical, {len(horizontal)} horizontal"
    )
    if len(vertical) < 2 or len(horizontal) < 2:
        return None

    tolerance = config["line_cluster_rate"] * max(height, width)
    extremes_v = _outermost_lines(vertical, tolerance)
    extremes_h = _outermost_lines(horizontal, tolerance)

    corners = []
    for h_line in extremes_h:
        for v_line in extremes_v:
            point = _intersect(h_line, v_line)
            if point is None:
                continue
            x, y = point
            if 0 <= x < width and 0 <= y < height:
                corners.append(point)

    if len(corners) != 4:
        return None
    return order_corners(np.array(corners))


def find_square_with_contours(
    edges: np.ndarray, config: Dict[str, Any]
) -> Optional[np.ndarray]:
    """Reduce the largest sizeable contour to a quadrilateral.

    Args:
        edges: Binary edge map
        config: Boundary configuration

    Returns:
        4x2 ordered corners or None
    """
    contours, _ = cv2.findContours(edges, cv2.RETR_TREE, cv2.CHAIN_APPROX_SIMPLE)
    if not contours:
        return None

    min_area = config["min_area_rate"] * edges.shape[0] * edges.shape[1]
    candidates = []
    for contour in contours:
        area = cv2.contourArea(contour)
        if area < min_area:
            continue

        peri = cv2.arcLength(contour, True)
        approx = cv2.approxPolyDP(contour, config["approx_epsilon_rate"] * peri, True)

        if len(approx) == 4:
            candidates.append((area, approx.reshape(4, 2).astype(np.float32)))
        elif len(approx) > 4:
            box = cv2.boxPoints(cv2.minAreaRect(contour))
            candidates.append((area, box.astype(np.float32)))

    logger.debug(f"Contours: {len(contours)} found, {len(candidates)} candidates")
    if not candidates:
        return None

    candidates.sort(key=lambda c: c[0], reverse=True)
    return order_corners(candidates[0][1])


def find_square_with_harris(
    gray: np.ndarray, config: Dict[str, Any]
) -> Optional[np.ndarray]:
    """Hull of strong Harris corner responses, approximated to four points.

    Args:
        gray: Grayscale (brightness-boosted) image
        config: Boundary configuration

    Returns:
        4x2 ordered corners or None
    """
    response = cv2.cornerHarris(
        np.float32(gray),
        int(config["harris_block_size"]),
        int(config["harris_ksize"]),
        float(config["harris_k"]),
    )
    response = cv2.dilate(response, np.ones((3, 3), np.uint8))

    max_response = float(response.max())
    if max_response <= 0:
        return None

    ys, xs = np.nonzero(response > config["harris_threshold_rate"] * max_response)
    logger.debug(f"Harris: {len(xs)} strong corner pixels")
    if len(xs) < 4:
        return None

    points = np.stack([xs, ys], axis=1).astype(np.int32).reshape(-1, 1, 2)
    hull = cv2.convexHull(points)
    if len(hull) < 4:
        return None

    peri = cv2.arcLength(hull, True)
    approx = cv2.approxPolyDP(hull, config["approx_epsilon_rate"] * peri, True)
    if len(approx) != 4:
        return None
    return order_corners(approx.reshape(4, 2))


def detect_boundary(
    image: np.ndarray,
    config: Optional[Dict[str, Any]] = None,
    debug: Optional[DebugCallback] = None,
) -> np.ndarray:
    """Find the four corners of the template outline without markers.

    Args:
        image: Grayscale, BGR or BGRA uint8 image
        config: Optional boundary config, uses DEFAULT_CONFIG["boundary"] for
            missing keys
        debug: Optional callback receiving (step_name, image) for each stage

    Returns:
        4x2 float32 corners ordered TL, TR, BR, BL

    Raises:
        BoundaryNotFound: If no strategy finds a plausible quadrilateral
    """
    cfg = dict(DEFAULT_CONFIG["boundary"])
    if config:
        cfg.update(config)

    start_time = time.perf_counter()
    gray = to_gray(image)
    min_area = cfg["min_area_rate"] * gray.shape[0] * gray.shape[1]

    boosted = boost_brightness_for_detection(gray, cfg["gamma"], cfg["contrast"])
    edges = edge_map(gray, cfg)
    if debug is not None:
        debug("boundary_boosted", boosted)
        debug("boundary_edges", edges)

    strategies = [
        ("hough_lines", lambda: find_square_with_hough_lines(edges, cfg)),
        ("contours", lambda: find_square_with_contours(edges, cfg)),
        ("harris", lambda: find_square_with_harris(boosted, cfg)),
    ]

    for name, strategy in strategies:
        corners = strategy()
        if corners is None:
            logger.debug(f"Boundary strategy {name}: no quadrilateral")
            continue
        area = quad_area(corners)
        if area < min_area:
            logger.debug(
                f"Boundary strategy {name}: quadrilateral too small ({area:.0f} < {min_area:.0f} px)"
            )
            continue

        elapsed_time = time.perf_counter() - start_time
        logger.info(
            f"Boundary found with {name}: "
            + ", ".join(f"({x:.1f}, {y:.1f})" for x, y in corners)
            + f" (elapsed time: {elapsed_time:.3f}s)"
        )
        return corners.astype(np.float32)

    raise BoundaryNotFound("No boundary strategy found a plausible quadrilateral")
