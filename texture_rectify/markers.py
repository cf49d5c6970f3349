"""Fiducial marker detection.

Finds square marker candidates in a raster image, samples their cells, and
decodes them against a ``MarkerDictionary``. Returned corners are always in
the marker's authored orientation (corner 0 = the marker's own top-left,
then clockwise), whatever the rotation of the print in the photo.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple

import cv2
import numpy as np

from texture_rectify.config import DEFAULT_CONFIG
from texture_rectify.dictionary import MarkerDictionary, get_dictionary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectedMarker:
    """A decoded marker and its four corners in source pixel space."""

    id: int
    corners: np.ndarray  # 4x2 float32: TL, TR, BR, BL of the marker itself

    @property
    def center(self) -> np.ndarray:
        return self.corners.mean(axis=0)

    @property
    def perimeter(self) -> float:
        return float(cv2.arcLength(self.corners.reshape(-1, 1, 2), True))


class MarkerDetector(Protocol):
    """Anything that turns an image into decoded markers."""

    def detect(self, image: np.ndarray) -> List[DetectedMarker]:
        ...


def to_gray(image: np.ndarray) -> np.ndarray:
    """Convert a BGR, BGRA or grayscale uint8 image to grayscale."""
    if image.ndim == 2:
        return image
    if image.shape[2] == 1:
        return image[:, :, 0]
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def _clockwise(quad: np.ndarray) -> np.ndarray:
    """Reorder a 4x2 quad so it runs clockwise in image (y-down) space."""
    d1 = quad[1] - quad[0]
    d2 = quad[2] - quad[0]
    if d1[0] * d2[1] - d1[1] * d2[0] < 0:
        return quad[[0, 3, 2, 1]]
    return quad


class ArucoMarkerDetector:
    """Contour-based square marker detector with dictionary decoding."""

    def __init__(
        self,
        dictionary: Optional[MarkerDictionary] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        """Initialize marker detector.

        Args:
            dictionary: Marker dictionary; the shared default if None
            config: Optional config dict, uses DEFAULT_CONFIG["markers"] for
                missing keys
        """
        self.config = dict(DEFAULT_CONFIG["markers"])
        if config:
            self.config.update(config)
        self.dictionary = dictionary or get_dictionary(
            self.config["dictionary"], self.config["error_correction_rate"]
        )

    def detect(self, image: np.ndarray) -> List[DetectedMarker]:
        """Detect and decode all markers in an image.

        Args:
            image: Grayscale, BGR or BGRA uint8 image

        Returns:
            List of detected markers, possibly empty
        """
        start_time = time.perf_counter()
        gray = to_gray(image)

        candidates = self.find_candidates(gray)

        decoded: Dict[int, Tuple[DetectedMarker, float]] = {}
        for quad in candidates:
            match = self.decode_candidate(gray, quad)
            if match is None:
                continue
            marker_id, rotation = match

            # Bring corner 0 back to the marker's authored top-left
            corners = np.roll(quad, -rotation, axis=0).astype(np.float32)
            area = float(cv2.contourArea(corners))

            # A marker seen twice keeps its larger outline
            if marker_id in decoded and decoded[marker_id][1] >= area:
                continue
            decoded[marker_id] = (DetectedMarker(marker_id, corners), area)

        markers = [decoded[marker_id][0] for marker_id in sorted(decoded)]
        if markers and self.config["refine_corners"]:
            markers = self._refine_corners(gray, markers)

        elapsed_time = time.perf_counter() - start_time
        logger.info(
            f"Detected {len(markers)} markers from {len(candidates)} candidates "
            f"(elapsed time: {elapsed_time:.3f}s)"
        )
        for marker in markers:
            logger.debug(
                f"Marker {marker.id}: corners="
                + ", ".join(f"({x:.1f}, {y:.1f})" for x, y in marker.corners)
            )

        return markers

    def find_candidates(self, gray: np.ndarray) -> List[np.ndarray]:
        """Find convex quadrilateral contours that could be markers.

        Args:
            gray: Grayscale uint8 image

        Returns:
            List of 4x2 float32 quads, ordered clockwise
        """
        height, width = gray.shape[:2]
        max_dim = max(height, width)
        min_perimeter = self.config["min_marker_perimeter_rate"] * max_dim
        max_perimeter = self.config["max_marker_perimeter_rate"] * max_dim
        min_area = self.config["min_marker_area_rate"] * height * width
        border = self.config["min_distance_to_border"]

        candidates = []
        perimeters = []
        for win_size in self.config["adaptive_thresh_win_sizes"]:
            # adaptiveThreshold needs an odd block size >= 3
            win_size = max(3, int(win_size) | 1)
            thresh = cv2.adaptiveThreshold(
                gray, 255, cv2.ADAPTIVE_THRESH_MEAN_C, cv2.THRESH_BINARY_INV,
                win_size, self.config["adaptive_thresh_constant"]
            )
            contours, _ = cv2.findContours(thresh, cv2.RETR_LIST, cv2.CHAIN_APPROX_NONE)

            for contour in contours:
                n_points = len(contour)
                if n_points < min_perimeter or n_points > max_perimeter:
                    continue

                approx = cv2.approxPolyDP(
                    contour, n_points * self.config["polygonal_approx_accuracy_rate"], True
                )
                if len(approx) != 4 or not cv2.isContourConvex(approx):
                    continue

                quad = approx.reshape(4, 2).astype(np.float32)
                if cv2.contourArea(quad) < min_area:
                    continue

                # Reject quads with a collapsed side
                sides = np.linalg.norm(quad - np.roll(quad, -1, axis=0), axis=1)
                if sides.min() < n_points * self.config["min_corner_distance_rate"]:
                    continue

                if (
                    quad[:, 0].min() < border or quad[:, 1].min() < border
                    or quad[:, 0].max() > width - 1 - border
                    or quad[:, 1].max() > height - 1 - border
                ):
                    continue

                candidates.append(_clockwise(quad))
                perimeters.append(float(n_points))

        filtered = self._filter_close_candidates(candidates, perimeters)
        logger.debug(f"Marker candidates: {len(candidates)} found, {len(filtered)} after filtering")
        return filtered

    def _filter_close_candidates(
        self, candidates: List[np.ndarray], perimeters: List[float]
    ) -> List[np.ndarray]:
        """Drop candidates that duplicate a larger one (e.g. inner and outer border)."""
        order = np.argsort(perimeters)[::-1]
        kept: List[np.ndarray] = []
        for idx in order:
            quad = candidates[idx]
            min_dist = self.config["min_marker_distance_rate"] * perimeters[idx]
            duplicate = False
            for other in kept:
                # Corner order may start anywhere, so compare all 4 alignments
                for shift in range(4):
                    diff = quad - np.roll(other, shift, axis=0)
                    if np.mean(np.sum(diff ** 2, axis=1)) < min_dist ** 2:
                        duplicate = True
                        break
                if duplicate:
                    break
            if not duplicate:
                kept.append(quad)
        return kept

    def sample_cells(self, gray: np.ndarray, quad: np.ndarray) -> Optional[np.ndarray]:
        """Sample a candidate onto its cell grid (code cells plus frame).

        Args:
            gray: Grayscale uint8 image
            quad: 4x2 clockwise candidate corners

        Returns:
            (marker_size + 2)^2 array of 0/1 cells, or None if the sampled
            patch has no usable contrast
        """
        n_cells = self.dictionary.marker_size + 2
        cell_px = int(self.config["cell_pixels"])
        side = n_cells * cell_px

        dst = np.array(
            [[0, 0], [side - 1, 0], [side - 1, side - 1], [0, side - 1]], dtype=np.float32
        )
        M = cv2.getPerspectiveTransform(quad.astype(np.float32), dst)
        patch = cv2.warpPerspective(gray, M, (side, side), flags=cv2.INTER_NEAREST)

        _, std_dev = cv2.meanStdDev(patch)
        if std_dev[0, 0] < self.config["min_otsu_std_dev"]:
            # A flat patch is either all white or all black; neither is a marker
            return None

        _, binary = cv2.threshold(patch, 125, 255, cv2.THRESH_BINARY | cv2.THRESH_OTSU)

        margin = int(self.config["cell_margin_rate"] * cell_px)
        inner = cell_px - 2 * margin
        cells = binary.reshape(n_cells, cell_px, n_cells, cell_px)
        cells = cells[:, margin:margin + inner, :, margin:margin + inner]
        white = np.count_nonzero(cells, axis=(1, 3))
        return (white > (inner * inner) / 2).astype(np.uint8)

    def decode_candidate(
        self, gray: np.ndarray, quad: np.ndarray
    ) -> Optional[Tuple[int, int]]:
        """Decode one candidate.

        Args:
            gray: Grayscale uint8 image
            quad: 4x2 clockwise candidate corners

        Returns:
            Tuple of (marker_id, rotation) or None if the candidate is not a
            valid marker in any rotation
        """
        cells = self.sample_cells(gray, quad)
        if cells is None:
            return None

        marker_size = self.dictionary.marker_size
        frame = np.concatenate([cells[0, :], cells[-1, :], cells[1:-1, 0], cells[1:-1, -1]])
        max_frame_errors = int(
            self.config["max_erroneous_border_bits_rate"] * marker_size * 4
        )
        if np.count_nonzero(frame) > max_frame_errors:
            return None

        match = self.dictionary.identify(cells[1:-1, 1:-1])
        if match is None:
            return None
        marker_id, rotation, distance = match
        if distance:
            logger.debug(f"Marker {marker_id} decoded with {distance} corrected bits")
        return marker_id, rotation

    def _refine_corners(
        self, gray: np.ndarray, markers: List[DetectedMarker]
    ) -> List[DetectedMarker]:
        """Refine marker corners to sub-pixel accuracy."""
        win = int(self.config["refine_window"])
        criteria = (
            cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER,
            int(self.config["refine_max_iterations"]),
            float(self.config["refine_min_accuracy"]),
        )

        points = np.concatenate([m.corners for m in markers]).reshape(-1, 1, 2).astype(np.float32)
        refined = cv2.cornerSubPix(gray, points, (win, win), (-1, -1), criteria)
        refined = refined.reshape(len(markers), 4, 2)

        return [
            DetectedMarker(marker.id, refined[i].astype(np.float32))
            for i, marker in enumerate(markers)
        ]
