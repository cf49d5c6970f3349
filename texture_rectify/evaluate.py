"""Timing and quality metrics for rectification runs.

This module provides a stage timer, corner alignment error measures, and a
metrics container used by the command line tool for its report.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import numpy as np

from texture_rectify.geometry import (
    apply_homography,
    as_corner_list,
    corner_errors,
    destination_corners,
)
from texture_rectify.photometric import border_mean, border_width

logger = logging.getLogger(__name__)


def corner_alignment_error(
    H: np.ndarray, expected_corners: np.ndarray, output_size: int
) -> float:
    """Largest distance between the mapped expected corners and the output square.

    Args:
        H: Homography used for rectification (source to output)
        expected_corners: 4x2 ground-truth source corners, TL, TR, BR, BL
        output_size: Side of the rectified output

    Returns:
        Maximum corner error in output pixels
    """
    errors = corner_errors(H, expected_corners, destination_corners(output_size))
    return float(errors.max())


def reprojection_rmse(H: np.ndarray, src: np.ndarray, dst: np.ndarray) -> float:
    """Root-mean-square error of ``H @ src`` against ``dst``."""
    mapped = apply_homography(H, src)
    errors = np.linalg.norm(mapped - np.asarray(dst, dtype=np.float64), axis=1)
    return float(np.sqrt(np.mean(errors**2)))


def border_level(image: np.ndarray, sample_border: int = 40) -> np.ndarray:
    """Per-channel average of the border band, as sampled by white balance."""
    height, width = image.shape[:2]
    color = image[:, :, :3] if image.ndim == 3 and image.shape[2] == 4 else image
    return border_mean(color, border_width(height, width, sample_border))


class Timer:
    """Utility class for timing operations with context manager support."""

    def __init__(self, name: str = "Timer", logger: Optional[logging.Logger] = None):
        """Initialize timer.

        Args:
            name: Timer name for logging
            logger: Logger to use (if None, uses module logger)
        """
        self.name = name
        self.logger = logger or logging.getLogger(__name__)
        self.start_time = None
        self.end_time = None
        self._timings = {}

    def start(self) -> None:
        """Start the timer."""
        self.start_time = time.perf_counter()

    def stop(self) -> float:
        """Stop the timer and return elapsed time.

        Returns:
            Elapsed time in seconds
        """
        if self.start_time is None:
            self.logger.warning(f"{self.name}: Timer stopped without being started")
            return 0.0

        self.end_time = time.perf_counter()
        elapsed = self.end_time - self.start_time
        self.logger.debug(f"{self.name}: {elapsed:.4f}s")
        return elapsed

    def __enter__(self) -> "Timer":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def lap(self, name: str) -> float:
        """Record a lap time with a given name.

        Args:
            name: Lap name

        Returns:
            Lap time in seconds
        """
        current_time = time.perf_counter()
        if self.start_time is None:
            self.start_time = current_time

        last_time = self._timings.get("__last", self.start_time)
        lap_time = current_time - last_time

        self._timings["__last"] = current_time
        self._timings[name] = lap_time

        self.logger.debug(f"{self.name} - {name}: {lap_time:.4f}s")
        return lap_time

    @property
    def timings(self) -> Dict[str, float]:
        """Get all recorded lap times."""
        return {k: v for k, v in self._timings.items() if k != "__last"}

    @property
    def elapsed(self) -> float:
        """Get current elapsed time without stopping the timer."""
        if self.start_time is None:
            return 0.0

        return time.perf_counter() - self.start_time


class RectificationMetrics:
    """Per-batch record of rectification outcomes."""

    def __init__(self):
        self.records: List[Dict[str, Any]] = []
        self.runtime_s = 0.0

    def add_success(self, name: str, result: Any) -> None:
        """Record a successful run from a ``RectifiedTexture``."""
        self.records.append({
            "image": name,
            "status": "ok",
            "method": result.method,
            "model_id": result.model_id,
            "marker_ids": [int(m.id) for m in result.markers],
            "corners": [list(point) for point in as_corner_list(result.corners)],
            "border_level": [round(float(v), 2) for v in border_level(result.image)],
            "stage_timings": {k: round(v, 4) for k, v in result.timings.items()},
        })

    def add_failure(self, name: str, error: Exception, fallback: Optional[str] = None) -> None:
        """Record a failed run and what was written instead, if anything."""
        self.records.append({
            "image": name,
            "status": "failed",
            "error": type(error).__name__,
            "message": str(error),
            "fallback_output": fallback,
        })

    def counts(self) -> Dict[str, int]:
        """Number of runs per outcome (method or "failed")."""
        counts: Dict[str, int] = {}
        for record in self.records:
            key = record.get("method", record["status"])
            counts[key] = counts.get(key, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "n_images": len(self.records),
            "counts": self.counts(),
            "runtime_s": round(self.runtime_s, 3),
            "images": list(self.records),
        }

    def summary(self) -> str:
        """Generate a human-readable summary of metrics."""
        lines = [
            "Rectification Metrics:",
            f"  Images: {len(self.records)}",
        ]
        for key, value in sorted(self.counts().items()):
            lines.append(f"  {key}: {value}")
        lines.append(f"  Total runtime: {self.runtime_s:.2f}s")
        return "\n".join(lines)
