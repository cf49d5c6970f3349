"""Tests for timing and quality metrics."""

import sys
import time
import unittest
from pathlib import Path

import numpy as np

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from texture_rectify import evaluate
from texture_rectify.errors import BoundaryNotFound
from texture_rectify.geometry import destination_corners, solve_homography
from texture_rectify.markers import DetectedMarker
from texture_rectify.pipeline import RectifiedTexture


class TestTimer(unittest.TestCase):
    """Test the stage timer."""

    def test_context_manager(self):
        with evaluate.Timer("test") as timer:
            time.sleep(0.01)
        self.assertGreater(timer.elapsed, 0.0)

    def test_laps(self):
        timer = evaluate.Timer("laps")
        timer.start()
        timer.lap("first")
        timer.lap("second")
        self.assertEqual(list(timer.timings), ["first", "second"])
        self.assertTrue(all(v >= 0 for v in timer.timings.values()))

    def test_stop_without_start(self):
        self.assertEqual(evaluate.Timer().stop(), 0.0)


class TestMetrics(unittest.TestCase):
    """Test corner errors and the run report."""

    def setUp(self):
        self.src = np.array([[10, 12], [200, 8], [210, 190], [5, 205]], dtype=np.float64)
        self.H = solve_homography(self.src, destination_corners(128))

    def test_corner_alignment_error(self):
        self.assertLess(evaluate.corner_alignment_error(self.H, self.src, 128), 1e-6)
        shifted = self.src + [2.0, 0.0]
        self.assertGreater(evaluate.corner_alignment_error(self.H, shifted, 128), 0.5)

    def test_reprojection_rmse(self):
        self.assertLess(
            evaluate.reprojection_rmse(self.H, self.src, destination_corners(128)), 1e-6
        )

    def test_border_level(self):
        image = np.full((100, 100, 4), 200, dtype=np.uint8)
        np.testing.assert_allclose(evaluate.border_level(image), [200, 200, 200])

    def test_report(self):
        corners = np.zeros((4, 2), dtype=np.float32)
        result = RectifiedTexture(
            image=np.full((64, 64, 3), 240, dtype=np.uint8),
            corners=self.src,
            homography=self.H,
            method="markers",
            model_id="mug",
            markers=[DetectedMarker(4, corners), DetectedMarker(5, corners)],
            timings={"detect": 0.01},
        )
        metrics = evaluate.RectificationMetrics()
        metrics.add_success("a.jpg", result)
        metrics.add_failure("b.jpg", BoundaryNotFound("nothing"), "out/b.png")
        metrics.runtime_s = 1.5

        report = metrics.to_dict()
        self.assertEqual(report["n_images"], 2)
        self.assertEqual(report["counts"], {"markers": 1, "failed": 1})
        self.assertEqual(report["images"][0]["marker_ids"], [4, 5])
        self.assertEqual(report["images"][0]["corners"][1], [200.0, 8.0])
        self.assertEqual(report["images"][1]["error"], "BoundaryNotFound")
        self.assertIn("failed: 1", metrics.summary())


if __name__ == "__main__":
    unittest.main()
