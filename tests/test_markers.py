"""Tests for the marker detector.

Markers are drawn on synthetic canvases, so the true outer corners are known
exactly in pixel-centre coordinates.
"""

import sys
import unittest
from pathlib import Path

import cv2
import numpy as np

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from texture_rectify.dictionary import get_dictionary
from texture_rectify.markers import ArucoMarkerDetector, DetectedMarker, to_gray

from synthetic import marker_canvas, rotate_canvas


class TestMarkerDetector(unittest.TestCase):
    """Test marker detection and decoding."""

    def setUp(self):
        self.dictionary = get_dictionary()
        self.detector = ArucoMarkerDetector(self.dictionary)
        self.image, self.corners = marker_canvas(self.dictionary, 7)

    def test_detect_upright(self):
        markers = self.detector.detect(cv2.GaussianBlur(self.image, (3, 3), 0))
        self.assertEqual([m.id for m in markers], [7])
        self.assertEqual(markers[0].corners.shape, (4, 2))
        self.assertEqual(markers[0].corners.dtype, np.float32)
        np.testing.assert_allclose(markers[0].corners, self.corners, atol=1.0)

    def test_rotation_invariance(self):
        # Corner 0 stays on the marker's authored top-left whatever the turn
        for k in range(4):
            rotated, expected = rotate_canvas(self.image, self.corners, k)
            markers = self.detector.detect(cv2.GaussianBlur(rotated, (3, 3), 0))
            self.assertEqual([m.id for m in markers], [7], f"rotation {k}")
            np.testing.assert_allclose(
                markers[0].corners, expected, atol=1.0, err_msg=f"rotation {k}"
            )

    def test_channel_layouts(self):
        blurred = cv2.GaussianBlur(self.image, (3, 3), 0)
        bgr = cv2.cvtColor(blurred, cv2.COLOR_GRAY2BGR)
        bgra = cv2.cvtColor(blurred, cv2.COLOR_GRAY2BGRA)
        for image in (blurred, bgr, bgra, blurred[:, :, None]):
            self.assertEqual([m.id for m in self.detector.detect(image)], [7])

    def test_several_markers_sorted(self):
        canvas = np.full((400, 600), 255, dtype=np.uint8)
        for marker_id, (x0, y0) in [(9, (50, 50)), (2, (300, 60)), (5, (180, 250))]:
            marker = self.dictionary.render(marker_id, 10)
            canvas[y0:y0 + 80, x0:x0 + 80] = marker
        markers = self.detector.detect(canvas)
        self.assertEqual([m.id for m in markers], [2, 5, 9])

    def test_empty_image(self):
        self.assertEqual(self.detector.detect(np.full((200, 200), 255, np.uint8)), [])
        self.assertEqual(self.detector.detect(np.zeros((200, 200), np.uint8)), [])

    def test_unframed_square_rejected(self):
        # A plain black square has a frame but no valid code
        canvas = np.full((300, 300), 255, dtype=np.uint8)
        canvas[100:196, 100:196] = 0
        self.assertEqual(self.detector.detect(canvas), [])

    def test_without_refinement(self):
        detector = ArucoMarkerDetector(self.dictionary, {"refine_corners": False})
        markers = detector.detect(self.image)
        self.assertEqual([m.id for m in markers], [7])
        np.testing.assert_allclose(markers[0].corners, self.corners, atol=1.5)

    def test_sample_cells(self):
        quad = self.corners.astype(np.float32)
        cells = self.detector.sample_cells(self.image, quad)
        self.assertEqual(cells.shape, (8, 8))
        np.testing.assert_array_equal(cells[1:-1, 1:-1], self.dictionary.bits_for(7))
        self.assertEqual(int(cells[0].sum() + cells[-1].sum()), 0)


class TestDetectedMarker(unittest.TestCase):
    """Test the marker value type."""

    def test_center_and_perimeter(self):
        corners = np.array([[0, 0], [10, 0], [10, 10], [0, 10]], dtype=np.float32)
        marker = DetectedMarker(3, corners)
        np.testing.assert_allclose(marker.center, [5, 5])
        self.assertAlmostEqual(marker.perimeter, 40.0, places=4)

    def test_to_gray(self):
        bgr = np.zeros((4, 4, 3), dtype=np.uint8)
        bgr[..., 2] = 255
        self.assertEqual(to_gray(bgr).shape, (4, 4))
        self.assertEqual(to_gray(np.zeros((4, 4), np.uint8)).shape, (4, 4))


if __name__ == "__main__":
    unittest.main()
