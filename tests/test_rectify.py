"""Tests for resampling through a homography."""

import sys
import unittest
from pathlib import Path

import numpy as np

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from texture_rectify.errors import InvalidInput
from texture_rectify.geometry import destination_corners, solve_homography
from texture_rectify.pipeline import rectify_with_corners
from texture_rectify.rectify import warp_to_square
from texture_rectify.template import render_template


class TestWarpToSquare(unittest.TestCase):
    """Test warp_to_square."""

    def setUp(self):
        x = np.arange(64, dtype=np.uint8) * 3
        self.gradient = np.tile(x, (64, 1))
        self.color = np.dstack([self.gradient, self.gradient.T, np.full((64, 64), 90, np.uint8)])

    def test_identity(self):
        warped = warp_to_square(self.gradient, np.eye(3), 64)
        self.assertEqual(warped.shape, (64, 64))
        np.testing.assert_allclose(warped.astype(int), self.gradient.astype(int), atol=1)

    def test_translation_fills_border(self):
        H = np.array([[1, 0, 20], [0, 1, 0], [0, 0, 1]], dtype=np.float64)
        warped = warp_to_square(self.color, H, 64, border_value=7)
        self.assertEqual(warped.shape, (64, 64, 3))
        self.assertTrue(np.all(warped[:, :19] == 7))
        np.testing.assert_allclose(
            warped[:, 30:].astype(int), self.color[:, 10:44].astype(int), atol=1
        )

    def test_alpha_border_is_opaque(self):
        bgra = np.dstack([self.color, np.full((64, 64), 128, np.uint8)])
        H = np.array([[1, 0, 20], [0, 1, 0], [0, 0, 1]], dtype=np.float64)
        warped = warp_to_square(bgra, H, 64)
        self.assertEqual(warped.shape, (64, 64, 4))
        self.assertTrue(np.all(warped[:, :19, 3] == 255))
        self.assertTrue(np.all(warped[:, :19, :3] == 0))
        self.assertTrue(np.all(warped[:, 30:, 3] == 128))

    def test_downscale(self):
        H = np.diag([0.5, 0.5, 1.0])
        warped = warp_to_square(self.color, H, 32)
        self.assertEqual(warped.shape, (32, 32, 3))

    def test_source_untouched(self):
        before = self.color.copy()
        warp_to_square(self.color, np.diag([2.0, 2.0, 1.0]), 128)
        np.testing.assert_array_equal(self.color, before)

    def test_invalid_arguments(self):
        with self.assertRaises(InvalidInput):
            warp_to_square(self.gradient, np.eye(3), 4)
        with self.assertRaises(InvalidInput):
            warp_to_square(self.gradient, np.eye(2), 64)


class TestFrontalTemplate(unittest.TestCase):
    """Test that a frontal template comes back unchanged."""

    def setUp(self):
        self.layout = render_template(base_id=0, size=400)
        self.image = self.layout.image

    def test_solved_identity(self):
        H = solve_homography(destination_corners(400), destination_corners(400))
        np.testing.assert_allclose(H, np.eye(3), atol=1e-9)
        warped = warp_to_square(self.image, H, 400)
        np.testing.assert_array_equal(warped, self.image)

    def test_manual_corners_crop_interior(self):
        # Corners on pixel centres of the area between the sheet margins
        lo = 16
        side = 400 - 2 * lo
        hi = lo + side - 1
        result = rectify_with_corners(
            self.image,
            [[lo, lo], [hi, lo], [hi, hi], [lo, hi]],
            side,
            config={"pipeline": {"normalize": False}},
        )
        self.assertEqual(result.method, "manual")
        np.testing.assert_array_equal(result.image, self.image[lo:lo + side, lo:lo + side])


if __name__ == "__main__":
    unittest.main()
