"""Tests for photometric normalization."""

import sys
import unittest
from pathlib import Path

import numpy as np

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from texture_rectify.photometric import (
    EnhancementParameters,
    border_mean,
    border_width,
    enhance,
    normalize,
    white_balance_using_background,
)


def tinted_card(size=256, paper=(150, 200, 120), ink=(40, 60, 30)):
    """Paper-coloured square with a darker block in the middle."""
    image = np.empty((size, size, 3), dtype=np.uint8)
    image[:] = paper
    image[size // 3:2 * size // 3, size // 3:2 * size // 3] = ink
    return image


class TestWhiteBalance(unittest.TestCase):
    """Test white balancing against the border band."""

    def test_border_width(self):
        self.assertEqual(border_width(2048, 2048), 40)
        self.assertEqual(border_width(100, 400), 25)
        self.assertEqual(border_width(12, 12), 5)

    def test_border_mean_weights_strips_equally(self):
        image = np.zeros((100, 100), dtype=np.uint8)
        image[:10, :] = 200
        # Top strip 200, left/right strips 20 (10 of 100 rows), bottom 0
        self.assertAlmostEqual(float(border_mean(image, 10)[0]), (200 + 0 + 20 + 20) / 4)

    def test_border_reaches_target(self):
        balanced = white_balance_using_background(tinted_card())
        border = border_width(256, 256)
        mean = border_mean(balanced, border)
        np.testing.assert_allclose(mean, [240, 240, 240], atol=1.0)

    def test_balanced_paper_is_neutral(self):
        balanced = white_balance_using_background(tinted_card())
        paper = balanced[5, 128].astype(int)
        self.assertLessEqual(paper.max() - paper.min(), 1)

    def test_balanced_border_unchanged(self):
        image = np.full((256, 256, 3), 240, dtype=np.uint8)
        image[100:156, 100:156] = (10, 80, 200)
        np.testing.assert_array_equal(white_balance_using_background(image), image)

    def test_grayscale(self):
        gray = np.full((64, 64), 120, dtype=np.uint8)
        balanced = white_balance_using_background(gray)
        self.assertEqual(balanced.shape, (64, 64))
        self.assertTrue(np.all(balanced == 240))

    def test_alpha_untouched(self):
        bgra = np.dstack([tinted_card(), np.arange(256 * 256, dtype=np.uint32).reshape(256, 256) % 256])
        bgra = bgra.astype(np.uint8)
        balanced = white_balance_using_background(bgra)
        np.testing.assert_array_equal(balanced[:, :, 3], bgra[:, :, 3])

    def test_black_image(self):
        black = np.zeros((64, 64, 3), dtype=np.uint8)
        np.testing.assert_array_equal(white_balance_using_background(black), black)

    def test_input_not_modified(self):
        card = tinted_card()
        before = card.copy()
        white_balance_using_background(card)
        np.testing.assert_array_equal(card, before)


class TestEnhance(unittest.TestCase):
    """Test the fixed enhancement pass."""

    def test_flat_gray_levels(self):
        # Brightness then contrast: ((v/255*0.95) - 0.5) * 1.1 + 0.5
        for value in (0, 100, 240, 255):
            image = np.full((32, 32, 3), value, dtype=np.uint8)
            out = enhance(image)
            expected = np.clip(((value / 255 * 0.95) - 0.5) * 1.1 + 0.5, 0, 1) * 255
            np.testing.assert_allclose(out.astype(float), expected, atol=1.0)

    def test_neutral_stays_neutral(self):
        image = np.full((32, 32, 3), 200, dtype=np.uint8)
        out = enhance(image).astype(int)
        self.assertTrue(np.all(out.max(axis=2) - out.min(axis=2) <= 1))

    def test_saturation_increases(self):
        image = np.empty((32, 32, 3), dtype=np.uint8)
        image[:] = (100, 140, 180)
        out = enhance(image).astype(int)
        self.assertGreater(out[16, 16, 2] - out[16, 16, 0], 180 - 100)

    def test_sharpening_increases_edge_contrast(self):
        image = np.full((64, 64), 100, dtype=np.uint8)
        image[:, 32:] = 160
        out = enhance(image, EnhancementParameters(brightness=1.0, contrast=1.0)).astype(int)
        self.assertLess(out[32, 30], 100)
        self.assertGreater(out[32, 33], 160)

    def test_shapes_preserved(self):
        for shape in [(40, 50), (40, 50, 3), (40, 50, 4)]:
            image = np.full(shape, 128, dtype=np.uint8)
            out = normalize(image)
            self.assertEqual(out.shape, shape)
            self.assertEqual(out.dtype, np.uint8)

    def test_extremes_do_not_raise(self):
        for value in (0, 255):
            normalize(np.full((16, 16, 3), value, dtype=np.uint8))


if __name__ == "__main__":
    unittest.main()
