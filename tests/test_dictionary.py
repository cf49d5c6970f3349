"""Tests for the marker dictionary."""

import sys
import unittest
from pathlib import Path

import cv2
import numpy as np

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from texture_rectify.dictionary import MarkerDictionary, get_dictionary


class TestMarkerDictionary(unittest.TestCase):
    """Test dictionary lookup and rendering."""

    @classmethod
    def setUpClass(cls):
        cls.dictionary = get_dictionary()

    def test_size(self):
        self.assertEqual(len(self.dictionary), 1000)
        self.assertEqual(self.dictionary.marker_size, 6)
        self.assertGreaterEqual(self.dictionary.max_correction_bits, 1)

    def test_shared_instance(self):
        self.assertIs(get_dictionary(), self.dictionary)

    def test_lookup_own_bits(self):
        for marker_id in [0, 1, 2, 3, 4, 7, 42, 500, 999]:
            bits = self.dictionary.bits_for(marker_id)
            self.assertEqual(bits.shape, (6, 6))
            self.assertEqual(self.dictionary.lookup(bits), marker_id)

    def test_identify_rotations(self):
        bits = self.dictionary.bits_for(13)
        for k in range(4):
            # Bits seen after the print was turned k quarter turns clockwise
            seen = np.rot90(bits, -k)
            marker_id, rotation, distance = self.dictionary.identify(seen)
            self.assertEqual(marker_id, 13)
            self.assertEqual(rotation, k)
            self.assertEqual(distance, 0)
            np.testing.assert_array_equal(np.rot90(seen, rotation), bits)

    def test_single_bit_error_corrected(self):
        bits = self.dictionary.bits_for(21)
        bits[2, 3] ^= 1
        self.assertEqual(self.dictionary.lookup(bits), 21)
        self.assertEqual(self.dictionary.identify(bits)[2], 1)

    def test_no_match(self):
        self.assertIsNone(self.dictionary.lookup(np.zeros((6, 6), dtype=np.uint8)))
        self.assertIsNone(self.dictionary.lookup(np.ones((6, 6), dtype=np.uint8)))

    def test_wrong_shape(self):
        with self.assertRaises(ValueError):
            self.dictionary.identify(np.zeros((5, 5)))

    def test_unknown_dictionary(self):
        with self.assertRaises(ValueError):
            MarkerDictionary("DICT_NOT_A_DICTIONARY")

    def test_id_out_of_range(self):
        with self.assertRaises(ValueError):
            self.dictionary.bits_for(1000)

    def test_render_matches_opencv(self):
        aruco_dict = cv2.aruco.getPredefinedDictionary(cv2.aruco.DICT_6X6_1000)
        for marker_id in [0, 5, 321]:
            ours = self.dictionary.render(marker_id, cell_px=10)
            theirs = cv2.aruco.generateImageMarker(aruco_dict, marker_id, 80, borderBits=1)
            self.assertEqual(ours.shape, (80, 80))
            np.testing.assert_array_equal(ours, theirs)

    def test_render_has_black_frame(self):
        marker = self.dictionary.render(3, cell_px=4)
        self.assertEqual(marker.shape, (32, 32))
        self.assertTrue(np.all(marker[:4, :] == 0))
        self.assertTrue(np.all(marker[:, -4:] == 0))


if __name__ == "__main__":
    unittest.main()
