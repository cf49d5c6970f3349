"""Marker dictionary lookup.

Wraps one of OpenCV's predefined ArUco dictionaries as a plain table of bit
matrices and decodes sampled marker bits against it with a Hamming-distance
budget. The black frame around a marker is not part of its code; ``bits``
here always means the inner ``marker_size x marker_size`` cells, white = 1.
"""

from __future__ import annotations

import functools
import logging
from typing import Optional, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_DICTIONARY = "DICT_6X6_1000"


def _unpack_code(code_bytes: np.ndarray, marker_size: int) -> np.ndarray:
    """Unpack one rotation of an OpenCV byte list into a bit matrix.

    Bits are stored row-major, most significant bit first; the last byte
    holds the remaining bits in its low-order positions.
    """
    n_bits = marker_size * marker_size
    bits = np.unpackbits(np.asarray(code_bytes, dtype=np.uint8))
    full = (n_bits // 8) * 8
    tail = n_bits - full
    if tail:
        last_byte = bits[full:full + 8]
        bits = np.concatenate([bits[:full], last_byte[8 - tail:]])
    return bits[:n_bits].reshape(marker_size, marker_size)


class MarkerDictionary:
    """A closed set of marker bit patterns indexed by marker ID."""

    def __init__(
        self,
        name: str = DEFAULT_DICTIONARY,
        error_correction_rate: float = 0.6,
    ):
        """Load a predefined dictionary.

        Args:
            name: Name of an OpenCV predefined dictionary, e.g. "DICT_6X6_1000"
            error_correction_rate: Fraction of the dictionary's correction
                capability used when decoding (OpenCV's detector default)
        """
        if not hasattr(cv2.aruco, name):
            raise ValueError(f"Unknown marker dictionary: {name}")

        aruco_dict = cv2.aruco.getPredefinedDictionary(getattr(cv2.aruco, name))
        self.name = name
        self.marker_size = int(aruco_dict.markerSize)

        n_bytes = (self.marker_size * self.marker_size + 7) // 8
        byte_list = np.asarray(aruco_dict.bytesList, dtype=np.uint8)
        # One row per marker: the 4 precomputed rotations stored back to back
        byte_list = byte_list.reshape(byte_list.shape[0], -1)
        if byte_list.shape[1] != 4 * n_bytes:
            raise ValueError(
                f"Unexpected byte list layout for {name}: {byte_list.shape}"
            )

        self._codes = np.stack(
            [_unpack_code(row[:n_bytes], self.marker_size) for row in byte_list]
        )
        self._flat_codes = self._codes.reshape(len(self._codes), -1)
        self.max_correction_bits = int(
            np.floor(int(aruco_dict.maxCorrectionBits) * error_correction_rate)
        )

        logger.debug(
            f"Loaded {name}: {len(self)} markers, {self.marker_size}x{self.marker_size} bits, "
            f"correction budget {self.max_correction_bits} bits"
        )

    def __len__(self) -> int:
        return len(self._codes)

    def bits_for(self, marker_id: int) -> np.ndarray:
        """Return the bit matrix of a marker in its authored orientation."""
        if not 0 <= marker_id < len(self):
            raise ValueError(f"Marker ID {marker_id} outside dictionary {self.name}")
        return self._codes[marker_id].copy()

    def identify(
        self, bits: np.ndarray, max_correction_bits: Optional[int] = None
    ) -> Optional[Tuple[int, int, int]]:
        """Match sampled bits against the dictionary in all four rotations.

        Args:
            bits: marker_size x marker_size array of 0/1 cells as sampled
            max_correction_bits: Override of the Hamming distance budget

        Returns:
            Tuple of (marker_id, rotation, distance) or None if no code is
            close enough. ``rotation`` is the number of counter-clockwise
            quarter turns (``np.rot90``) that bring the sampled bits into the
            authored orientation.
        """
        bits = np.asarray(bits)
        if bits.shape != (self.marker_size, self.marker_size):
            raise ValueError(
                f"Expected {self.marker_size}x{self.marker_size} bits, got shape {bits.shape}"
            )
        if max_correction_bits is None:
            max_correction_bits = self.max_correction_bits

        bits = (bits > 0).astype(np.uint8)
        best = None
        for rotation in range(4):
            rotated = np.rot90(bits, rotation).reshape(-1)
            distances = np.count_nonzero(self._flat_codes != rotated, axis=1)
            marker_id = int(np.argmin(distances))
            distance = int(distances[marker_id])
            if best is None or distance < best[2]:
                best = (marker_id, rotation, distance)

        if best[2] > max_correction_bits:
            return None
        return best

    def lookup(self, bits: np.ndarray) -> Optional[int]:
        """Return the marker ID for a bit matrix, or None if no acceptable match."""
        match = self.identify(bits)
        return None if match is None else match[0]

    def render(self, marker_id: int, cell_px: int = 20) -> np.ndarray:
        """Render a marker, including its one-cell black frame.

        Args:
            marker_id: Marker to render
            cell_px: Side of one cell in pixels

        Returns:
            Grayscale uint8 image of side (marker_size + 2) * cell_px
        """
        if cell_px < 1:
            raise ValueError(f"cell_px must be positive, got {cell_px}")
        cells = np.zeros((self.marker_size + 2, self.marker_size + 2), dtype=np.uint8)
        cells[1:-1, 1:-1] = self.bits_for(marker_id) * 255
        return np.kron(cells, np.ones((cell_px, cell_px), dtype=np.uint8))


@functools.lru_cache(maxsize=None)
def get_dictionary(name: str = DEFAULT_DICTIONARY, error_correction_rate: float = 0.6) -> MarkerDictionary:
    """Return the shared, lazily built dictionary for ``name``."""
    return MarkerDictionary(name, error_correction_rate)
