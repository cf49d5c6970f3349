"""End-to-end texture rectification.

``rectify_texture`` runs the marker path (detect, identify, resolve corners,
warp, normalize) and falls back to boundary detection when the markers
cannot be used. ``rectify_with_corners`` and ``rectify_by_boundary`` expose
the manual and marker-free paths on their own, and ``cover_resize`` is the
plain resize used when nothing can be rectified.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import cv2
import numpy as np

from texture_rectify.boundary import detect_boundary
from texture_rectify.config import resolve_config
from texture_rectify.errors import (
    BoundaryNotFound,
    InvalidInput,
    NoMarkersFound,
    RectifyError,
)
from texture_rectify.evaluate import Timer
from texture_rectify.geometry import (
    destination_corners,
    resolve_corners,
    solve_homography,
)
from texture_rectify.identify import ModelMarkerRange, identify_model
from texture_rectify.markers import ArucoMarkerDetector, DetectedMarker, MarkerDetector
from texture_rectify.photometric import normalize
from texture_rectify.rectify import MIN_OUTPUT_SIZE, warp_to_square

logger = logging.getLogger(__name__)

DebugCallback = Callable[[str, np.ndarray], None]


@dataclass
class RectifiedTexture:
    """A rectified texture and how it was obtained."""

    image: np.ndarray
    corners: np.ndarray
    homography: np.ndarray
    method: str
    model_id: Optional[str] = None
    markers: List[DetectedMarker] = field(default_factory=list)
    timings: Dict[str, float] = field(default_factory=dict)


def validate_image(image: Any, min_size: int = 32) -> np.ndarray:
    """Check that ``image`` is a usable uint8 raster.

    Args:
        image: Candidate image
        min_size: Smallest accepted height and width

    Returns:
        The image, with a trailing singleton channel removed

    Raises:
        InvalidInput: On anything that is not an HxW, HxWx3 or HxWx4 uint8 array
    """
    if not isinstance(image, np.ndarray):
        raise InvalidInput(f"Expected a numpy array, got {type(image).__name__}")
    if image.dtype != np.uint8:
        raise InvalidInput(f"Expected uint8 pixels, got {image.dtype}")
    if image.ndim == 3 and image.shape[2] == 1:
        image = image[:, :, 0]
    if image.ndim not in (2, 3) or (image.ndim == 3 and image.shape[2] not in (3, 4)):
        raise InvalidInput(f"Unsupported image shape {image.shape}")
    height, width = image.shape[:2]
    if min(height, width) < min_size:
        raise InvalidInput(f"Image {width}x{height} is smaller than {min_size}px")
    return image


def _check_output_size(output_size: int) -> int:
    if int(output_size) < MIN_OUTPUT_SIZE:
        raise InvalidInput(f"Output size must be at least {MIN_OUTPUT_SIZE}, got {output_size}")
    return int(output_size)


def _warp_and_normalize(
    image: np.ndarray,
    corners: np.ndarray,
    output_size: int,
    config: Dict[str, Any],
    timer: Timer,
    debug: Optional[DebugCallback] = None,
):
    H = solve_homography(corners, destination_corners(output_size))
    timer.lap("homography")

    warped = warp_to_square(image, H, output_size, config["rectify"]["border_value"])
    timer.lap("warp")
    if debug is not None:
        debug("warped", warped)

    if config["pipeline"]["normalize"]:
        warped = normalize(warped)
        timer.lap("normalize")
        if debug is not None:
            debug("normalized", warped)

    return warped, H


def rectify_with_markers(
    image: np.ndarray,
    registered_models: Sequence[ModelMarkerRange],
    output_size: int,
    config: Dict[str, Any],
    detector: MarkerDetector,
    timer: Timer,
    debug: Optional[DebugCallback] = None,
) -> RectifiedTexture:
    """Marker path only; raises the first marker-path error."""
    markers = detector.detect(image)
    timer.lap("detect")
    if debug is not None:
        from texture_rectify.visualise import draw_markers
        debug("markers", draw_markers(image, markers))

    if not markers:
        raise NoMarkersFound("No decodable markers in image")

    identification = identify_model(
        markers, registered_models, config["identification"]["quorum"]
    )
    timer.lap("identify")

    corners = resolve_corners(markers, identification.base_id).as_array()
    rectified, H = _warp_and_normalize(image, corners, output_size, config, timer, debug)

    return RectifiedTexture(
        image=rectified,
        corners=corners,
        homography=H,
        method="markers",
        model_id=identification.model_id,
        markers=markers,
        timings=timer.timings,
    )


def rectify_by_boundary(
    image: np.ndarray,
    output_size: int = 2048,
    config: Optional[Dict[str, Any]] = None,
    debug: Optional[DebugCallback] = None,
) -> RectifiedTexture:
    """Rectify using the detected template outline instead of markers.

    Args:
        image: uint8 grayscale, BGR or BGRA image
        output_size: Side of the square output
        config: Optional partial configuration
        debug: Optional callback receiving (step_name, image)

    Returns:
        Rectified texture with ``method == "boundary"``

    Raises:
        BoundaryNotFound: If no plausible outline is found
    """
    config = resolve_config(config)
    image = validate_image(image, config["pipeline"]["min_image_size"])
    output_size = _check_output_size(output_size)

    timer = Timer("rectify_by_boundary", logger)
    timer.start()
    return _rectify_by_boundary(image, output_size, config, timer, debug)


def _rectify_by_boundary(image, output_size, config, timer, debug=None) -> RectifiedTexture:
    corners = detect_boundary(image, config["boundary"], debug).astype(np.float64)
    timer.lap("boundary")
    try:
        rectified, H = _warp_and_normalize(image, corners, output_size, config, timer, debug)
    except InvalidInput as e:
        raise BoundaryNotFound(f"Boundary corners are unusable: {e}") from e
    return RectifiedTexture(
        image=rectified,
        corners=corners,
        homography=H,
        method="boundary",
        timings=timer.timings,
    )


def rectify_with_corners(
    image: np.ndarray,
    corners: np.ndarray,
    output_size: int = 2048,
    config: Optional[Dict[str, Any]] = None,
) -> RectifiedTexture:
    """Rectify from four user-picked points ordered TL, TR, BR, BL.

    Args:
        image: uint8 grayscale, BGR or BGRA image
        corners: 4x2 source points
        output_size: Side of the square output
        config: Optional partial configuration

    Returns:
        Rectified texture with ``method == "manual"``
    """
    config = resolve_config(config)
    image = validate_image(image, config["pipeline"]["min_image_size"])
    output_size = _check_output_size(output_size)
    corners = np.asarray(corners, dtype=np.float64)

    timer = Timer("rectify_with_corners", logger)
    timer.start()
    rectified, H = _warp_and_normalize(image, corners, output_size, config, timer)
    logger.info(f"Rectified from manual corners (elapsed time: {timer.elapsed:.3f}s)")
    return RectifiedTexture(
        image=rectified,
        corners=corners,
        homography=H,
        method="manual",
        timings=timer.timings,
    )


def rectify_texture(
    image: np.ndarray,
    registered_models: Sequence[ModelMarkerRange] = (),
    output_size: int = 2048,
    config: Optional[Dict[str, Any]] = None,
    detector: Optional[MarkerDetector] = None,
    debug: Optional[DebugCallback] = None,
) -> RectifiedTexture:
    """Recover the square texture enclosed by a template's corner markers.

    Args:
        image: uint8 grayscale, BGR or BGRA photo of a printed template
        registered_models: Known templates in declaration order
        output_size: Side of the square output in pixels
        config: Optional partial configuration, merged over the defaults
        detector: Marker detector; an ``ArucoMarkerDetector`` built from the
            ``markers`` config section if None
        debug: Optional callback receiving (step_name, image) at each stage

    Returns:
        The rectified texture with its diagnostics

    Raises:
        InvalidInput: On an unusable image or output size
        NoMarkersFound, IdentificationFailed, IncompleteCorners: When the
            marker path fails and the boundary fallback is disabled
        BoundaryNotFound: When the marker path and the fallback both fail
    """
    config = resolve_config(config)
    image = validate_image(image, config["pipeline"]["min_image_size"])
    output_size = _check_output_size(output_size)
    if detector is None:
        detector = ArucoMarkerDetector(config=config["markers"])

    timer = Timer("rectify_texture", logger)
    timer.start()
    logger.info(
        f"Rectifying {image.shape[1]}x{image.shape[0]} image to {output_size}x{output_size} "
        f"({len(registered_models)} registered models)"
    )

    try:
        result = rectify_with_markers(
            image, registered_models, output_size, config, detector, timer, debug
        )
    except RectifyError as marker_error:
        if not config["pipeline"]["fallback_to_boundary"]:
            raise
        logger.warning(f"Marker path failed ({marker_error}); trying boundary detection")
        try:
            result = _rectify_by_boundary(image, output_size, config, timer, debug)
        except BoundaryNotFound as boundary_error:
            raise BoundaryNotFound(
                f"No processing possible: {marker_error}; {boundary_error}"
            ) from marker_error

    logger.info(
        f"Rectified with {result.method}"
        + (f" (model {result.model_id})" if result.model_id is not None else "")
        + f" (elapsed time: {timer.elapsed:.3f}s)"
    )
    return result


def cover_resize(image: np.ndarray, output_size: int = 2048) -> np.ndarray:
    """Scale to cover a square, centre-crop, then sharpen lightly.

    The unrectified stand-in for photos where nothing could be detected.

    Args:
        image: uint8 grayscale, BGR or BGRA image
        output_size: Side of the square output

    Returns:
        ``output_size`` x ``output_size`` image
    """
    image = validate_image(image, min_size=1)
    output_size = _check_output_size(output_size)

    height, width = image.shape[:2]
    scale = output_size / min(height, width)
    new_w = max(output_size, int(round(width * scale)))
    new_h = max(output_size, int(round(height * scale)))
    interpolation = cv2.INTER_AREA if scale < 1 else cv2.INTER_CUBIC
    resized = cv2.resize(image, (new_w, new_h), interpolation=interpolation)

    x0 = (new_w - output_size) // 2
    y0 = (new_h - output_size) // 2
    cropped = resized[y0:y0 + output_size, x0:x0 + output_size]

    blurred = cv2.GaussianBlur(cropped, (0, 0), 1.0)
    return cv2.addWeighted(cropped, 1.5, blurred, -0.5, 0)
