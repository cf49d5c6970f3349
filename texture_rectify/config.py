"""Runtime configuration for the rectification pipeline.

Defaults live in ``DEFAULT_CONFIG``; a YAML file only needs the keys it
changes. The photometric constants are deliberately not configurable, see
``photometric.EnhancementParameters``.
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from texture_rectify.identify import ModelMarkerRange

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "markers": {
        "dictionary": "DICT_6X6_1000",
        "adaptive_thresh_win_sizes": [3, 13, 23],
        "adaptive_thresh_constant": 7,
        "min_marker_perimeter_rate": 0.03,
        "max_marker_perimeter_rate": 4.0,
        "min_marker_area_rate": 5e-5,
        "polygonal_approx_accuracy_rate": 0.03,
        "min_corner_distance_rate": 0.05,
        "min_marker_distance_rate": 0.05,
        "min_distance_to_border": 3,
        "cell_pixels": 8,
        "cell_margin_rate": 0.13,
        "min_otsu_std_dev": 5.0,
        "max_erroneous_border_bits_rate": 0.35,
        "error_correction_rate": 0.6,
        "refine_corners": True,
        "refine_window": 5,
        "refine_max_iterations": 30,
        "refine_min_accuracy": 0.1,
    },
    "identification": {
        "quorum": 3,
    },
    "boundary": {
        "gamma": 0.5,
        "contrast": 1.5,
        "blur_kernel": 5,
        "canny_low": 50,
        "canny_high": 150,
        "close_iterations": 2,
        "hough_threshold": 100,
        "line_cluster_rate": 0.02,
        "min_area_rate": 0.02,
        "approx_epsilon_rate": 0.02,
        "harris_block_size": 2,
        "harris_ksize": 3,
        "harris_k": 0.04,
        "harris_threshold_rate": 0.01,
    },
    "rectify": {
        "output_size": 2048,
        "border_value": 0,
    },
    "pipeline": {
        "fallback_to_boundary": True,
        "normalize": True,
        "min_image_size": 32,
    },
    "models": [],
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def resolve_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return the default configuration updated with ``config``.

    Args:
        config: Partial configuration dictionary (may be None)

    Returns:
        Complete configuration dictionary
    """
    if not config:
        return copy.deepcopy(DEFAULT_CONFIG)
    return _deep_merge(DEFAULT_CONFIG, config)


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to configuration file. If None, only the defaults
            are returned.

    Returns:
        Configuration dictionary
    """
    if config_path is None:
        return resolve_config()

    with open(config_path, "r") as f:
        user_config = yaml.safe_load(f) or {}

    if not isinstance(user_config, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")

    logger.debug(f"Loaded configuration from {config_path}: sections={sorted(user_config)}")
    return resolve_config(user_config)


def models_from_config(config: Dict[str, Any]) -> List[ModelMarkerRange]:
    """Build the registered model list from the ``models`` section.

    Args:
        config: Configuration dictionary

    Returns:
        List of model marker ranges in declaration order
    """
    models = []
    for entry in config.get("models") or []:
        try:
            models.append(ModelMarkerRange(str(entry["model_id"]), int(entry["base_id"])))
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid model entry {entry!r}: {e}") from e
    return models
