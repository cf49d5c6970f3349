#!/usr/bin/env python3
"""
Texture Rectification

This script rectifies photos of printed texture templates into flat square
textures, using the corner markers where possible and the template outline
otherwise, and writes a report of how each photo was processed.
"""

from __future__ import annotations

import argparse
import datetime
import json
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

import cv2
from tqdm import tqdm

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from texture_rectify import evaluate, visualise
from texture_rectify.config import load_config, models_from_config
from texture_rectify.errors import InvalidInput, RectifyError
from texture_rectify.markers import ArucoMarkerDetector
from texture_rectify.pipeline import cover_resize, rectify_texture


# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    handlers=[
        logging.StreamHandler(),
    ],
)
logger = logging.getLogger("rectify")

IMAGE_EXTENSIONS = ["*.jpg", "*.jpeg", "*.png", "*.bmp", "*.webp"]


def list_images(images: str) -> List[Path]:
    """List image files from a single file or a directory.

    Args:
        images: Path to an image or a directory of images

    Returns:
        Sorted list of image paths
    """
    path = Path(images)
    if path.is_file():
        return [path]

    image_files = set()
    for ext in IMAGE_EXTENSIONS:
        image_files.update(path.glob(ext))
        image_files.update(path.glob(ext.upper()))

    image_files = sorted(image_files)
    if not image_files:
        logger.error(f"No images found in {images}")
        sys.exit(1)

    logger.info(f"Found {len(image_files)} images in {images}")
    return image_files


def run(
    images: str,
    output_dir: str,
    output_size: Optional[int] = None,
    config_path: Optional[str] = None,
    fallback: bool = True,
    on_failure: str = "skip",
    visualise_results: bool = False,
    image_format: str = "png",
) -> Dict:
    """Rectify every image and save the results.

    Args:
        images: Image file or directory
        output_dir: Path to output directory
        output_size: Side of the rectified textures (config value if None)
        config_path: Path to configuration file
        fallback: Whether to try boundary detection when markers fail
        on_failure: "skip" or "original" (write the cover-resized photo)
        visualise_results: Whether to save comparison figures
        image_format: Output image format (png, webp)

    Returns:
        Report dictionary
    """
    run_timer = evaluate.Timer("Rectify")
    run_timer.start()

    os.makedirs(output_dir, exist_ok=True)

    # Set up file logging
    file_handler = logging.FileHandler(os.path.join(output_dir, "log.txt"))
    file_handler.setFormatter(logging.Formatter("[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"))
    logging.getLogger().addHandler(file_handler)

    config = load_config(config_path)
    config["pipeline"]["fallback_to_boundary"] = fallback
    if output_size is None:
        output_size = config["rectify"]["output_size"]

    models = models_from_config(config)
    detector = ArucoMarkerDetector(config=config["markers"])
    metrics = evaluate.RectificationMetrics()

    logger.info(
        f"Registered models: {[(m.model_id, m.base_id) for m in models] or 'none'}"
    )

    for image_file in tqdm(list_images(images), desc="Rectifying"):
        image = cv2.imread(str(image_file), cv2.IMREAD_UNCHANGED)
        if image is None:
            logger.warning(f"Failed to read {image_file}")
            continue

        stem = image_file.stem
        output_path = os.path.join(output_dir, f"{stem}_rectified.{image_format}")
        try:
            result = rectify_texture(
                image, models, output_size, config=config, detector=detector
            )
        except RectifyError as e:
            logger.warning(f"{image_file.name}: {type(e).__name__}: {e}")
            written = None
            if on_failure == "original":
                try:
                    cv2.imwrite(output_path, cover_resize(image, output_size))
                    written = output_path
                except InvalidInput as resize_error:
                    logger.warning(f"{image_file.name}: not written: {resize_error}")
            metrics.add_failure(image_file.name, e, written)
            continue

        cv2.imwrite(output_path, result.image)
        metrics.add_success(image_file.name, result)

        if visualise_results:
            visualise.save_rectification_visualization(
                image, result, os.path.join(output_dir, f"{stem}_comparison.png")
            )

    metrics.runtime_s = run_timer.elapsed
    report = metrics.to_dict()
    report["datetime"] = datetime.datetime.now().isoformat()
    report["output_size"] = output_size

    with open(os.path.join(output_dir, "report.json"), "w") as f:
        json.dump(report, f, indent=2)

    logger.info("\n" + metrics.summary())
    return report


def main():
    """Main function to parse arguments and run rectification."""
    parser = argparse.ArgumentParser(description="Texture Rectification")
    parser.add_argument(
        "--images", "-i", dest="images", required=True,
        help="Path to an image or a directory containing images"
    )
    parser.add_argument(
        "--output", "-o", dest="output_dir", default="results/rectified",
        help="Path to output directory"
    )
    parser.add_argument(
        "--size", "-s", dest="output_size", type=int, default=None,
        help="Side of the rectified texture in pixels"
    )
    parser.add_argument(
        "--config", "-c", dest="config_path", default=None,
        help="Path to configuration file"
    )
    parser.add_argument(
        "--no-fallback", dest="fallback", action="store_false",
        help="Do not try boundary detection when markers fail"
    )
    parser.add_argument(
        "--on-failure", dest="on_failure", default="skip",
        choices=["skip", "original"],
        help="What to write for photos that cannot be rectified"
    )
    parser.add_argument(
        "--visualise", "-v", dest="visualise", action="store_true",
        help="Save comparison figures"
    )
    parser.add_argument(
        "--format", "-f", dest="image_format", default="png",
        choices=["png", "webp"],
        help="Output image format"
    )

    args = parser.parse_args()

    try:
        run(
            args.images,
            args.output_dir,
            args.output_size,
            args.config_path,
            args.fallback,
            args.on_failure,
            args.visualise,
            args.image_format,
        )
    except Exception as e:
        logger.exception(f"Error running rectification: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
