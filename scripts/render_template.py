#!/usr/bin/env python3
"""
Template Rendering

Renders a printable texture template with a model's four corner markers.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import cv2

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from texture_rectify.template import render_template


logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
)
logger = logging.getLogger("template")


def main():
    """Main function to parse arguments and render a template."""
    parser = argparse.ArgumentParser(description="Render a texture template")
    parser.add_argument(
        "--base-id", "-b", dest="base_id", type=int, default=0,
        help="First marker ID of the model"
    )
    parser.add_argument(
        "--size", "-s", dest="size", type=int, default=2048,
        help="Side of the template in pixels"
    )
    parser.add_argument(
        "--output", "-o", dest="output", default="template.png",
        help="Output image path"
    )

    args = parser.parse_args()

    try:
        layout = render_template(args.base_id, args.size)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    cv2.imwrite(args.output, layout.image)
    logger.info(
        f"Template for markers {args.base_id}..{args.base_id + 3} saved to {args.output}; "
        f"corners {json.dumps(layout.corners.tolist())}"
    )


if __name__ == "__main__":
    main()
