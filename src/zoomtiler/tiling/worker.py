"""Worker function for parallel batch tiling.

This module exists separately from __main__.py to support Windows multiprocessing,
which requires worker functions to be importable (not defined in __main__).
"""

from __future__ import annotations

import logging
from pathlib import Path

from zoomtiler.config import TileOptions
from zoomtiler.errors import ZoomifyError

from .builder import ZoomifyBuilder

logger = logging.getLogger(__name__)


def process_single_image(
    image_path: Path,
    destination: Path | None,
    options: TileOptions,
    processor: str | None = None,
    destination_remove: bool = False,
) -> tuple[Path | None, str | None, bool]:
    """Tile a single image.

    Args:
        image_path: Path to the source image
        destination: Output directory, or None for ``{root}_zdata``
        options: Tile options
        processor: Processor name, or None for the first available
        destination_remove: Rebuild an existing destination

    Returns:
        Tuple of (result_path, error_message, was_skipped)
        - result_path: Path to the destination, or None if skipped/error
        - error_message: Error string if failed, None otherwise
        - was_skipped: True if the destination already existed
    """
    logger.info("Processing %s", image_path.name)
    try:
        builder = ZoomifyBuilder(processor=processor, options=options)
        result = builder.build(image_path, destination, destination_remove=destination_remove)
        if result is None:
            return None, None, True
        return result, None, False
    except (ZoomifyError, OSError) as e:
        logger.error("Failed to process %s: %s", image_path.name, e)
        return None, str(e), False
