"""Zoomify pyramid generation for a single image."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Callable

from zoomtiler.config import DESTINATION_SUFFIX, MANIFEST_FILENAME, TileOptions
from zoomtiler.core.manifest import check_zoomify_status, write_manifest
from zoomtiler.errors import OutputWriteError, SourceNotFoundError

from .processors import Processor, get_processor

logger = logging.getLogger(__name__)


def default_destination(image_path: Path) -> Path:
    """Return ``{root}_zdata`` next to the image, ``root`` being the path without extension."""
    image_path = Path(image_path)
    return image_path.with_name(image_path.stem + DESTINATION_SUFFIX)


class ZoomifyBuilder:
    """Builds a Zoomify tile pyramid (TileGroup folders + ImageProperties.xml).

    The processor is chosen when the builder is created, so a missing image
    library is reported before any file is touched.

    Args:
        processor: Processor instance or name; None picks the first available
        options: Tile options; defaults to 256px JPEG tiles at quality 85

    Raises:
        ConfigurationError: If no usable processor is available
    """

    def __init__(
        self,
        processor: Processor | str | None = None,
        options: TileOptions | None = None,
    ) -> None:
        if processor is None or isinstance(processor, str):
            processor = get_processor(processor)
        self.processor = processor
        self.options = options or TileOptions()

    def build(
        self,
        image_path: Path,
        destination: Path | None = None,
        destination_remove: bool = False,
        progress_callback: Callable[[str, int, int], None] | None = None,
    ) -> Path | None:
        """Tile an image into a Zoomify directory.

        Args:
            image_path: Path to the source image
            destination: Output directory; defaults to ``{root}_zdata``
                next to the image
            destination_remove: Delete an existing destination first
            progress_callback: Optional callback(stage, current, total)

        Returns:
            Path to the destination directory, or None if it already
            exists and ``destination_remove`` is False

        Raises:
            SourceNotFoundError: If the image is missing or unreadable
            ExternalToolError: If the processor fails mid-run
            OutputWriteError: If the destination cannot be removed or created,
                or a tile or the manifest cannot be written
        """
        source_path = self._resolve_source(Path(image_path))
        destination = Path(destination) if destination else default_destination(source_path)

        if self._handle_existing_destination(destination, destination_remove):
            return None

        source = self.processor.measure(source_path)
        logger.info(
            "Tiling %s (%d x %d px, %s) with %s",
            source_path.name, source.width, source.height,
            source.format or "unknown format", self.processor.name,
        )
        self._prepare_destination(destination)

        tile_count = self.processor.tile(source, destination, self.options, progress_callback)
        write_manifest(
            destination / MANIFEST_FILENAME,
            source.width,
            source.height,
            tile_count,
            self.options.tile_size,
        )

        logger.info("Generated %d tiles for %s in %s", tile_count, source_path.name, destination)
        return destination

    def _resolve_source(self, image_path: Path) -> Path:
        """Return the absolute source path.

        Raises:
            SourceNotFoundError: If the path is not a readable file
        """
        if not image_path.is_file():
            raise SourceNotFoundError(f"File does not exist: {image_path}")
        try:
            with open(image_path, "rb"):
                pass
        except OSError as e:
            raise SourceNotFoundError(f"File is not readable: {image_path}: {e}") from e
        return image_path.resolve()

    def _handle_existing_destination(self, destination: Path, destination_remove: bool) -> bool:
        """Check an existing destination and remove it if requested.

        Returns:
            True if the build should be skipped (destination exists and is kept)
        """
        if not destination.exists():
            return False

        if not destination_remove:
            status = check_zoomify_status(destination)
            logger.warning(
                "Output directory already exists (%s): %s (use destination_remove to rebuild)",
                status.value, destination,
            )
            return True

        logger.info("Removing existing output directory %s", destination)
        try:
            shutil.rmtree(destination)
        except OSError as e:
            raise OutputWriteError(f"Cannot remove {destination}: {e}") from e
        return False

    def _prepare_destination(self, destination: Path) -> None:
        try:
            destination.mkdir(parents=True)
        except OSError as e:
            raise OutputWriteError(f"Cannot create {destination}: {e}") from e


def build_zoomify(
    image_path: Path,
    destination: Path | None = None,
    processor: Processor | str | None = None,
    options: TileOptions | None = None,
    destination_remove: bool = False,
    progress_callback: Callable[[str, int, int], None] | None = None,
) -> Path | None:
    """Build a Zoomify pyramid using ZoomifyBuilder.

    Args:
        image_path: Path to the source image
        destination: Output directory (default ``{root}_zdata``)
        processor: Processor instance or name (default: first available)
        options: Tile options
        destination_remove: Delete an existing destination first
        progress_callback: Progress callback function

    Returns:
        Path to the destination directory, or None if skipped

    Raises:
        ConfigurationError: If no usable processor is available
    """
    builder = ZoomifyBuilder(processor=processor, options=options)
    return builder.build(
        image_path,
        destination,
        destination_remove=destination_remove,
        progress_callback=progress_callback,
    )
