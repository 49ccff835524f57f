"""Centralized configuration for zoomtiler.

All tunable parameters are defined here with sensible defaults.
Values can be overridden via environment variables.

Environment Variables:
    ZOOMTILER_PROCESSOR: Processor to use, or "auto" (default: auto)
    ZOOMTILER_CONVERT_PATH: Path to ImageMagick "magick"/"convert" (default: PATH lookup)
    ZOOMTILER_VIPS_PATH: Path to the "vips" command line tool (default: PATH lookup)
    ZOOMTILER_VIPS_QUIET: Hide libvips module-loading warnings at import, 0 shows them (default: 1)
    ZOOMTILER_MAX_IMAGE_PIXELS: Pillow decompression bomb limit, 0 disables it (default: 0)
    ZOOMTILER_PARALLEL_IMAGES: Images processed in parallel by the CLI (default: 2)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from zoomtiler.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _get_env_int(name: str, default: int) -> int:
    """Get an integer from environment variable with fallback."""
    value = os.environ.get(name)
    if value is not None:
        try:
            return int(value)
        except ValueError:
            logger.warning(
                "Invalid integer for %s: %r, using default %d", name, value, default
            )
    return default


def _get_env_str(name: str, default: str) -> str:
    """Get a string from environment variable with fallback."""
    return os.environ.get(name, default)


# =============================================================================
# libvips
# =============================================================================

#: Silence libvips warnings about optional modules (jxl, magick, poppler) while
#: pyvips is imported
VIPS_QUIET: bool = _get_env_int("ZOOMTILER_VIPS_QUIET", 1) != 0


# =============================================================================
# Processor Selection
# =============================================================================

#: Processor name, or "auto" to pick the first available one
PROCESSOR: str = _get_env_str("ZOOMTILER_PROCESSOR", "auto")

#: Explicit path to ImageMagick, empty for a PATH lookup
CONVERT_PATH: str = _get_env_str("ZOOMTILER_CONVERT_PATH", "")

#: Explicit path to the vips CLI, empty for a PATH lookup
VIPS_CLI_PATH: str = _get_env_str("ZOOMTILER_VIPS_PATH", "")

#: Pillow MAX_IMAGE_PIXELS; 0 disables the decompression bomb check
MAX_IMAGE_PIXELS: int = _get_env_int("ZOOMTILER_MAX_IMAGE_PIXELS", 0)


# =============================================================================
# Tile Generation Defaults
# =============================================================================

#: Default tile size in pixels (also the tile count ceiling of a TileGroup)
DEFAULT_TILE_SIZE: int = 256

#: Default tile overlap in pixels
DEFAULT_TILE_OVERLAP: int = 0

#: Default tile format (file extension)
DEFAULT_TILE_FORMAT: str = "jpg"

#: Default encoder quality (1-100)
DEFAULT_TILE_QUALITY: int = 85

#: Tile formats the processors can encode
TILE_FORMATS: frozenset[str] = frozenset({"jpg", "jpeg", "png", "webp"})


# =============================================================================
# Output Layout
# =============================================================================

#: Suffix of the default destination directory ("{root}_zdata")
DESTINATION_SUFFIX: str = "_zdata"

#: Manifest file written at the destination root
MANIFEST_FILENAME: str = "ImageProperties.xml"

#: Zoomify format version written to the manifest
MANIFEST_VERSION: str = "1.8"

#: Prefix of the tile group directories
TILE_GROUP_PREFIX: str = "TileGroup"


# =============================================================================
# CLI Configuration
# =============================================================================

#: Default parallel images for batch tiling
DEFAULT_PARALLEL_IMAGES: int = _get_env_int("ZOOMTILER_PARALLEL_IMAGES", 2)

#: Supported source image extensions
IMAGE_EXTENSIONS: frozenset[str] = frozenset({
    ".jpg", ".jpeg", ".png", ".tif", ".tiff", ".webp", ".bmp", ".gif", ".jp2"
})


@dataclass(frozen=True)
class TileOptions:
    """Options for a single tiling run.

    Attributes:
        tile_size: Tile edge in pixels, also the maximum tiles per TileGroup
        tile_overlap: Pixels added on every side of a tile crop
        tile_format: Tile file extension ("jpg", "png", ...)
        tile_quality: Encoder quality (1-100)
    """

    tile_size: int = DEFAULT_TILE_SIZE
    tile_overlap: int = DEFAULT_TILE_OVERLAP
    tile_format: str = DEFAULT_TILE_FORMAT
    tile_quality: int = DEFAULT_TILE_QUALITY

    def __post_init__(self) -> None:
        if self.tile_size < 1:
            raise ConfigurationError(f"tile_size must be >= 1, got {self.tile_size}")
        if self.tile_overlap < 0:
            raise ConfigurationError(
                f"tile_overlap must be >= 0, got {self.tile_overlap}"
            )
        if self.tile_format.lower() not in TILE_FORMATS:
            raise ConfigurationError(
                f"Unsupported tile format {self.tile_format!r}, "
                f"expected one of {sorted(TILE_FORMATS)}"
            )
        if not 1 <= self.tile_quality <= 100:
            raise ConfigurationError(
                f"tile_quality must be within 1-100, got {self.tile_quality}"
            )
        object.__setattr__(self, "tile_format", self.tile_format.lower())


# =============================================================================
# Validation
# =============================================================================


def _validate_config() -> None:
    """Validate configuration values and log warnings for out-of-range settings."""
    global MAX_IMAGE_PIXELS, DEFAULT_PARALLEL_IMAGES

    if MAX_IMAGE_PIXELS < 0:
        logger.warning(
            "MAX_IMAGE_PIXELS=%d is negative, clamping to 0 (unlimited)",
            MAX_IMAGE_PIXELS,
        )
        MAX_IMAGE_PIXELS = 0

    if DEFAULT_PARALLEL_IMAGES < 1:
        logger.warning(
            "DEFAULT_PARALLEL_IMAGES=%d is too low, clamping to 1",
            DEFAULT_PARALLEL_IMAGES,
        )
        DEFAULT_PARALLEL_IMAGES = 1


_validate_config()
