"""Tiling pipeline for converting images to Zoomify tile pyramids."""

from .builder import ZoomifyBuilder, build_zoomify, default_destination
from .compositor import TileCompositor
from .pixels import MagickPixelOps, PillowPixelOps, PixelOps
from .processors import (
    ImageMagickProcessor,
    PillowProcessor,
    Processor,
    VipsCliProcessor,
    VipsProcessor,
    available_processors,
    get_processor,
    get_vips_import_error,
    is_vips_available,
)

__all__ = [
    "ZoomifyBuilder",
    "build_zoomify",
    "default_destination",
    "TileCompositor",
    "PixelOps",
    "PillowPixelOps",
    "MagickPixelOps",
    "Processor",
    "PillowProcessor",
    "ImageMagickProcessor",
    "VipsProcessor",
    "VipsCliProcessor",
    "available_processors",
    "get_processor",
    "get_vips_import_error",
    "is_vips_available",
]
