"""Tiling processors.

A processor turns a measured source image into the Zoomify tile layout.
Software processors plan the pyramid and drive ``TileCompositor`` over a
``PixelOps``; native processors hand the whole job to libvips
``dzsave(layout="zoomify")`` and then bring its output in line with the
layout written by the software processors.

Usage:
    from zoomtiler.tiling.processors import get_processor

    processor = get_processor()          # first available
    processor = get_processor("pillow")  # or a specific one
    source = processor.measure(Path("input.jpg"))
    count = processor.tile(source, Path("input_zdata"), TileOptions())
"""

from __future__ import annotations

import logging
import os
import shutil
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable

from PIL import Image, UnidentifiedImageError

from zoomtiler import config
from zoomtiler.config import MANIFEST_FILENAME, TileOptions
from zoomtiler.core.manifest import count_tiles
from zoomtiler.core.plan import build_plan
from zoomtiler.core.types import SourceImage
from zoomtiler.errors import ConfigurationError, ExternalToolError, SourceNotFoundError

from .command import find_executable, run_external_tool
from .compositor import TileCompositor
from .pixels import MagickPixelOps, PillowPixelOps, PixelOps

logger = logging.getLogger(__name__)


def _import_pyvips(quiet: bool) -> tuple[Any, str | None]:
    """Import pyvips, optionally hiding libvips' module-loading warnings.

    libvips prints to the C-level stderr descriptor, so the descriptor itself
    is pointed at devnull for the duration of the import.

    Returns:
        Tuple of (pyvips module or None, import error message or None)
    """
    saved_fd = stderr_fd = None
    if quiet:
        os.environ.setdefault("VIPS_WARNING", "0")
        try:
            stderr_fd = sys.stderr.fileno()
        except (AttributeError, OSError, ValueError):
            stderr_fd = None  # no real descriptor (IDLE, captured output)
    if stderr_fd is not None:
        saved_fd = os.dup(stderr_fd)
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, stderr_fd)
        os.close(devnull)
    try:
        import pyvips
    except (ImportError, OSError) as e:
        logger.debug("pyvips not available: %s", e)
        return None, str(e)
    finally:
        if saved_fd is not None:
            os.dup2(saved_fd, stderr_fd)
            os.close(saved_fd)
    return pyvips, None


pyvips, _vips_import_error = _import_pyvips(config.VIPS_QUIET)
_HAS_VIPS = pyvips is not None


def is_vips_available() -> bool:
    """Check if PyVIPS is available.

    Returns:
        True if pyvips is installed and working
    """
    return _HAS_VIPS


def get_vips_import_error() -> str | None:
    """Get the error message if PyVIPS failed to import.

    Returns:
        Error message string, or None if pyvips is available
    """
    return _vips_import_error


ProgressCallback = Callable[[str, int, int], None]


class Processor(ABC):
    """Common interface of all tiling processors."""

    #: Name used in configuration and on the command line
    name: str = ""

    @classmethod
    @abstractmethod
    def is_available(cls) -> bool:
        """Return True if the processor can run in this environment."""

    @abstractmethod
    def measure(self, path: Path) -> SourceImage:
        """Read the dimensions and format of an image without decoding it.

        Raises:
            SourceNotFoundError: If the image is missing or cannot be read
        """

    @abstractmethod
    def tile(
        self,
        source: SourceImage,
        destination: Path,
        options: TileOptions,
        progress_callback: ProgressCallback | None = None,
    ) -> int:
        """Write all tiles of ``source`` into ``destination``.

        ``destination`` must exist. The manifest is written by the caller.

        Returns:
            Number of tiles written
        """


class SoftwareProcessor(Processor):
    """Processor that composes the pyramid tier by tier with ``TileCompositor``."""

    @abstractmethod
    def pixel_ops(self) -> PixelOps:
        """Create the pixel operations for one run."""

    def tile(
        self,
        source: SourceImage,
        destination: Path,
        options: TileOptions,
        progress_callback: ProgressCallback | None = None,
    ) -> int:
        plan = build_plan(source.width, source.height, options.tile_size, options.tile_format)
        logger.info(
            "Planned %d tiers, %d tiles in %d groups for %s",
            len(plan.levels), plan.tile_count, plan.group_count, source.path.name,
        )
        with self.pixel_ops() as pixels:
            compositor = TileCompositor(
                pixels,
                plan,
                destination,
                overlap=options.tile_overlap,
                quality=options.tile_quality,
                progress_callback=progress_callback,
            )
            return compositor.composite(source.path)


class PillowProcessor(SoftwareProcessor):
    """Pure Python processor built on Pillow."""

    name = "pillow"

    @classmethod
    def is_available(cls) -> bool:
        return True

    def measure(self, path: Path) -> SourceImage:
        Image.MAX_IMAGE_PIXELS = config.MAX_IMAGE_PIXELS or None
        try:
            with Image.open(path) as img:
                return SourceImage(
                    path=path, width=img.width, height=img.height, format=img.format or ""
                )
        except (OSError, UnidentifiedImageError, Image.DecompressionBombError) as e:
            raise SourceNotFoundError(f"Cannot read image {path}: {e}") from e

    def pixel_ops(self) -> PixelOps:
        return PillowPixelOps()


class ImageMagickProcessor(SoftwareProcessor):
    """Processor running the ImageMagick command line tools.

    Args:
        convert_path: Path to ``magick`` or ``convert``; looked up on PATH
            (or taken from ZOOMTILER_CONVERT_PATH) when omitted

    Raises:
        ConfigurationError: If ImageMagick cannot be found
    """

    name = "imagemagick"

    def __init__(self, convert_path: str | None = None) -> None:
        self.convert_path = convert_path or self.get_convert_path()
        if not self.convert_path:
            raise ConfigurationError("ImageMagick (magick or convert) is not available.")

    @staticmethod
    def get_convert_path() -> str | None:
        """Locate ImageMagick, preferring the version 7 ``magick`` command."""
        if config.CONVERT_PATH:
            return config.CONVERT_PATH
        return find_executable("magick", "convert")

    @classmethod
    def is_available(cls) -> bool:
        return cls.get_convert_path() is not None

    def measure(self, path: Path) -> SourceImage:
        ops = MagickPixelOps(self.convert_path)
        try:
            width, height, fmt = ops.identify(path)
        except ExternalToolError as e:
            raise SourceNotFoundError(f"Cannot read image {path}: {e}") from e
        finally:
            ops.close()
        return SourceImage(path=path, width=width, height=height, format=fmt)

    def pixel_ops(self) -> PixelOps:
        return MagickPixelOps(self.convert_path)


class NativeProcessor(Processor):
    """Processor delegating the whole pyramid to libvips ``dzsave``."""

    def tile(
        self,
        source: SourceImage,
        destination: Path,
        options: TileOptions,
        progress_callback: ProgressCallback | None = None,
    ) -> int:
        if progress_callback:
            progress_callback("dzsave", 0, 1)
        logger.info("Generating Zoomify tiles with %s dzsave...", self.name)
        self._dzsave(source, destination, options)
        self._reconcile_layout(destination)
        count = count_tiles(destination)
        if progress_callback:
            progress_callback("dzsave", 1, 1)
        logger.debug("dzsave wrote %d tiles", count)
        return count

    @abstractmethod
    def _dzsave(self, source: SourceImage, destination: Path, options: TileOptions) -> None:
        """Run dzsave with the Zoomify layout into ``destination``."""

    @staticmethod
    def _suffix(options: TileOptions) -> str:
        return f".{options.tile_format}[Q={options.tile_quality}]"

    def _reconcile_layout(self, destination: Path) -> None:
        """Match the dzsave output to the fixed Zoomify layout.

        Some libvips builds write ``vips-properties.xml`` into a nested
        folder named after the destination; move it up and drop the folder.
        The manifest is rewritten by the caller.
        """
        nested = destination / destination.name
        nested_props = nested / "vips-properties.xml"
        if nested_props.exists():
            shutil.move(str(nested_props), str(destination / "vips-properties.xml"))
            try:
                nested.rmdir()
            except OSError as e:
                logger.debug("Leaving %s in place: %s", nested, e)
        if not (destination / MANIFEST_FILENAME).exists():
            logger.debug("dzsave wrote no %s in %s", MANIFEST_FILENAME, destination)


class VipsProcessor(NativeProcessor):
    """Processor using pyvips ``dzsave``.

    Raises:
        ConfigurationError: If pyvips is not available
    """

    name = "vips"

    def __init__(self) -> None:
        if not _HAS_VIPS:
            raise ConfigurationError(
                f"PyVIPS is required but not available: {get_vips_import_error()}\n"
                "Install pyvips and libvips: pip install pyvips"
            )

    @classmethod
    def is_available(cls) -> bool:
        return _HAS_VIPS

    def measure(self, path: Path) -> SourceImage:
        try:
            image = pyvips.Image.new_from_file(str(path))
        except pyvips.error.Error as e:
            raise SourceNotFoundError(f"Cannot read image {path}: {e}") from e
        loader = image.get("vips-loader") if image.get_typeof("vips-loader") else ""
        return SourceImage(
            path=path,
            width=image.width,
            height=image.height,
            format=loader.removesuffix("load").removesuffix("_source").upper(),
        )

    def _dzsave(self, source: SourceImage, destination: Path, options: TileOptions) -> None:
        try:
            # Sequential access is faster for one-pass operations
            image = pyvips.Image.new_from_file(str(source.path), access="sequential")
            image.dzsave(
                str(destination),
                layout="zoomify",
                suffix=self._suffix(options),
                overlap=options.tile_overlap,
                tile_size=options.tile_size,
                background=[0, 0, 0],
                properties=True,
            )
        except pyvips.error.Error as e:
            raise ExternalToolError(f"pyvips dzsave failed for {source.path}: {e}") from e


class VipsCliProcessor(NativeProcessor):
    """Processor running the ``vips dzsave`` command line tool.

    Args:
        vips_path: Path to ``vips``; looked up on PATH (or taken from
            ZOOMTILER_VIPS_PATH) when omitted

    Raises:
        ConfigurationError: If the vips command cannot be found
    """

    name = "vips-cli"

    def __init__(self, vips_path: str | None = None) -> None:
        self.vips_path = vips_path or self.get_vips_path()
        if not self.vips_path:
            raise ConfigurationError("The vips command line tool is not available.")

    @staticmethod
    def get_vips_path() -> str | None:
        if config.VIPS_CLI_PATH:
            return config.VIPS_CLI_PATH
        return find_executable("vips")

    @classmethod
    def is_available(cls) -> bool:
        return cls.get_vips_path() is not None

    @property
    def vipsheader_path(self) -> str:
        """``vipsheader`` installed next to ``vips``, else the PATH lookup name."""
        vips = Path(self.vips_path)
        sibling = vips.with_name("vipsheader" + vips.suffix)
        return str(sibling) if sibling.exists() else "vipsheader"

    def _header(self, path: Path, field: str) -> str:
        return run_external_tool([self.vipsheader_path, "-f", field, str(path)])

    def measure(self, path: Path) -> SourceImage:
        try:
            width = int(self._header(path, "width"))
            height = int(self._header(path, "height"))
            loader = self._header(path, "vips-loader")
        except (ExternalToolError, ValueError) as e:
            raise SourceNotFoundError(f"Cannot read image {path}: {e}") from e
        return SourceImage(
            path=path,
            width=width,
            height=height,
            format=loader.removesuffix("load").removesuffix("_source").upper(),
        )

    def _dzsave(self, source: SourceImage, destination: Path, options: TileOptions) -> None:
        run_external_tool([
            self.vips_path,
            "dzsave",
            str(source.path),
            str(destination),
            "--layout", "zoomify",
            "--suffix", self._suffix(options),
            "--overlap", str(options.tile_overlap),
            "--tile-size", str(options.tile_size),
            "--background", "0 0 0",
            "--properties",
        ])


#: Processors in automatic selection order
PROCESSORS: dict[str, type[Processor]] = {
    VipsProcessor.name: VipsProcessor,
    VipsCliProcessor.name: VipsCliProcessor,
    ImageMagickProcessor.name: ImageMagickProcessor,
    PillowProcessor.name: PillowProcessor,
}


def available_processors() -> list[str]:
    """Names of the processors usable in this environment, in selection order."""
    return [name for name, cls in PROCESSORS.items() if cls.is_available()]


def get_processor(name: str | None = None) -> Processor:
    """Create a processor.

    Args:
        name: Processor name, or None/"auto" for the first available one
            (ZOOMTILER_PROCESSOR is used when omitted)

    Returns:
        A ready-to-use processor

    Raises:
        ConfigurationError: If the name is unknown or the processor is unavailable
    """
    name = (name or config.PROCESSOR or "auto").lower()
    if name == "auto":
        for cls in PROCESSORS.values():
            if cls.is_available():
                logger.debug("Selected %s processor", cls.name)
                return cls()
        raise ConfigurationError("No graphic library available.")

    cls = PROCESSORS.get(name)
    if cls is None:
        raise ConfigurationError(
            f"Unknown processor {name!r}, expected one of {', '.join(PROCESSORS)}"
        )
    if not cls.is_available():
        raise ConfigurationError(f"The {name} processor is not available.")
    return cls()
