"""Pixel operations used by the software tile compositor.

A ``PixelOps`` hands out opaque image handles and implements the handful of
operations the compositor needs: decode the source once, crop, resize, stack
rows vertically and encode tiles. Two implementations are provided:

- ``PillowPixelOps``: in-process, handles are ``PIL.Image.Image`` objects
- ``MagickPixelOps``: ImageMagick command line, handles are files in a
  private scratch directory

Usage:
    from zoomtiler.tiling.pixels import PillowPixelOps

    with PillowPixelOps() as ops:
        src = ops.open_source(Path("input.jpg"))
        strip = ops.crop(src, TileRect(0, 0, 1024, 256))
        ops.save(strip, Path("strip.jpg"), quality=85)
"""

from __future__ import annotations

import itertools
import logging
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Sequence

from PIL import Image

from zoomtiler import config
from zoomtiler.core.types import TileRect
from zoomtiler.errors import ExternalToolError, OutputWriteError

from .command import run_external_tool

logger = logging.getLogger(__name__)

#: Pillow encoder names for tile extensions
PIL_FORMATS: dict[str, str] = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
}


class PixelOps(ABC):
    """Image operations over opaque handles.

    Handles returned by one instance are only valid with that instance.
    Every handle should be passed to ``release`` once it is no longer used.
    """

    @abstractmethod
    def open_source(self, path: Path) -> Any:
        """Decode the source image once and return a handle to it."""

    @abstractmethod
    def crop(self, image: Any, rect: TileRect) -> Any:
        """Return a new image holding ``rect`` of ``image``."""

    @abstractmethod
    def resize(self, image: Any, width: int, height: int) -> Any:
        """Return ``image`` resized to exactly (width, height)."""

    @abstractmethod
    def stack(self, images: Sequence[Any]) -> Any:
        """Return the images appended top to bottom."""

    @abstractmethod
    def save(self, image: Any, path: Path, quality: int) -> None:
        """Encode ``image`` to ``path``; the format follows the suffix."""

    @abstractmethod
    def release(self, image: Any) -> None:
        """Free an image handle."""

    def save_region(self, image: Any, rect: TileRect, path: Path, quality: int) -> None:
        """Encode one region of ``image`` to ``path``."""
        tile = self.crop(image, rect)
        try:
            self.save(tile, path, quality)
        finally:
            self.release(tile)

    def close(self) -> None:
        """Release any resources held by the instance."""

    def __enter__(self) -> PixelOps:
        return self

    def __exit__(self, *args) -> None:
        self.close()


class PillowPixelOps(PixelOps):
    """Pillow-based pixel operations.

    The whole source is decoded into memory once; strips and tiles are
    cropped from it. Resizing uses Lanczos resampling.
    """

    def open_source(self, path: Path) -> Image.Image:
        Image.MAX_IMAGE_PIXELS = config.MAX_IMAGE_PIXELS or None
        try:
            with Image.open(path) as img:
                img.load()
                return self._normalize_mode(img)
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise ExternalToolError(f"Pillow cannot decode {path}: {e}") from e

    @staticmethod
    def _normalize_mode(img: Image.Image) -> Image.Image:
        """Convert palette and exotic modes to RGB(A) so resizing is smooth."""
        if img.mode in ("RGB", "RGBA", "L", "LA"):
            return img.copy()
        has_alpha = "A" in img.getbands() or "transparency" in img.info
        return img.convert("RGBA" if has_alpha else "RGB")

    def crop(self, image: Image.Image, rect: TileRect) -> Image.Image:
        x, y, width, height = rect
        return image.crop((x, y, x + width, y + height))

    def resize(self, image: Image.Image, width: int, height: int) -> Image.Image:
        if image.size == (width, height):
            return image.copy()
        return image.resize((width, height), Image.Resampling.LANCZOS)

    def stack(self, images: Sequence[Image.Image]) -> Image.Image:
        width = max(img.width for img in images)
        height = sum(img.height for img in images)
        combined = Image.new(images[0].mode, (width, height))
        y = 0
        for img in images:
            combined.paste(img, (0, y))
            y += img.height
        return combined

    def save(self, image: Image.Image, path: Path, quality: int) -> None:
        fmt = PIL_FORMATS.get(path.suffix.lower().lstrip("."))
        if fmt is None:
            raise ExternalToolError(f"No Pillow encoder for {path.suffix!r}")
        if fmt == "JPEG" and image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        params: dict[str, Any] = {}
        if fmt in ("JPEG", "WEBP"):
            params["quality"] = quality
        elif fmt == "PNG":
            params["optimize"] = False
        try:
            image.save(path, fmt, **params)
        except OSError as e:
            raise OutputWriteError(f"Cannot write {path}: {e}") from e

    def release(self, image: Image.Image) -> None:
        image.close()


class MagickPixelOps(PixelOps):
    """ImageMagick command line pixel operations.

    Intermediate images are lossless MIFF files in a scratch directory that
    is removed by ``close()``. The source is converted once into an
    ImageMagick pixel cache (``.mpc``), which later crops read without
    decoding the original again.

    Args:
        convert_path: Path to ``magick`` (ImageMagick 7) or ``convert`` (6)
    """

    def __init__(self, convert_path: str) -> None:
        self.convert_path = convert_path
        self._scratch = Path(tempfile.mkdtemp(prefix="zoomtiler-"))
        self._names = itertools.count()

    def _new_path(self, suffix: str = ".miff") -> Path:
        return self._scratch / f"img{next(self._names)}{suffix}"

    def _convert(self, *args: str | Path) -> None:
        run_external_tool([self.convert_path, *(str(a) for a in args)])

    def identify(self, path: Path) -> tuple[int, int, str]:
        """Return (width, height, format) of the first frame of ``path``."""
        out = run_external_tool(
            [self.convert_path, f"{path}[0]", "-format", "%w %h %m", "info:"]
        )
        try:
            width, height, fmt = out.split()[:3]
            return int(width), int(height), fmt
        except ValueError as e:
            raise ExternalToolError(f"Unexpected identify output {out!r}") from e

    def open_source(self, path: Path) -> Path:
        cache = self._new_path(".mpc")
        self._convert(f"{path}[0]", cache)
        return cache

    def crop(self, image: Path, rect: TileRect) -> Path:
        out = self._new_path()
        self._convert(image, "-crop", _geometry(rect), "+repage", out)
        return out

    def resize(self, image: Path, width: int, height: int) -> Path:
        out = self._new_path()
        self._convert(image, "-resize", f"{width}x{height}!", out)
        return out

    def stack(self, images: Sequence[Path]) -> Path:
        out = self._new_path()
        self._convert(*images, "-append", "+repage", out)
        return out

    def save(self, image: Path, path: Path, quality: int) -> None:
        self._convert(image, *self._encode_args(path, quality), path)

    def save_region(self, image: Path, rect: TileRect, path: Path, quality: int) -> None:
        self._convert(
            image, "-crop", _geometry(rect), "+repage",
            *self._encode_args(path, quality), path,
        )

    @staticmethod
    def _encode_args(path: Path, quality: int) -> list[str]:
        args = ["-quality", str(quality)]
        if path.suffix.lower() in (".jpg", ".jpeg"):
            # JPEG has no alpha channel
            args = ["-background", "black", "-alpha", "remove", "-alpha", "off", *args]
        return args

    def release(self, image: Path) -> None:
        image.unlink(missing_ok=True)
        if image.suffix == ".mpc":
            image.with_suffix(".cache").unlink(missing_ok=True)

    def close(self) -> None:
        shutil.rmtree(self._scratch, ignore_errors=True)


def _geometry(rect: TileRect) -> str:
    return f"{rect.width}x{rect.height}+{rect.x}+{rect.y}"
