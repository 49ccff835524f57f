"""Shared type definitions for the zoomtiler core module."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple


class TileCoord(NamedTuple):
    """Coordinate of a tile in the pyramid.

    Attributes:
        tier: Pyramid tier (0 = lowest resolution)
        col: Column index (0-based)
        row: Row index (0-based)
    """

    tier: int
    col: int
    row: int


class TileRect(NamedTuple):
    """Pixel rectangle of a tile in its tier's coordinates."""

    x: int
    y: int
    width: int
    height: int


class ScaleLevel(NamedTuple):
    """One resolution tier of the pyramid.

    Attributes:
        tier: Tier index (0 = lowest resolution)
        width: Tier width in pixels
        height: Tier height in pixels
    """

    tier: int
    width: int
    height: int

    def cols(self, tile_size: int) -> int:
        """Number of tile columns at this tier."""
        return (self.width + tile_size - 1) // tile_size

    def rows(self, tile_size: int) -> int:
        """Number of tile rows at this tier."""
        return (self.height + tile_size - 1) // tile_size

    def row_height(self, row: int, tile_size: int) -> int:
        """Height of a row strip; only the last row may be shorter than a tile."""
        return min(tile_size, self.height - row * tile_size)


@dataclass(frozen=True)
class SourceImage:
    """A measured source image.

    Attributes:
        path: Resolved path to the image file
        width: Width in pixels
        height: Height in pixels
        format: Decoder format name (e.g. "JPEG", "PNG", "TIFF")
    """

    path: Path
    width: int
    height: int
    format: str = ""
