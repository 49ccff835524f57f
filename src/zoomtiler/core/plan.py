"""Immutable tiling plan shared by the compositor and the manifest writer."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Mapping

from zoomtiler.core.grouping import group_name, iter_tile_coords, plan_groups, tile_filename
from zoomtiler.core.scale import compute_levels
from zoomtiler.core.types import ScaleLevel, TileCoord, TileRect


@dataclass(frozen=True)
class PyramidPlan:
    """Tier geometry and tile group layout of one pyramid.

    Attributes:
        tile_size: Tile size in pixels
        tile_format: Tile file extension
        levels: Levels from tier 0 (smallest) to full resolution
        tile_count: Total number of tiles
        group_of: Read-only mapping of tile filename to group name
    """

    tile_size: int
    tile_format: str
    levels: tuple[ScaleLevel, ...]
    tile_count: int
    group_of: Mapping[str, str]

    @property
    def finest(self) -> ScaleLevel:
        """The full-resolution level."""
        return self.levels[-1]

    @property
    def group_count(self) -> int:
        """Number of TileGroup directories."""
        return (self.tile_count + self.tile_size - 1) // self.tile_size

    def group_names(self) -> list[str]:
        return [group_name(i) for i in range(self.group_count)]

    def tile_filename(self, tier: int, col: int, row: int) -> str:
        return tile_filename(tier, col, row, self.tile_format)

    def tile_path(self, destination: Path, tier: int, col: int, row: int) -> Path:
        """Return where a tile is stored under ``destination``.

        Raises:
            KeyError: If the tile is not part of the plan
        """
        filename = self.tile_filename(tier, col, row)
        return destination / self.group_of[filename] / filename

    def tile_rect(self, tier: int, col: int, row: int, overlap: int = 0) -> TileRect:
        """Pixel rectangle of a tile within its tier.

        The logical tile is the ``tile_size`` grid cell, truncated at the
        right and bottom edges. ``overlap`` pads it on every side, clamped
        to the tier bounds.
        """
        level = self.levels[tier]
        x = col * self.tile_size
        y = row * self.tile_size
        x0 = max(0, x - overlap)
        y0 = max(0, y - overlap)
        x1 = min(level.width, x + self.tile_size + overlap)
        y1 = min(level.height, y + self.tile_size + overlap)
        return TileRect(x0, y0, x1 - x0, y1 - y0)

    def iter_tiles(self) -> Iterator[TileCoord]:
        """Iterate tiles in global generation order."""
        return iter_tile_coords(self.levels, self.tile_size)


def build_plan(width: int, height: int, tile_size: int, tile_format: str) -> PyramidPlan:
    """Compute levels and tile groups for an image of the given size."""
    levels = compute_levels(width, height, tile_size)
    groups, count = plan_groups(levels, tile_size, tile_format)
    return PyramidPlan(
        tile_size=tile_size,
        tile_format=tile_format,
        levels=levels,
        tile_count=count,
        group_of=MappingProxyType(groups),
    )
