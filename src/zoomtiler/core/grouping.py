"""Assignment of tiles to TileGroup directories.

Zoomify caps every ``TileGroup{n}`` directory at ``tile_size`` tiles. Tiles
are numbered globally, tier 0 first and row-major within a tier, so group
boundaries fall on multiples of ``tile_size`` across the whole pyramid and
not per tier.
"""

from __future__ import annotations

from typing import Iterator, Sequence

from zoomtiler.config import TILE_GROUP_PREFIX
from zoomtiler.core.types import ScaleLevel, TileCoord


def tile_filename(tier: int, col: int, row: int, ext: str) -> str:
    """Return the file name of a tile, e.g. ``"2-3-1.jpg"``."""
    return f"{tier}-{col}-{row}.{ext}"


def group_name(index: int) -> str:
    """Return the directory name of a tile group, e.g. ``"TileGroup0"``."""
    return f"{TILE_GROUP_PREFIX}{index}"


def iter_tile_coords(levels: Sequence[ScaleLevel], tile_size: int) -> Iterator[TileCoord]:
    """Yield every tile coordinate in global generation order.

    Tiers go from 0 upwards; within a tier all columns of row 0 come
    first, then row 1, and so on.
    """
    for level in levels:
        cols = level.cols(tile_size)
        for row in range(level.rows(tile_size)):
            for col in range(cols):
                yield TileCoord(level.tier, col, row)


def plan_groups(
    levels: Sequence[ScaleLevel], tile_size: int, ext: str
) -> tuple[dict[str, str], int]:
    """Map every tile file name to its tile group.

    Args:
        levels: Pyramid levels from ``compute_levels``
        tile_size: Tile size in pixels, also the capacity of a group
        ext: Tile file extension

    Returns:
        Tuple of (mapping of tile filename to group name in generation
        order, total tile count)
    """
    groups: dict[str, str] = {}
    count = 0
    for coord in iter_tile_coords(levels, tile_size):
        groups[tile_filename(coord.tier, coord.col, coord.row, ext)] = group_name(
            count // tile_size
        )
        count += 1
    return groups, count
