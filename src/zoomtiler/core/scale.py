"""Resolution tier sequencing."""

from __future__ import annotations

from zoomtiler.core.types import ScaleLevel


def compute_levels(width: int, height: int, tile_size: int) -> tuple[ScaleLevel, ...]:
    """Compute the pyramid tiers for an image.

    Starts from the full resolution and floor-halves both dimensions until
    the image fits in a single tile. A dimension is never halved below 1,
    so very thin images keep a one pixel edge instead of vanishing.

    Args:
        width: Source width in pixels
        height: Source height in pixels
        tile_size: Tile size in pixels

    Returns:
        Levels ordered from tier 0 (smallest) to the full resolution

    Raises:
        ValueError: If any argument is smaller than 1
    """
    if tile_size < 1:
        raise ValueError(f"tile_size must be >= 1, got {tile_size}")
    if width < 1 or height < 1:
        raise ValueError(f"Image dimensions must be positive, got {width}x{height}")

    dims = [(width, height)]
    w, h = width, height
    while w > tile_size or h > tile_size:
        w = max(1, w // 2)
        h = max(1, h // 2)
        dims.append((w, h))

    dims.reverse()  # tier 0 = smallest
    return tuple(ScaleLevel(tier=i, width=lw, height=lh) for i, (lw, lh) in enumerate(dims))
