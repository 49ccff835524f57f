"""Pyramid planning and manifest handling for zoomtiler."""

from .types import ScaleLevel, SourceImage, TileCoord, TileRect
from .scale import compute_levels
from .grouping import group_name, iter_tile_coords, plan_groups, tile_filename
from .plan import PyramidPlan, build_plan
from .manifest import (
    ImageProperties,
    ZoomifyStatus,
    check_zoomify_status,
    count_tiles,
    read_manifest,
    write_manifest,
)

__all__ = [
    "ScaleLevel",
    "SourceImage",
    "TileCoord",
    "TileRect",
    "compute_levels",
    "group_name",
    "iter_tile_coords",
    "plan_groups",
    "tile_filename",
    "PyramidPlan",
    "build_plan",
    "ImageProperties",
    "ZoomifyStatus",
    "check_zoomify_status",
    "count_tiles",
    "read_manifest",
    "write_manifest",
]
