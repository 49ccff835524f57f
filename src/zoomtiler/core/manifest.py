"""ImageProperties.xml manifest and validation of Zoomify output directories."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from zoomtiler.config import (
    MANIFEST_FILENAME,
    MANIFEST_VERSION,
    TILE_GROUP_PREFIX,
)
from zoomtiler.errors import ManifestError, OutputWriteError

logger = logging.getLogger(__name__)


class ZoomifyStatus(Enum):
    """Status of an existing Zoomify destination directory."""

    NOT_EXISTS = "not_exists"  # No destination directory
    COMPLETE = "complete"  # Manifest matches the tiles on disk
    INCOMPLETE = "incomplete"  # Missing manifest or tiles
    CORRUPTED = "corrupted"  # Unreadable manifest


@dataclass(frozen=True)
class ImageProperties:
    """Values stored in ImageProperties.xml."""

    width: int
    height: int
    num_tiles: int
    tile_size: int
    num_images: int = 1
    version: str = MANIFEST_VERSION

    def to_xml(self) -> str:
        return (
            f'<IMAGE_PROPERTIES WIDTH="{self.width}" HEIGHT="{self.height}" '
            f'NUMTILES="{self.num_tiles}" NUMIMAGES="{self.num_images}" '
            f'TILESIZE="{self.tile_size}" VERSION="{self.version}" />\n'
        )


def write_manifest(
    path: Path, width: int, height: int, tile_count: int, tile_size: int
) -> None:
    """Write ImageProperties.xml.

    Args:
        path: Destination file (usually ``<destination>/ImageProperties.xml``)
        width: Source width in pixels
        height: Source height in pixels
        tile_count: Number of tiles written
        tile_size: Tile size in pixels

    Raises:
        OutputWriteError: If the file cannot be written
    """
    props = ImageProperties(
        width=width, height=height, num_tiles=tile_count, tile_size=tile_size
    )
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(props.to_xml())
    except OSError as e:
        raise OutputWriteError(f"Cannot write manifest {path}: {e}") from e
    logger.debug("Wrote %s", path)


def read_manifest(path: Path) -> ImageProperties:
    """Parse ImageProperties.xml.

    Attribute order is not significant, so manifests written by libvips
    parse as well.

    Raises:
        ManifestError: If the XML is malformed or attributes are missing
        OSError: If the file cannot be read
    """
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as e:
        raise ManifestError(f"Invalid XML in {path}: {e}") from e

    if root.tag != "IMAGE_PROPERTIES":
        raise ManifestError(f"Unexpected root element <{root.tag}> in {path}")

    try:
        return ImageProperties(
            width=int(root.attrib["WIDTH"]),
            height=int(root.attrib["HEIGHT"]),
            num_tiles=int(root.attrib["NUMTILES"]),
            tile_size=int(root.attrib["TILESIZE"]),
            num_images=int(root.attrib.get("NUMIMAGES", "1")),
            version=root.attrib.get("VERSION", MANIFEST_VERSION),
        )
    except KeyError as e:
        raise ManifestError(f"Missing attribute {e.args[0]} in {path}") from e
    except ValueError as e:
        raise ManifestError(f"Invalid attribute value in {path}: {e}") from e


def iter_tile_files(destination: Path) -> list[Path]:
    """List tile files under every TileGroup directory, sorted."""
    tiles: list[Path] = []
    for group_dir in destination.glob(f"{TILE_GROUP_PREFIX}*"):
        if group_dir.is_dir():
            tiles.extend(p for p in group_dir.iterdir() if p.is_file())
    return sorted(tiles)


def count_tiles(destination: Path) -> int:
    """Count the tile files physically present under ``destination``."""
    return len(iter_tile_files(destination))


def check_zoomify_status(destination: Path) -> ZoomifyStatus:
    """Check the status of an existing Zoomify destination directory.

    Args:
        destination: Path to the ``*_zdata`` directory

    Returns:
        ZoomifyStatus indicating the state
    """
    if not destination.exists():
        return ZoomifyStatus.NOT_EXISTS

    manifest_path = destination / MANIFEST_FILENAME
    if not manifest_path.exists():
        return ZoomifyStatus.INCOMPLETE

    try:
        props = read_manifest(manifest_path)
    except (ManifestError, OSError):
        return ZoomifyStatus.CORRUPTED

    on_disk = count_tiles(destination)
    if on_disk != props.num_tiles:
        logger.debug(
            "%s lists %d tiles but %d are on disk", manifest_path, props.num_tiles, on_disk
        )
        return ZoomifyStatus.INCOMPLETE

    return ZoomifyStatus.COMPLETE
