"""Tests for ImageProperties.xml and destination status checks."""

from __future__ import annotations

from pathlib import Path

import pytest

from zoomtiler.core.manifest import (
    ImageProperties,
    ZoomifyStatus,
    check_zoomify_status,
    count_tiles,
    read_manifest,
    write_manifest,
)
from zoomtiler.errors import ManifestError, OutputWriteError


class TestWriteManifest:
    def test_fixed_schema(self, temp_dir: Path) -> None:
        path = temp_dir / "ImageProperties.xml"
        write_manifest(path, 1217, 797, 29, 256)

        assert path.read_text(encoding="utf-8") == (
            '<IMAGE_PROPERTIES WIDTH="1217" HEIGHT="797" NUMTILES="29" '
            'NUMIMAGES="1" TILESIZE="256" VERSION="1.8" />\n'
        )

    def test_round_trip(self, temp_dir: Path) -> None:
        path = temp_dir / "ImageProperties.xml"
        write_manifest(path, 4000, 3000, 412, 256)
        assert read_manifest(path) == ImageProperties(
            width=4000, height=3000, num_tiles=412, tile_size=256
        )

    def test_unwritable_destination(self, temp_dir: Path) -> None:
        with pytest.raises(OutputWriteError):
            write_manifest(temp_dir / "missing" / "ImageProperties.xml", 1, 1, 1, 256)


class TestReadManifest:
    def test_attribute_order_is_free(self, temp_dir: Path) -> None:
        """libvips writes the attributes in a different order."""
        path = temp_dir / "ImageProperties.xml"
        path.write_text(
            '<IMAGE_PROPERTIES WIDTH="1217" HEIGHT="797" NUMTILES="29" '
            'NUMIMAGES="1" VERSION="1.8" TILESIZE="256" />'
        )
        props = read_manifest(path)
        assert (props.width, props.height, props.num_tiles, props.tile_size) == (
            1217, 797, 29, 256
        )

    @pytest.mark.parametrize(
        "content",
        [
            "<IMAGE_PROPERTIES WIDTH=",
            '<OTHER WIDTH="1" HEIGHT="1" NUMTILES="1" TILESIZE="1" />',
            '<IMAGE_PROPERTIES WIDTH="1" HEIGHT="1" TILESIZE="1" />',
            '<IMAGE_PROPERTIES WIDTH="x" HEIGHT="1" NUMTILES="1" TILESIZE="1" />',
        ],
        ids=["malformed", "wrong-root", "missing-attribute", "not-a-number"],
    )
    def test_invalid(self, temp_dir: Path, content: str) -> None:
        path = temp_dir / "ImageProperties.xml"
        path.write_text(content)
        with pytest.raises(ManifestError):
            read_manifest(path)


class TestZoomifyStatus:
    def _make_tiles(self, destination: Path, names: dict[str, list[str]]) -> None:
        for group, files in names.items():
            (destination / group).mkdir(parents=True)
            for name in files:
                (destination / group / name).write_bytes(b"tile")

    def test_not_exists(self, temp_dir: Path) -> None:
        assert check_zoomify_status(temp_dir / "none_zdata") == ZoomifyStatus.NOT_EXISTS

    def test_missing_manifest(self, temp_dir: Path) -> None:
        self._make_tiles(temp_dir, {"TileGroup0": ["0-0-0.jpg"]})
        assert check_zoomify_status(temp_dir) == ZoomifyStatus.INCOMPLETE

    def test_complete(self, temp_dir: Path) -> None:
        self._make_tiles(temp_dir, {
            "TileGroup0": ["0-0-0.jpg", "1-0-0.jpg"],
            "TileGroup1": ["1-1-0.jpg"],
        })
        write_manifest(temp_dir / "ImageProperties.xml", 600, 300, 3, 2)

        assert count_tiles(temp_dir) == 3
        assert check_zoomify_status(temp_dir) == ZoomifyStatus.COMPLETE

    def test_tile_count_mismatch(self, temp_dir: Path) -> None:
        self._make_tiles(temp_dir, {"TileGroup0": ["0-0-0.jpg"]})
        write_manifest(temp_dir / "ImageProperties.xml", 600, 300, 3, 256)
        assert check_zoomify_status(temp_dir) == ZoomifyStatus.INCOMPLETE

    def test_corrupted_manifest(self, temp_dir: Path) -> None:
        (temp_dir / "ImageProperties.xml").write_text("{not xml")
        assert check_zoomify_status(temp_dir) == ZoomifyStatus.CORRUPTED

    def test_other_files_are_not_tiles(self, temp_dir: Path) -> None:
        self._make_tiles(temp_dir, {"TileGroup0": ["0-0-0.jpg"]})
        (temp_dir / "vips-properties.xml").write_text("<properties/>")
        (temp_dir / "extra").mkdir()
        (temp_dir / "extra" / "0-0-0.jpg").write_bytes(b"x")
        assert count_tiles(temp_dir) == 1
