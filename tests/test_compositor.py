"""Tests for the tier-by-tier tile compositor."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np
import pytest
from PIL import Image

from zoomtiler.core.manifest import iter_tile_files
from zoomtiler.core.plan import build_plan
from zoomtiler.core.types import TileRect
from zoomtiler.errors import ExternalToolError
from zoomtiler.tiling.compositor import TileCompositor
from zoomtiler.tiling.pixels import PillowPixelOps


class RecordingPixelOps(PillowPixelOps):
    """Pillow pixel ops that track live handles and can fail on demand."""

    def __init__(self, fail_after_saves: int | None = None) -> None:
        self.live: dict[int, Any] = {}
        self.max_live = 0
        self.calls: list[str] = []
        self.saves = 0
        self.fail_after_saves = fail_after_saves

    def _track(self, image: Any) -> Any:
        self.live[id(image)] = image
        self.max_live = max(self.max_live, len(self.live))
        return image

    def open_source(self, path: Path) -> Any:
        self.calls.append("open_source")
        return self._track(super().open_source(path))

    def crop(self, image: Any, rect: TileRect) -> Any:
        assert id(image) in self.live, "crop of a released image"
        self.calls.append("crop")
        return self._track(super().crop(image, rect))

    def resize(self, image: Any, width: int, height: int) -> Any:
        assert id(image) in self.live, "resize of a released image"
        self.calls.append("resize")
        return self._track(super().resize(image, width, height))

    def stack(self, images):
        assert all(id(img) in self.live for img in images)
        self.calls.append("stack")
        return self._track(super().stack(images))

    def save(self, image: Any, path: Path, quality: int) -> None:
        if self.fail_after_saves is not None and self.saves >= self.fail_after_saves:
            raise ExternalToolError("encoder failed")
        self.saves += 1
        super().save(image, path, quality)

    def release(self, image: Any) -> None:
        assert id(image) in self.live, "double release"
        del self.live[id(image)]


def _composite(source: Path, destination: Path, tile_size: int, fmt: str = "png",
               overlap: int = 0, pixels=None):
    with Image.open(source) as img:
        width, height = img.size
    plan = build_plan(width, height, tile_size, fmt)
    pixels = pixels or PillowPixelOps()
    compositor = TileCompositor(pixels, plan, destination, overlap=overlap, quality=90)
    return plan, compositor.composite(source)


def _expected_files(plan, destination: Path) -> list[Path]:
    return sorted(
        plan.tile_path(destination, c.tier, c.col, c.row) for c in plan.iter_tiles()
    )


class TestTileCompositor:
    """Tests for TileCompositor with Pillow."""

    @pytest.mark.parametrize(
        "width, height, tile_size",
        [
            (300, 130, 128),
            (1217, 797, 256),
            (300, 513, 256),  # last pixel row is dropped by floor-halving
            (515, 300, 256),  # coarser tier has a one pixel last row
            (1000, 1, 256),  # thin image
            (97, 61, 8),  # many tiers and several tile groups
            (50, 40, 64),  # single tile
        ],
    )
    def test_writes_every_planned_tile(
        self, temp_dir: Path, write_png, width: int, height: int, tile_size: int
    ) -> None:
        source = temp_dir / "source.png"
        write_png(source, width, height)
        destination = temp_dir / "out"

        plan, count = _composite(source, destination, tile_size)

        assert count == plan.tile_count
        assert iter_tile_files(destination) == _expected_files(plan, destination)

    @pytest.mark.parametrize("overlap", [0, 3])
    def test_tile_dimensions_match_plan(self, temp_dir: Path, write_png, overlap: int) -> None:
        source = temp_dir / "source.png"
        write_png(source, 611, 403)
        destination = temp_dir / "out"

        plan, _ = _composite(source, destination, 64, overlap=overlap)

        for coord in plan.iter_tiles():
            rect = plan.tile_rect(coord.tier, coord.col, coord.row, overlap)
            with Image.open(plan.tile_path(destination, *coord)) as tile:
                assert tile.size == (rect.width, rect.height), coord

    def test_finest_tier_matches_source_pixels(self, temp_dir: Path, write_png) -> None:
        source = temp_dir / "source.png"
        arr = write_png(source, 300, 290)
        destination = temp_dir / "out"

        plan, _ = _composite(source, destination, 128, overlap=2)

        finest = plan.finest.tier
        for row in range(plan.finest.rows(128)):
            for col in range(plan.finest.cols(128)):
                x, y, w, h = plan.tile_rect(finest, col, row, 2)
                with Image.open(plan.tile_path(destination, finest, col, row)) as tile:
                    np.testing.assert_array_equal(np.asarray(tile), arr[y:y + h, x:x + w])

    def test_coarsest_tier_resembles_downscaled_source(self, temp_dir: Path, write_png) -> None:
        source = temp_dir / "source.png"
        arr = write_png(source, 512, 512)
        destination = temp_dir / "out"

        plan, _ = _composite(source, destination, 128)

        expected = np.asarray(
            Image.fromarray(arr).resize((128, 128), Image.Resampling.LANCZOS), dtype=np.int16
        )
        with Image.open(plan.tile_path(destination, 0, 0, 0)) as tile:
            actual = np.asarray(tile, dtype=np.int16)
        assert actual.shape == expected.shape
        assert np.abs(actual - expected).mean() < 8

    def test_decodes_source_once(self, temp_dir: Path, write_png) -> None:
        source = temp_dir / "source.png"
        write_png(source, 700, 500)
        pixels = RecordingPixelOps()

        _composite(source, temp_dir / "out", 100, pixels=pixels)

        assert pixels.calls.count("open_source") == 1

    def test_transient_images_are_bounded(self, temp_dir: Path, write_png) -> None:
        source = temp_dir / "source.png"
        write_png(source, 1217, 797)

        small = RecordingPixelOps()
        plan, _ = _composite(source, temp_dir / "a", 32, pixels=small)

        assert small.live == {}
        assert small.max_live <= len(plan.levels) + 6

    def test_overlap_releases_all_images(self, temp_dir: Path, write_png) -> None:
        source = temp_dir / "source.png"
        write_png(source, 400, 333)
        pixels = RecordingPixelOps()

        plan, count = _composite(source, temp_dir / "out", 50, overlap=4, pixels=pixels)

        assert count == plan.tile_count
        assert pixels.live == {}

    def test_failure_aborts_and_keeps_written_tiles(self, temp_dir: Path, write_png) -> None:
        source = temp_dir / "source.png"
        write_png(source, 600, 400)
        destination = temp_dir / "out"
        pixels = RecordingPixelOps(fail_after_saves=5)

        with pytest.raises(ExternalToolError):
            _composite(source, destination, 100, pixels=pixels)

        assert len(iter_tile_files(destination)) == 5
        assert pixels.live == {}

    def test_progress_callback(self, temp_dir: Path, write_png) -> None:
        source = temp_dir / "source.png"
        write_png(source, 300, 130)
        plan = build_plan(300, 130, 128, "jpg")
        events: list[tuple[str, int, int]] = []

        compositor = TileCompositor(
            PillowPixelOps(), plan, temp_dir / "out",
            progress_callback=lambda *args: events.append(args),
        )
        compositor.composite(source)

        assert events[-1] == ("tiles", plan.tile_count, plan.tile_count)
        assert [e[1] for e in events] == list(range(1, plan.tile_count + 1))
        assert compositor.tile_count == plan.tile_count

    def test_overlap_larger_than_tile_is_clamped(self, temp_dir: Path, write_png) -> None:
        source = temp_dir / "source.png"
        write_png(source, 90, 90)
        plan = build_plan(90, 90, 16, "png")

        compositor = TileCompositor(PillowPixelOps(), plan, temp_dir / "out", overlap=40)
        assert compositor.overlap == 16
        assert compositor.composite(source) == plan.tile_count
