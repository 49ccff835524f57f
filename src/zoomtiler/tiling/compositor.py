"""Tier-by-tier tile composition for processors without a native pyramid writer.

The source image is decoded once and cut into full-width row strips of
``tile_size`` pixels. Each strip is cut into tiles, then shrunk by half to
seed the next coarser tier: two consecutive seeds (rows ``2r`` and
``2r + 1``) are fitted to the coarser tier's geometry and stacked into that
tier's row ``r``, which is tiled and shrunk in turn, down to tier 0.

Row images are kept only until their tiles and seed exist, so the number of
live intermediate images stays proportional to the number of tiers and not
to the image size.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable

from zoomtiler.core.plan import PyramidPlan
from zoomtiler.core.types import ScaleLevel, TileRect
from zoomtiler.errors import OutputWriteError

from .pixels import PixelOps

logger = logging.getLogger(__name__)

# (tier, row, row image)
_RowJob = tuple[int, int, Any]


class TileCompositor:
    """Writes every tile of a ``PyramidPlan`` from a single decode of the source.

    Args:
        pixels: Pixel operations used for crop/resize/stack/encode
        plan: Pyramid plan (levels and tile groups)
        destination: Output directory holding the TileGroup folders
        overlap: Pixels added on every side of each tile, clamped to the
            tier bounds and to ``tile_size``
        quality: Encoder quality (1-100)
        progress_callback: Optional callback(stage, current, total)
    """

    def __init__(
        self,
        pixels: PixelOps,
        plan: PyramidPlan,
        destination: Path,
        overlap: int = 0,
        quality: int = 85,
        progress_callback: Callable[[str, int, int], None] | None = None,
    ) -> None:
        self.pixels = pixels
        self.plan = plan
        self.destination = Path(destination)
        self.tile_size = plan.tile_size
        if overlap > plan.tile_size:
            logger.warning(
                "Tile overlap %d exceeds tile size %d, clamping", overlap, plan.tile_size
            )
            overlap = plan.tile_size
        self.overlap = overlap
        self.quality = quality
        self.progress_callback = progress_callback

        self._count = 0
        # Half-size row images waiting for their coarser row: (tier, row) -> (image, height)
        self._seeds: dict[tuple[int, int], tuple[Any, int]] = {}
        # Overlap mode only: row image waiting for the next row of its tier
        self._held: dict[int, tuple[int, Any]] = {}
        # Overlap mode only: bottom edge of the previous row of a tier
        self._margins: dict[int, Any] = {}

    @property
    def tile_count(self) -> int:
        """Tiles written so far."""
        return self._count

    def composite(self, source_path: Path) -> int:
        """Write all tiles of the plan.

        Args:
            source_path: Path to the source image

        Returns:
            Number of tiles written

        Raises:
            ExternalToolError: If a pixel operation fails
            OutputWriteError: If a tile cannot be written
        """
        self._prepare_groups()

        finest = self.plan.finest
        source = self.pixels.open_source(Path(source_path))
        try:
            for row in range(finest.rows(self.tile_size)):
                strip = self.pixels.crop(
                    source,
                    TileRect(
                        0,
                        row * self.tile_size,
                        finest.width,
                        finest.row_height(row, self.tile_size),
                    ),
                )
                self._run([(finest.tier, row, strip)])
        finally:
            self.pixels.release(source)
            self._release_pending()

        if self._count != self.plan.tile_count:
            logger.warning(
                "Wrote %d tiles, plan expected %d", self._count, self.plan.tile_count
            )
        logger.debug("Composited %d tiles in %d tiers", self._count, len(self.plan.levels))
        return self._count

    def _prepare_groups(self) -> None:
        """Create the TileGroup directories listed by the plan."""
        for name in self.plan.group_names():
            try:
                (self.destination / name).mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise OutputWriteError(f"Cannot create {self.destination / name}: {e}") from e

    def _run(self, jobs: list[_RowJob]) -> None:
        """Process row images until no coarser row becomes ready."""
        while jobs:
            tier, row, image = jobs.pop()
            level = self.plan.levels[tier]

            if tier > 0:
                try:
                    self._make_seed(level, row, image)
                except Exception:
                    self.pixels.release(image)
                    raise

            if self.overlap:
                self._emit_overlapping(level, row, image)
            else:
                try:
                    self._emit_tiles(level, row, image, row * self.tile_size)
                finally:
                    self.pixels.release(image)

            if tier > 0:
                job = self._compose_parent(level, row)
                if job is not None:
                    jobs.append(job)

    def _make_seed(self, level: ScaleLevel, row: int, image: Any) -> None:
        height = level.row_height(row, self.tile_size)
        seed_height = max(1, height // 2)
        seed = self.pixels.resize(image, max(1, level.width // 2), seed_height)
        self._seeds[(level.tier, row)] = (seed, seed_height)

    def _compose_parent(self, level: ScaleLevel, row: int) -> _RowJob | None:
        """Build the coarser row depending on ``row`` once all its seeds exist.

        Returns:
            The coarser row job, or None if a dependency is still missing
        """
        tier = level.tier
        coarser = self.plan.levels[tier - 1]
        parent = row // 2

        if parent >= coarser.rows(self.tile_size):
            # Floor-halving dropped the pixels of this row from the coarser tier
            seed, _ = self._seeds.pop((tier, row))
            self.pixels.release(seed)
            return None

        finer_rows = level.rows(self.tile_size)
        deps = [r for r in (2 * parent, 2 * parent + 1) if r < finer_rows]
        if any((tier, r) not in self._seeds for r in deps):
            return None

        seeds = [self._seeds.pop((tier, r)) for r in deps]
        expected = coarser.row_height(parent, self.tile_size)
        if len(seeds) == 2 and expected >= 2:
            h1, h2 = seeds[0][1], seeds[1][1]
            first = min(expected - 1, max(1, round(expected * h1 / (h1 + h2))))
            targets = [first, expected - first]
        else:
            targets = [expected]

        parts = []
        try:
            for (seed, _), target in zip(seeds, targets):
                parts.append(self.pixels.resize(seed, coarser.width, target))
            composed = parts[0] if len(parts) == 1 else self.pixels.stack(parts)
        except Exception:
            for part in parts:
                self.pixels.release(part)
            raise
        finally:
            for seed, _ in seeds:
                self.pixels.release(seed)
        if len(parts) > 1:
            for part in parts:
                self.pixels.release(part)

        logger.debug(
            "Composed tier %d row %d from tier %d rows %s",
            coarser.tier, parent, tier, deps,
        )
        return coarser.tier, parent, composed

    def _emit_overlapping(self, level: ScaleLevel, row: int, image: Any) -> None:
        """Emit the previous row of this tier now that its lower neighbour exists."""
        tier = level.tier
        last_row = level.rows(self.tile_size) - 1

        held = self._held.pop(tier, None)
        if held is not None:
            held_row, held_image = held
            try:
                self._emit_with_context(level, held_row, held_image, below=image)
            except Exception:
                self.pixels.release(image)
                raise

        if row == last_row:
            self._emit_with_context(level, row, image, below=None)
        else:
            self._held[tier] = (row, image)

    def _emit_with_context(
        self, level: ScaleLevel, row: int, image: Any, below: Any | None
    ) -> None:
        """Emit a row's tiles with up to ``overlap`` pixels of its neighbours.

        Consumes ``image`` and the stored margin of the row above, and stores
        this row's bottom margin for the next row.
        """
        tier = level.tier
        width = level.width
        height = level.row_height(row, self.tile_size)
        above = self._margins.pop(tier, None)

        parts = []
        top = row * self.tile_size
        if above is not None:
            parts.append(above)
            top -= min(self.overlap, self.tile_size)
        parts.append(image)

        padded = image
        try:
            if below is not None:
                below_height = min(self.overlap, level.row_height(row + 1, self.tile_size))
                parts.append(self.pixels.crop(below, TileRect(0, 0, width, below_height)))
            if len(parts) > 1:
                padded = self.pixels.stack(parts)
            self._emit_tiles(level, row, padded, top)
            if below is not None:
                margin = min(self.overlap, height)
                self._margins[tier] = self.pixels.crop(
                    image, TileRect(0, height - margin, width, margin)
                )
        finally:
            if padded is not image:
                self.pixels.release(padded)
            for part in parts:
                self.pixels.release(part)

    def _emit_tiles(self, level: ScaleLevel, row: int, image: Any, top: int) -> None:
        """Encode the tiles of one row.

        Args:
            level: Tier of the row
            row: Row index within the tier
            image: Row image, possibly padded with neighbouring rows
            top: Tier y coordinate of the first pixel row of ``image``
        """
        for col in range(level.cols(self.tile_size)):
            rect = self.plan.tile_rect(level.tier, col, row, self.overlap)
            local = TileRect(rect.x, rect.y - top, rect.width, rect.height)
            path = self.plan.tile_path(self.destination, level.tier, col, row)
            self.pixels.save_region(image, local, path, self.quality)
            self._count += 1
            if self.progress_callback:
                self.progress_callback("tiles", self._count, self.plan.tile_count)

    def _release_pending(self) -> None:
        """Free intermediate images left behind by an aborted run."""
        for seed, _ in self._seeds.values():
            self.pixels.release(seed)
        for _, image in self._held.values():
            self.pixels.release(image)
        for margin in self._margins.values():
            self.pixels.release(margin)
        self._seeds.clear()
        self._held.clear()
        self._margins.clear()
