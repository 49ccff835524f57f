"""CLI entry point for zoomtiler."""

from __future__ import annotations

import logging
import sys
from concurrent.futures import ProcessPoolExecutor, as_completed
from pathlib import Path

import click
from tqdm import tqdm

from zoomtiler.config import (
    DEFAULT_PARALLEL_IMAGES,
    DEFAULT_TILE_FORMAT,
    DEFAULT_TILE_OVERLAP,
    DEFAULT_TILE_QUALITY,
    DEFAULT_TILE_SIZE,
    DESTINATION_SUFFIX,
    IMAGE_EXTENSIONS,
    PROCESSOR,
    TILE_FORMATS,
    TileOptions,
)
from zoomtiler.errors import ConfigurationError
from zoomtiler.tiling.processors import PROCESSORS, get_processor
from zoomtiler.tiling.worker import process_single_image

logger = logging.getLogger(__name__)


def is_image_file(path: Path) -> bool:
    """Check if a file has a supported image extension."""
    return path.suffix.lower() in IMAGE_EXTENSIONS


def find_image_files(path: Path) -> list[Path]:
    """Find all image files in a path (file or directory)."""
    path = Path(path)
    if path.is_file():
        if is_image_file(path):
            return [path]
        return []
    elif path.is_dir():
        # Use set to avoid duplicates on case-insensitive filesystems (Windows)
        files = set()
        for ext in IMAGE_EXTENSIONS:
            files.update(path.glob(f"*{ext}"))
            files.update(path.glob(f"*{ext.upper()}"))
        return sorted(files)
    return []


def destination_for(image_path: Path, output_dir: Path | None) -> Path | None:
    """Destination of an image: ``output_dir/{stem}_zdata`` or None for the default."""
    if output_dir is None:
        return None
    return output_dir / f"{image_path.stem}{DESTINATION_SUFFIX}"


def _check_prerequisites(processor: str) -> str:
    """Resolve the processor name, exiting with an error if it is unusable."""
    try:
        return get_processor(processor).name
    except ConfigurationError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


def _print_header(
    image_files: list[Path], output_dir: Path | None, options: TileOptions,
    processor: str, force: bool,
) -> None:
    """Print the CLI banner with processing parameters."""
    click.echo(click.style("Zoomify Tiling", fg="cyan", bold=True))
    click.echo(click.style("=" * 40, fg="cyan"))
    click.echo(f"Found {len(image_files)} image file(s)")
    click.echo(f"Output directory: {output_dir or 'next to each image'}")
    click.echo(
        f"Tile size: {options.tile_size}px | Overlap: {options.tile_overlap}px | "
        f"{options.tile_format.upper()} Q{options.tile_quality} | Processor: {processor}"
    )
    if force:
        click.echo(click.style("Force mode: will rebuild existing destinations", fg="yellow"))
    click.echo()


def _process_images(
    image_files: list[Path],
    output_dir: Path | None,
    options: TileOptions,
    processor: str,
    parallel: int,
    force: bool,
) -> tuple[int, int, int, list[tuple[Path, str]]]:
    """Tile images in parallel using ProcessPoolExecutor.

    Args:
        image_files: List of image paths to process
        output_dir: Parent directory for the ``_zdata`` folders, or None
        options: Tile options
        processor: Processor name
        parallel: Number of parallel workers
        force: Rebuild existing destinations

    Returns:
        Tuple of (success_count, skipped_count, error_count, errors)
    """
    success_count = 0
    skipped_count = 0
    error_count = 0
    errors: list[tuple[Path, str]] = []

    with ProcessPoolExecutor(max_workers=parallel) as executor:
        futures = {
            executor.submit(
                process_single_image,
                f,
                destination_for(f, output_dir),
                options,
                processor,
                force,
            ): f
            for f in image_files
        }

        with tqdm(total=len(image_files), desc="Tiling images") as pbar:
            for future in as_completed(futures):
                image_path = futures[future]
                try:
                    result, error, was_skipped = future.result()
                except Exception as e:
                    # Worker crashed; partial output stays for a --force rerun
                    logger.error("Worker crashed processing %s: %s", image_path, e)
                    error_count += 1
                    errors.append((image_path, str(e)))
                    click.echo(f"\nWorker crashed processing {image_path.name}: {e}", err=True)
                    pbar.update(1)
                    continue

                if error:
                    error_count += 1
                    errors.append((image_path, error))
                    click.echo(f"\nError processing {image_path.name}: {error}", err=True)
                elif was_skipped:
                    skipped_count += 1
                else:
                    success_count += 1
                pbar.update(1)

    return success_count, skipped_count, error_count, errors


def _print_summary(
    success_count: int,
    skipped_count: int,
    error_count: int,
    errors: list[tuple[Path, str]],
    force: bool,
) -> None:
    """Print the colored processing summary and exit with error if any failures."""
    click.echo()
    click.echo(click.style("=" * 40, fg="cyan"))

    parts = []
    if success_count > 0:
        parts.append(click.style(f"{success_count} processed", fg="green"))
    if skipped_count > 0:
        parts.append(click.style(f"{skipped_count} skipped", fg="cyan"))
    if error_count > 0:
        parts.append(click.style(f"{error_count} failed", fg="red"))

    summary = ", ".join(parts) if parts else "Nothing to process"
    click.echo(click.style("Completed: ", bold=True) + summary)

    if skipped_count > 0 and not force:
        click.echo(click.style("  (use --force to rebuild existing destinations)", fg="cyan"))

    if errors:
        click.echo()
        click.echo(click.style("Failed images:", fg="red"))
        for path, error in errors:
            click.echo(f"  {path.name}: {error}")
        sys.exit(1)


@click.command()
@click.argument("input_path", type=click.Path(exists=True))
@click.option(
    "-o",
    "--output",
    type=click.Path(),
    default=None,
    help="Parent directory for the _zdata folders (default: next to each image)",
)
@click.option(
    "--tile-size",
    "-t",
    type=click.IntRange(min=1),
    default=DEFAULT_TILE_SIZE,
    help=f"Tile size in pixels, also the tiles per TileGroup (default: {DEFAULT_TILE_SIZE})",
)
@click.option(
    "--overlap",
    type=click.IntRange(min=0),
    default=DEFAULT_TILE_OVERLAP,
    help=f"Tile overlap in pixels (default: {DEFAULT_TILE_OVERLAP})",
)
@click.option(
    "--format",
    "tile_format",
    type=click.Choice(sorted(TILE_FORMATS), case_sensitive=False),
    default=DEFAULT_TILE_FORMAT,
    help=f"Tile format (default: {DEFAULT_TILE_FORMAT})",
)
@click.option(
    "--quality",
    "-q",
    type=click.IntRange(1, 100),
    default=DEFAULT_TILE_QUALITY,
    help=f"Encoder quality (default: {DEFAULT_TILE_QUALITY})",
)
@click.option(
    "--processor",
    "-p",
    type=click.Choice(["auto", *PROCESSORS], case_sensitive=False),
    default=PROCESSOR,
    help="Image library to use (default: first available)",
)
@click.option(
    "--parallel",
    type=click.IntRange(min=1),
    default=DEFAULT_PARALLEL_IMAGES,
    help=f"Process multiple images in parallel (default: {DEFAULT_PARALLEL_IMAGES})",
)
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Remove and rebuild destinations that already exist",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(
    input_path: str,
    output: str | None,
    tile_size: int,
    overlap: int,
    tile_format: str,
    quality: int,
    processor: str,
    parallel: int,
    force: bool,
    verbose: bool,
) -> None:
    """Convert images into Zoomify tile pyramids.

    INPUT_PATH can be a single image or a directory containing images.
    Each image produces a "<name>_zdata" folder with TileGroup directories
    and an ImageProperties.xml manifest.

    Examples:

        # Tile a single image next to itself
        python -m zoomtiler map.tif

        # Tile all images in a directory into ./tiles/
        python -m zoomtiler ./scans/ -o ./tiles/

        # PNG tiles with a 1px overlap using Pillow
        python -m zoomtiler map.tif --format png --overlap 1 -p pillow
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    input_path = Path(input_path)
    output_dir = Path(output) if output else None

    image_files = find_image_files(input_path)
    if not image_files:
        click.echo(f"No image files found in {input_path}", err=True)
        sys.exit(1)

    try:
        options = TileOptions(
            tile_size=tile_size,
            tile_overlap=overlap,
            tile_format=tile_format,
            tile_quality=quality,
        )
    except ConfigurationError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    processor = _check_prerequisites(processor)
    _print_header(image_files, output_dir, options, processor, force)

    if output_dir is not None:
        output_dir.mkdir(parents=True, exist_ok=True)

    success, skipped, error_count, errors = _process_images(
        image_files, output_dir, options, processor, parallel, force
    )
    _print_summary(success, skipped, error_count, errors, force)


if __name__ == "__main__":
    main()
