"""Test fixtures for zoomtiler tests."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Generator

import numpy as np
import pytest
from PIL import Image


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that's cleaned up after tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def make_rgb_array(width: int, height: int) -> np.ndarray:
    """Create an RGB test image with colored quadrants and a gradient."""
    img = np.zeros((height, width, 3), dtype=np.uint8)
    half_w, half_h = width // 2, height // 2

    # Top-left: red, top-right: green, bottom-left: blue, bottom-right: purple
    img[:half_h, :half_w] = [200, 50, 50]
    img[:half_h, half_w:] = [50, 200, 50]
    img[half_h:, :half_w] = [50, 50, 200]
    img[half_h:, half_w:] = [150, 50, 150]

    # Horizontal gradient in the green channel so tiles differ
    img[:, :, 1] = (np.arange(width) * 255 // max(1, width - 1)).astype(np.uint8)
    return img


@pytest.fixture
def sample_image(temp_dir: Path) -> Path:
    """A 1217x797 JPEG, a size that exercises odd halving and partial tiles."""
    path = temp_dir / "sample.jpg"
    Image.fromarray(make_rgb_array(1217, 797)).save(path, "JPEG", quality=90)
    return path


@pytest.fixture
def small_image(temp_dir: Path) -> Path:
    """A 300x130 PNG: tiers 75x32, 150x65, 300x130 (9 tiles) at tile size 128."""
    path = temp_dir / "small.png"
    Image.fromarray(make_rgb_array(300, 130)).save(path, "PNG")
    return path


@pytest.fixture
def write_png():
    """Write a generated RGB PNG of the given size and return its pixels."""

    def _write(path: Path, width: int, height: int) -> np.ndarray:
        arr = make_rgb_array(width, height)
        Image.fromarray(arr).save(path, "PNG")
        return arr

    return _write
