"""Running external image tools (ImageMagick, vips)."""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Sequence

from zoomtiler.errors import ExternalToolError

logger = logging.getLogger(__name__)


def find_executable(*names: str) -> str | None:
    """Return the full path of the first of ``names`` found on PATH."""
    for name in names:
        path = shutil.which(name)
        if path:
            return path
    return None


def run_external_tool(args: Sequence[str]) -> str:
    """Run a command and return its standard output.

    Args:
        args: Program and arguments (no shell is involved)

    Returns:
        Standard output with surrounding whitespace removed

    Raises:
        ExternalToolError: If the program cannot be started or exits non-zero
    """
    command = [str(a) for a in args]
    logger.debug("Running %s", " ".join(command))
    try:
        completed = subprocess.run(
            command,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        raise ExternalToolError(f"Cannot run {command[0]}: {e}", command=command) from e

    if completed.returncode != 0:
        raise ExternalToolError(
            f"{command[0]} exited with status {completed.returncode}",
            command=command,
            returncode=completed.returncode,
            stderr=completed.stderr,
        )
    return completed.stdout.strip()
