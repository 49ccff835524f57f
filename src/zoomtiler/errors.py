"""Exception types raised by zoomtiler."""

from __future__ import annotations

from typing import Sequence


class ZoomifyError(Exception):
    """Base class for all zoomtiler errors."""


class ConfigurationError(ZoomifyError):
    """No usable processor, or invalid tiling options.

    Raised at construction time, before any file is touched.
    """


class SourceNotFoundError(ZoomifyError, FileNotFoundError):
    """The source image is missing or unreadable."""


class ExternalToolError(ZoomifyError):
    """An image library call or external command failed.

    Attributes:
        command: Command line that was run, if any
        returncode: Process exit status, if any
        stderr: Captured standard error, if any
    """

    def __init__(
        self,
        message: str,
        command: Sequence[str] | None = None,
        returncode: int | None = None,
        stderr: str | None = None,
    ) -> None:
        super().__init__(message)
        self.command = list(command) if command is not None else None
        self.returncode = returncode
        self.stderr = stderr

    def __str__(self) -> str:
        message = super().__str__()
        if self.stderr:
            return f"{message}: {self.stderr.strip()}"
        return message


class OutputWriteError(ZoomifyError, OSError):
    """A tile or the manifest could not be written."""


class ManifestError(ZoomifyError):
    """ImageProperties.xml is missing required attributes or is not valid XML."""
