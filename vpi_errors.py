#!/usr/bin/env python3
"""Error taxonomy shared by the VPI tools.

Every failure raised by the installer derives from InstallError so callers
can catch the whole family in one place. The CLI renders ``str(exc)``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class InstallError(Exception):
    """Base class for all installer failures."""

    pass


class ConfigurationError(InstallError, ValueError):
    """Raised when an install request or config file is malformed."""

    pass


class InvalidIdError(ConfigurationError):
    """Raised when a package id does not match the identity pattern."""

    pass


class InvalidVersionError(ConfigurationError):
    """Raised when a package version is not a dotted numeric version."""

    pass


class PathTraversalError(InstallError):
    """Raised when an archive entry would be written outside the install dir."""

    pass


class ExtractionError(InstallError):
    """Raised when an archive or one of its entries cannot be read."""

    pass


class InstallCancelled(InstallError):
    """Raised when extraction is cancelled between entries."""

    pass


class InstallIOError(InstallError):
    """Filesystem failure during extraction, metadata writing or locking."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None

    def __str__(self) -> str:
        message = self.args[0] if self.args else ""
        if self.path is not None:
            return f"{message}: {self.path}"
        return message


class MetadataError(InstallError):
    """Raised when a persisted content record or install marker is invalid."""

    pass
