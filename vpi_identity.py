#!/usr/bin/env python3
"""Package identity and canonical install path model.

A package is identified by an id and a dotted numeric version. Both end up
as path segments under the install root, so parsing is strict:

    <install root>/<lowercase id>/<normalized version>/

Nothing in this module touches the filesystem.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import NamedTuple, Union

from vpi_errors import InvalidIdError, InvalidVersionError

# =============================================================================
# Constants
# =============================================================================

# Same grammar as the NuGet package id validator: word groups joined by a
# single '_', '.' or '-'. Never matches path separators or '..'.
ID_PATTERN = re.compile(r"^\w+([_.-]\w+)*$", re.IGNORECASE)

MAX_ID_LENGTH = 100

# System.Version grammar: 2 to 4 components, each a non-negative Int32.
VERSION_PATTERN = re.compile(r"^[0-9]+(\.[0-9]+){1,3}$")

MAX_VERSION_COMPONENT = 2**31 - 1


# =============================================================================
# Data Types
# =============================================================================


class PackageId:
    """A validated package id. Equality and hashing ignore case."""

    __slots__ = ("_value",)

    def __init__(self, value: str):
        self._value = value

    @property
    def value(self) -> str:
        return self._value

    @property
    def folder_name(self) -> str:
        return self._value.lower()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PackageId):
            return NotImplemented
        return self.folder_name == other.folder_name

    def __hash__(self) -> int:
        return hash(self.folder_name)

    def __str__(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"PackageId({self._value!r})"


class PackageVersion(NamedTuple):
    """A dotted numeric version, compared as a (major, minor, patch, revision) tuple."""

    major: int
    minor: int
    patch: int = 0
    revision: int = 0

    def __str__(self) -> str:
        normalized = f"{self.major}.{self.minor}.{self.patch}"
        if self.revision:
            normalized += f".{self.revision}"
        return normalized


# =============================================================================
# Parsing
# =============================================================================


def parse_package_id(value: str) -> PackageId:
    """
    Parse a raw package id.

    Raises:
        InvalidIdError: If the id is empty, too long, or fails ID_PATTERN
    """
    if (
        not value
        or len(value) > MAX_ID_LENGTH
        or ID_PATTERN.fullmatch(value) is None
    ):
        raise InvalidIdError(
            f"value {value} should be a valid package id matching {ID_PATTERN.pattern}."
        )
    return PackageId(value)


def parse_package_version(value: str) -> PackageVersion:
    """
    Parse a raw dotted version such as "2.4" or "2.4.2.1".

    Raises:
        InvalidVersionError: If the string is not 2-4 numeric components
    """
    if not value or VERSION_PATTERN.fullmatch(value) is None:
        raise InvalidVersionError(f"value {value} should be a version.")

    components = [int(part) for part in value.split(".")]
    if any(c > MAX_VERSION_COMPONENT for c in components):
        raise InvalidVersionError(f"value {value} should be a version.")

    return PackageVersion(*components)


# =============================================================================
# Path Resolution
# =============================================================================


def resolve_install_path(
    install_root: Union[str, Path], package_id: PackageId, version: PackageVersion
) -> Path:
    """Return the canonical install directory for (root, id, version)."""
    return Path(install_root) / package_id.folder_name / str(version)


def format_identity(package_id: PackageId, version: PackageVersion) -> str:
    return f"{package_id.folder_name}@{version}"
