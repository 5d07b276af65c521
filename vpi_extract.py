#!/usr/bin/env python3
"""Extraction engine: materialize archive entries under an install directory.

Extraction runs in two passes:

1. Every entry name is normalized and checked. A single unsafe name aborts
   the whole extraction before anything is written.
2. Entries are written one at a time. Each file goes to a temporary name in
   its target directory and is renamed into place, so a reader never sees a
   truncated file. Existing files at the same path are overwritten.
"""

from __future__ import annotations

import logging
import os
import posixpath
import re
import threading
import unicodedata
from pathlib import Path
from typing import IO, Iterable, Iterator, List, Optional, Tuple

from vpi_archive import ARCHIVE_READ_ERRORS, ArchiveEntry, ArchiveReader
from vpi_errors import ExtractionError, InstallCancelled, PathTraversalError
from vpi_fs import ensure_directory, write_file_atomic
from vpi_metadata import RESERVED_NAMES

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

CHUNK_SIZE = 65536

# Maximum path component length (security hardening)
MAX_PATH_COMPONENT_LENGTH = 255

_DRIVE_PATTERN = re.compile(r"^[A-Za-z]:")


# =============================================================================
# Entry Name Checks
# =============================================================================


def normalize_entry_name(name: str) -> str:
    """
    Normalize an archive entry name.

    - Converts backslashes to forward slashes
    - Applies Unicode NFC normalization
    - Strips leading ./
    """
    normalized = name.replace("\\", "/")
    normalized = unicodedata.normalize("NFC", normalized)
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def check_entry_name(name: str) -> str:
    """
    Return the lexically normalized relative path for an entry name.

    An empty result means the entry names the destination itself.

    Raises:
        PathTraversalError: If the entry is absolute or escapes via ..
        ExtractionError: If the name is malformed or reserved
    """
    if not name:
        raise ExtractionError("Empty entry name in archive")

    if "\x00" in name:
        raise ExtractionError(f"Entry name contains NUL byte: {name!r}")

    normalized = normalize_entry_name(name)

    if normalized.startswith("/") or _DRIVE_PATTERN.match(normalized):
        raise PathTraversalError(f"Absolute path not allowed in archive: {name}")

    relative = posixpath.normpath(normalized) if normalized else "."
    if relative == ".." or relative.startswith("../"):
        raise PathTraversalError(f"Archive entry escapes destination: {name}")
    if relative == ".":
        return ""

    for component in relative.split("/"):
        if len(component) > MAX_PATH_COMPONENT_LENGTH:
            raise ExtractionError(
                "Path component exceeds "
                f"{MAX_PATH_COMPONENT_LENGTH} characters: {component[:50]}..."
            )

    if relative.split("/", 1)[0].lower() in RESERVED_NAMES:
        raise ExtractionError(f"Archive entry uses a reserved install file name: {name}")

    return relative


def resolve_entry_path(destination: Path, name: str) -> Optional[Path]:
    """Join an entry name to destination, rejecting anything outside it.

    The check is lexical; symlinks already on disk are not followed.
    Returns None when the entry names destination itself.
    """
    relative = check_entry_name(name)
    if not relative:
        return None

    root = os.path.normpath(os.path.abspath(destination))
    resolved = os.path.normpath(os.path.join(root, *relative.split("/")))
    if os.path.commonpath([root, resolved]) != root or resolved == root:
        raise PathTraversalError(f"Archive entry escapes destination: {name}")
    return Path(resolved)


def _iter_entry_chunks(src: IO[bytes], name: str) -> Iterator[bytes]:
    while True:
        try:
            chunk = src.read(CHUNK_SIZE)
        except (OSError, *ARCHIVE_READ_ERRORS) as exc:
            raise ExtractionError(f"Cannot read archive entry {name}: {exc}") from exc
        if not chunk:
            return
        yield chunk


# =============================================================================
# Extraction
# =============================================================================


def plan_extraction(
    entries: Iterable[ArchiveEntry],
    destination: Path,
    excludes: Iterable[str] = (),
    reserved: Iterable[str] = (),
) -> List[Tuple[ArchiveEntry, Path]]:
    """Check every entry name and return (entry, target) pairs to materialize.

    reserved holds extra top-level names the caller writes after extraction.
    """
    excluded = set(excludes)
    taken = {name.lower() for name in reserved}
    plan: List[Tuple[ArchiveEntry, Path]] = []

    for entry in entries:
        is_dir = entry.is_dir or entry.name.endswith(("/", "\\"))
        target = resolve_entry_path(destination, entry.name)
        if target is None:
            if is_dir:
                continue
            raise ExtractionError(f"Archive entry has no file name: {entry.name!r}")

        top = target.relative_to(os.path.normpath(os.path.abspath(destination))).parts[0]
        if top.lower() in taken:
            raise ExtractionError(f"Archive entry uses a reserved install file name: {entry.name}")
        if top in excluded:
            logger.debug("Skipping excluded entry %s", entry.name)
            continue

        plan.append((entry._replace(is_dir=is_dir), target))

    return plan


def extract(
    reader: ArchiveReader,
    destination: Path,
    excludes: Iterable[str] = (),
    cancel: Optional[threading.Event] = None,
    reserved: Iterable[str] = (),
) -> int:
    """
    Extract every entry from reader under destination.

    Args:
        reader: Open archive reader
        destination: Canonical install directory (created if absent)
        excludes: Top-level names to skip
        cancel: Checked between entries; never interrupts a file write
        reserved: Extra top-level names that no entry may use

    Returns:
        Number of files written

    Raises:
        PathTraversalError: If any entry would land outside destination
        ExtractionError: If the archive or an entry cannot be read
        InstallIOError: If a directory or file cannot be written
        InstallCancelled: If cancel is set between entries
    """
    destination = Path(destination)
    plan = plan_extraction(reader.list_entries(), destination, excludes, reserved)

    ensure_directory(destination)

    file_count = 0
    for entry, target in plan:
        if cancel is not None and cancel.is_set():
            raise InstallCancelled(f"Extraction cancelled before entry {entry.name}")

        if entry.is_dir:
            ensure_directory(target)
            continue

        with reader.open_entry(entry.name) as src:
            write_file_atomic(target, _iter_entry_chunks(src, entry.name))
        file_count += 1
        logger.debug("Extracted %s", entry.name)

    logger.info("Extracted %d file(s) into %s", file_count, destination)
    return file_count
