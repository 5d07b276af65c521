#!/usr/bin/env python3
"""Filesystem helpers shared by extraction and metadata writing."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable

from vpi_errors import InstallIOError

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".vpi-"
TEMP_SUFFIX = ".tmp"

DEFAULT_FILE_MODE = 0o644


def _discard(tmp_path: Path) -> None:
    try:
        tmp_path.unlink()
    except FileNotFoundError:
        pass


def write_file_atomic(target: Path, chunks: Iterable[bytes], mode: int = DEFAULT_FILE_MODE) -> int:
    """
    Write chunks to target via a temp file in the same directory + rename.

    On any failure the temp file is removed and target is left untouched.

    Returns:
        Number of bytes written

    Raises:
        InstallIOError: If the filesystem rejects the write
    """
    target = Path(target)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX, dir=target.parent)
    except OSError as exc:
        raise InstallIOError(f"Cannot create file ({exc.strerror or exc})", target) from exc

    tmp_path = Path(tmp_name)
    size = 0
    try:
        with os.fdopen(fd, "wb") as dst:
            for chunk in chunks:
                dst.write(chunk)
                size += len(chunk)
            dst.flush()
            os.fsync(dst.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, target)
    except OSError as exc:
        _discard(tmp_path)
        raise InstallIOError(f"Cannot write file ({exc.strerror or exc})", target) from exc
    except BaseException:
        _discard(tmp_path)
        raise
    return size


def write_bytes_atomic(target: Path, data: bytes) -> int:
    return write_file_atomic(target, [data])


def ensure_directory(path: Path) -> None:
    try:
        Path(path).mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise InstallIOError(f"Cannot create directory ({exc.strerror or exc})", path) from exc


def remove_stale_temp_files(root: Path) -> int:
    """Delete temp files left under root by an interrupted write."""
    root = Path(root)
    if not root.is_dir():
        return 0

    removed = 0
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            if filename.startswith(TEMP_PREFIX) and filename.endswith(TEMP_SUFFIX):
                stale = Path(dirpath) / filename
                try:
                    stale.unlink()
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    raise InstallIOError(
                        f"Cannot remove stale temp file ({exc.strerror or exc})", stale
                    ) from exc
                removed += 1
                logger.debug("Removed stale temp file %s", stale)
    return removed
