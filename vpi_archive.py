#!/usr/bin/env python3
"""Archive readers for VPI.

The installer only needs two capabilities from a package archive: list its
entries and stream the bytes of one entry. ZIP (including .nupkg) and tar
containers are supported. Symlink and hardlink members are rejected here;
path safety of entry names is enforced by vpi_extract.
"""

from __future__ import annotations

import tarfile
import zipfile
import zlib
from pathlib import Path
from stat import S_ISLNK
from typing import IO, Iterator, NamedTuple, Protocol, Union

from vpi_errors import ExtractionError

# Exceptions a container library may raise while reading a corrupt archive.
ARCHIVE_READ_ERRORS = (
    zipfile.BadZipFile,
    zipfile.LargeZipFile,
    tarfile.TarError,
    zlib.error,
    EOFError,
    NotImplementedError,
)


class ArchiveEntry(NamedTuple):
    """A named member of a package archive."""

    name: str  # Archive-relative path as stored, usually / separated
    is_dir: bool


class ArchiveReader(Protocol):
    def __enter__(self) -> "ArchiveReader": ...

    def __exit__(self, *exc_info) -> None: ...

    def list_entries(self) -> Iterator[ArchiveEntry]: ...

    def open_entry(self, name: str) -> IO[bytes]: ...

    def close(self) -> None: ...


class _ReaderBase:
    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ZipArchiveReader(_ReaderBase):
    """Read entries from a ZIP based package (.zip, .nupkg, .whl, ...)."""

    def __init__(self, archive_path: Union[str, Path]):
        self.path = Path(archive_path)
        try:
            self._zf = zipfile.ZipFile(self.path, "r")
        except ARCHIVE_READ_ERRORS as exc:
            raise ExtractionError(f"Cannot open ZIP archive {self.path}: {exc}") from exc

    def list_entries(self) -> Iterator[ArchiveEntry]:
        for member in self._zf.infolist():
            if S_ISLNK(member.external_attr >> 16):
                raise ExtractionError(f"Symlinks not allowed in archive: {member.filename}")
            yield ArchiveEntry(member.filename, member.is_dir())

    def open_entry(self, name: str) -> IO[bytes]:
        try:
            return self._zf.open(name, "r")
        except KeyError as exc:
            raise ExtractionError(f"Archive entry not found: {name}") from exc
        except (RuntimeError, *ARCHIVE_READ_ERRORS) as exc:
            # RuntimeError: encrypted member without a password
            raise ExtractionError(f"Cannot read archive entry {name}: {exc}") from exc

    def close(self) -> None:
        self._zf.close()


class TarArchiveReader(_ReaderBase):
    """Read entries from a (optionally compressed) tar archive."""

    def __init__(self, archive_path: Union[str, Path]):
        self.path = Path(archive_path)
        try:
            self._tf = tarfile.open(self.path, "r:*")
        except ARCHIVE_READ_ERRORS as exc:
            raise ExtractionError(f"Cannot open tar archive {self.path}: {exc}") from exc
        self._members: dict[str, tarfile.TarInfo] = {}

    def list_entries(self) -> Iterator[ArchiveEntry]:
        try:
            members = self._tf.getmembers()
        except ARCHIVE_READ_ERRORS as exc:
            raise ExtractionError(f"Cannot list tar archive {self.path}: {exc}") from exc

        for member in members:
            if member.issym() or member.islnk():
                raise ExtractionError(f"Symlinks not allowed in archive: {member.name}")
            if not (member.isdir() or member.isfile()):
                raise ExtractionError(f"Unsupported tar member type: {member.name}")
            self._members[member.name] = member
            yield ArchiveEntry(member.name, member.isdir())

    def open_entry(self, name: str) -> IO[bytes]:
        member = self._members.get(name)
        if member is None:
            try:
                member = self._tf.getmember(name)
            except KeyError as exc:
                raise ExtractionError(f"Archive entry not found: {name}") from exc
        try:
            src = self._tf.extractfile(member)
        except ARCHIVE_READ_ERRORS as exc:
            raise ExtractionError(f"Cannot read archive entry {name}: {exc}") from exc
        if src is None:
            raise ExtractionError(f"Archive entry is not a regular file: {name}")
        return src

    def close(self) -> None:
        self._tf.close()


def open_archive(archive_path: Union[str, Path]) -> Union[ZipArchiveReader, TarArchiveReader]:
    """Open a package archive with the reader matching its container format."""
    archive_path = Path(archive_path)
    try:
        if zipfile.is_zipfile(archive_path):
            return ZipArchiveReader(archive_path)
        if tarfile.is_tarfile(archive_path):
            return TarArchiveReader(archive_path)
    except OSError as exc:
        raise ExtractionError(f"Cannot open archive {archive_path}: {exc}") from exc
    raise ExtractionError(f"Unsupported archive format: {archive_path}")
