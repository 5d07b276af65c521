from __future__ import annotations

import io
import stat
import tarfile
import zipfile
from pathlib import Path

import pytest

import vpi_archive
import vpi_errors


def test_zip_reader_lists_and_reads(make_zip) -> None:
    archive = make_zip({"a.txt": b"alpha", "dir/": None, "dir/b.txt": b"beta"})
    with vpi_archive.open_archive(archive) as reader:
        assert isinstance(reader, vpi_archive.ZipArchiveReader)
        entries = list(reader.list_entries())
        assert entries == [
            vpi_archive.ArchiveEntry("a.txt", False),
            vpi_archive.ArchiveEntry("dir/", True),
            vpi_archive.ArchiveEntry("dir/b.txt", False),
        ]
        with reader.open_entry("dir/b.txt") as src:
            assert src.read() == b"beta"


def test_tar_reader_lists_and_reads(tmp_path: Path) -> None:
    tar_path = tmp_path / "pkg.tar.gz"
    with tarfile.open(tar_path, "w:gz") as tf:
        info = tarfile.TarInfo("lib")
        info.type = tarfile.DIRTYPE
        tf.addfile(info)
        info = tarfile.TarInfo("lib/code.py")
        info.size = 5
        tf.addfile(info, io.BytesIO(b"pass\n"))

    with vpi_archive.open_archive(tar_path) as reader:
        assert isinstance(reader, vpi_archive.TarArchiveReader)
        entries = list(reader.list_entries())
        assert entries == [
            vpi_archive.ArchiveEntry("lib", True),
            vpi_archive.ArchiveEntry("lib/code.py", False),
        ]
        with reader.open_entry("lib/code.py") as src:
            assert src.read() == b"pass\n"


def test_open_archive_rejects_unknown_format(tmp_path: Path) -> None:
    bogus = tmp_path / "bogus.nupkg"
    bogus.write_bytes(b"this is not an archive")
    with pytest.raises(vpi_errors.ExtractionError, match="Unsupported archive format"):
        vpi_archive.open_archive(bogus)


def test_zip_reader_rejects_symlink(make_zip, tmp_path: Path) -> None:
    zip_path = tmp_path / "link.zip"
    with zipfile.ZipFile(zip_path, "w") as zf:
        info = zipfile.ZipInfo("link")
        info.external_attr = (stat.S_IFLNK | 0o777) << 16
        zf.writestr(info, "target")
    with vpi_archive.open_archive(zip_path) as reader:
        with pytest.raises(vpi_errors.ExtractionError, match="Symlinks not allowed"):
            list(reader.list_entries())


def test_tar_reader_rejects_symlink(tmp_path: Path) -> None:
    tar_path = tmp_path / "link.tar"
    with tarfile.open(tar_path, "w") as tf:
        info = tarfile.TarInfo("link")
        info.type = tarfile.SYMTYPE
        info.linkname = "target"
        tf.addfile(info)
    with vpi_archive.open_archive(tar_path) as reader:
        with pytest.raises(vpi_errors.ExtractionError, match="Symlinks not allowed"):
            list(reader.list_entries())


def test_open_entry_missing_name(make_zip) -> None:
    archive = make_zip({"a.txt": b"alpha"})
    with vpi_archive.open_archive(archive) as reader:
        with pytest.raises(vpi_errors.ExtractionError, match="not found"):
            reader.open_entry("missing.txt")
