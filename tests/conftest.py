from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Callable, Dict, Optional

import pytest

# Entry name -> bytes; None marks a directory entry.
Entries = Dict[str, Optional[bytes]]

SAMPLE_ENTRIES: Entries = {
    "license.txt": b"MIT License\n",
    "logo.png": b"\x89PNG\r\n\x1a\n" + bytes(range(256)),
    "test.nuspec": b"<package><metadata><id>test</id><version>2.4.2</version></metadata></package>\n",
    "build/": None,
    "build/net452/": None,
    "build/net452/xunit.abstractions.dll": b"MZ" + b"\x00" * 64,
    "build/net452/xunit.runner.visualstudio.props": b"<Project />\n",
    "build/netcoreapp2.1/xunit.runner.visualstudio.props": b"<Project Sdk='x' />\n",
}


def write_zip(path: Path, entries: Entries) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in entries.items():
            if data is None:
                zf.writestr(zipfile.ZipInfo(name), b"")
            else:
                zf.writestr(name, data)
    return path


@pytest.fixture(scope="session")
def repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


@pytest.fixture
def make_zip(tmp_path: Path) -> Callable[..., Path]:
    def _make(entries: Entries, name: str = "package.zip") -> Path:
        return write_zip(tmp_path / "archives" / name, entries)

    return _make


@pytest.fixture
def sample_archive(make_zip) -> Path:
    return make_zip(SAMPLE_ENTRIES, name="test.2.4.2.nupkg")


@pytest.fixture
def install_root(tmp_path: Path) -> Path:
    root = tmp_path / "packages"
    root.mkdir()
    return root
