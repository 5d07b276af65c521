#!/usr/bin/env python3
"""Pack a directory into a deterministic ZIP package archive.

The same input tree always produces the same archive bytes, and therefore
the same content hash:
  - All entries use a fixed timestamp (2025-01-01 00:00:00).
  - Files are added in lexicographic order of their POSIX paths.
  - Permissions are fixed to 0644.
  - ZIP_STORED (no compression) is used.
"""

from __future__ import annotations

import argparse
import os
import pathlib
import zipfile
from typing import Iterator, List, Optional, Tuple

from vpi_metadata import RESERVED_NAMES

# Directories and files never packed
DEFAULT_EXCLUDES = {
    ".git",
    ".DS_Store",
    "Thumbs.db",
    "__pycache__",
}

FIXED_DATE_TIME = (2025, 1, 1, 0, 0, 0)


def iter_files(root: pathlib.Path) -> Iterator[Tuple[str, pathlib.Path]]:
    """Yield (archive name, path) for every regular file under root."""
    root = root.resolve()
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in DEFAULT_EXCLUDES]
        for filename in filenames:
            if filename in DEFAULT_EXCLUDES:
                continue
            fpath = pathlib.Path(dirpath) / filename
            if fpath.is_symlink() or not fpath.is_file():
                continue
            rel = fpath.relative_to(root).as_posix()
            if rel.split("/", 1)[0].lower() in RESERVED_NAMES:
                continue
            yield rel, fpath


def build_zip(source_dir: pathlib.Path, out_zip: pathlib.Path) -> int:
    """Write source_dir to out_zip and return the number of entries."""
    files = sorted(iter_files(source_dir), key=lambda t: t[0].encode("utf-8"))

    out_zip.parent.mkdir(parents=True, exist_ok=True)

    with zipfile.ZipFile(out_zip, "w", compression=zipfile.ZIP_STORED) as zf:
        for rel, fpath in files:
            zi = zipfile.ZipInfo(filename=rel, date_time=FIXED_DATE_TIME)
            zi.compress_type = zipfile.ZIP_STORED
            zi.create_system = 0  # "FAT"; avoids platform-specific permission bits
            zi.external_attr = (0o644 & 0xFFFF) << 16
            zf.writestr(zi, fpath.read_bytes())
    return len(files)


# pragma: no mutate
def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Create a deterministic ZIP package archive")
    ap.add_argument("source", help="Directory to pack")
    ap.add_argument("out_zip", help="Output archive path")
    args = ap.parse_args(argv)

    count = build_zip(pathlib.Path(args.source), pathlib.Path(args.out_zip))
    print(f"Packed {count} file(s) into {args.out_zip}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
