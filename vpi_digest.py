#!/usr/bin/env python3
"""
VPI Archive Content Hash

The content hash identifies the exact bytes of the package archive that
produced an install. It is the digest of the archive file as a whole (not a
per-entry digest) and is recorded as "<algorithm>:<hex>", for example:

    sha256:9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08

Callers compare it against a fresh hash of an archive to detect silent
archive substitution (same id/version, different bytes).

SPDX-License-Identifier: Apache-2.0
"""

from __future__ import annotations

import hashlib
import sys
from pathlib import Path
from typing import List, NamedTuple, Optional, Union

# =============================================================================
# Constants
# =============================================================================

SUPPORTED_ALGORITHMS = ("sha256", "sha512")

DEFAULT_ALGORITHM = "sha256"


# =============================================================================
# Data Types
# =============================================================================


class ContentHash(NamedTuple):
    """Digest of a whole archive file."""

    algorithm: str
    hexdigest: str
    size: int

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.hexdigest}"


# =============================================================================
# Hashing
# =============================================================================


def hash_file(
    filepath: Union[str, Path], algorithm: str = DEFAULT_ALGORITHM, chunk_size: int = 65536
) -> ContentHash:
    """
    Compute the digest of a file.

    Args:
        filepath: Path to file
        algorithm: One of SUPPORTED_ALGORITHMS
        chunk_size: Read buffer size

    Raises:
        ValueError: If algorithm is not supported
    """
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")

    hasher = hashlib.new(algorithm)
    size = 0

    with open(filepath, "rb") as f:
        while chunk := f.read(chunk_size):
            hasher.update(chunk)
            size += len(chunk)

    return ContentHash(algorithm, hasher.hexdigest(), size)


def compute_archive_digest(
    archive_path: Union[str, Path], algorithm: str = DEFAULT_ALGORITHM
) -> ContentHash:
    """Compute the content hash of a package archive."""
    return hash_file(archive_path, algorithm)


def parse_content_hash(value: str) -> tuple[str, str]:
    """Split "<algorithm>:<hex>" into its parts."""
    algorithm, sep, hexdigest = value.partition(":")
    if not sep or algorithm not in SUPPORTED_ALGORITHMS or not hexdigest:
        raise ValueError(f"Malformed content hash: {value}")
    return algorithm, hexdigest


# =============================================================================
# CLI Interface
# =============================================================================


# pragma: no mutate
def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Compute the VPI content hash of an archive")
    parser.add_argument("path", type=Path, help="Path to package archive")
    parser.add_argument(
        "--algorithm",
        default=DEFAULT_ALGORITHM,
        choices=SUPPORTED_ALGORITHMS,
        help="Digest algorithm",
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show archive size")

    args = parser.parse_args(argv)

    try:
        content_hash = compute_archive_digest(args.path, args.algorithm)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        import json

        print(json.dumps({"contentHash": str(content_hash), "size": content_hash.size}, indent=2))
    else:
        print(content_hash)
        if args.verbose:
            print(f"Size: {content_hash.size:,} bytes")
    return 0


if __name__ == "__main__":
    sys.exit(main())
