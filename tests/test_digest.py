from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

import vpi_digest


def test_archive_digest_matches_hashlib(sample_archive: Path) -> None:
    data = sample_archive.read_bytes()
    content_hash = vpi_digest.compute_archive_digest(sample_archive)

    assert content_hash.algorithm == "sha256"
    assert content_hash.hexdigest == hashlib.sha256(data).hexdigest()
    assert content_hash.size == len(data)
    assert str(content_hash) == f"sha256:{hashlib.sha256(data).hexdigest()}"


def test_sha512(sample_archive: Path) -> None:
    content_hash = vpi_digest.compute_archive_digest(sample_archive, "sha512")
    assert str(content_hash).startswith("sha512:")
    assert len(content_hash.hexdigest) == 128


def test_unsupported_algorithm(sample_archive: Path) -> None:
    with pytest.raises(ValueError, match="Unsupported hash algorithm"):
        vpi_digest.hash_file(sample_archive, "md5")


def test_parse_content_hash() -> None:
    assert vpi_digest.parse_content_hash("sha256:abcd") == ("sha256", "abcd")


@pytest.mark.parametrize("value", ["", "abcd", "md5:abcd", "sha256:"])
def test_parse_content_hash_rejects_malformed(value: str) -> None:
    with pytest.raises(ValueError, match="Malformed content hash"):
        vpi_digest.parse_content_hash(value)
