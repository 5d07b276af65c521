#!/usr/bin/env python3
"""Companion metadata written next to an installed package.

Layout inside the canonical install directory:

    .vpi.metadata          content record (archive digest + entry count)
    .vpi.signature         caller-supplied signature blob, stored verbatim
    .vpi.provenance.json   optional in-toto statement / DSSE envelope
    .vpi.complete          install marker, always written last

The marker is the only source of truth for "this (id, version) is installed".
All files are written with temp-file-then-rename, so a marker is never
observed half written.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from vpi_errors import InstallIOError, MetadataError
from vpi_fs import write_bytes_atomic
from vpi_schema import CONTENT_RECORD_SCHEMA, MARKER_SCHEMA, schema_errors

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

CONTENT_RECORD_NAME = ".vpi.metadata"
SIGNATURE_NAME = ".vpi.signature"
PROVENANCE_NAME = ".vpi.provenance.json"
MARKER_NAME = ".vpi.complete"

# Archive entries may never use these names (compared lowercased).
RESERVED_NAMES = frozenset(
    name.lower() for name in (CONTENT_RECORD_NAME, SIGNATURE_NAME, PROVENANCE_NAME, MARKER_NAME)
)

RECORD_FORMAT_VERSION = 1


# =============================================================================
# Data Types
# =============================================================================


@dataclass(frozen=True)
class ContentRecord:
    content_hash: str  # "<algorithm>:<hex>"
    entry_count: int
    source: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "version": RECORD_FORMAT_VERSION,
            "contentHash": self.content_hash,
            "entryCount": self.entry_count,
            "source": self.source,
        }


@dataclass(frozen=True)
class InstallMarker:
    package_id: str
    package_version: str
    content_hash: str
    completed_at: str

    def to_json(self) -> Dict[str, Any]:
        return {
            "version": RECORD_FORMAT_VERSION,
            "id": self.package_id,
            "packageVersion": self.package_version,
            "contentHash": self.content_hash,
            "completedAt": self.completed_at,
        }


# =============================================================================
# Helpers
# =============================================================================


def _dump(document: Dict[str, Any]) -> bytes:
    return (json.dumps(document, indent=2, sort_keys=True) + "\n").encode("utf-8")


def _load(path: Path, schema_name: str) -> Optional[Dict[str, Any]]:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise InstallIOError(f"Cannot read metadata ({exc.strerror or exc})", path) from exc

    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MetadataError(f"Invalid JSON in {path}: {exc}") from exc

    errors = schema_errors(document, schema_name)
    if errors:
        raise MetadataError(f"{path} failed schema validation: " + "; ".join(errors))
    return document


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# =============================================================================
# Content Record / Signature
# =============================================================================


def write_metadata(
    destination: Path,
    content_hash: str,
    entry_count: int,
    source: Optional[str] = None,
    signature: Optional[bytes] = None,
) -> ContentRecord:
    """
    Write the content record and, if given, the signature blob.

    Must complete before write_marker is called.

    Raises:
        InstallIOError: If either file cannot be written
    """
    destination = Path(destination)
    record = ContentRecord(content_hash=content_hash, entry_count=entry_count, source=source)
    write_bytes_atomic(destination / CONTENT_RECORD_NAME, _dump(record.to_json()))

    if signature is not None:
        write_bytes_atomic(destination / SIGNATURE_NAME, signature)
        logger.debug("Stored %d byte signature blob", len(signature))

    return record


def read_content_record(destination: Path) -> Optional[ContentRecord]:
    """Read and validate the content record, or None if it does not exist."""
    document = _load(Path(destination) / CONTENT_RECORD_NAME, CONTENT_RECORD_SCHEMA)
    if document is None:
        return None
    return ContentRecord(
        content_hash=document["contentHash"],
        entry_count=document["entryCount"],
        source=document.get("source"),
    )


def read_signature(destination: Path) -> Optional[bytes]:
    path = Path(destination) / SIGNATURE_NAME
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


# =============================================================================
# Install Marker
# =============================================================================


def marker_exists(destination: Path) -> bool:
    return (Path(destination) / MARKER_NAME).is_file()


def write_marker(
    destination: Path, package_id: str, package_version: str, content_hash: str
) -> InstallMarker:
    marker = InstallMarker(
        package_id=package_id,
        package_version=package_version,
        content_hash=content_hash,
        completed_at=_timestamp(),
    )
    write_bytes_atomic(Path(destination) / MARKER_NAME, _dump(marker.to_json()))
    return marker


def read_marker(destination: Path) -> Optional[InstallMarker]:
    document = _load(Path(destination) / MARKER_NAME, MARKER_SCHEMA)
    if document is None:
        return None
    return InstallMarker(
        package_id=document["id"],
        package_version=document["packageVersion"],
        content_hash=document["contentHash"],
        completed_at=document["completedAt"],
    )
