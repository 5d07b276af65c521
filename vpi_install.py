#!/usr/bin/env python3
"""Install a package archive into its canonical, versioned directory.

State machine for a single Installer.install() call:

    NotStarted -> Checking -> Extracting -> WritingMetadata -> Completed
                     |            |               |
                     +------------+---------------+--> Failed

Checking short-circuits straight to Completed when the install marker is
already present, without opening the archive. The marker is written last, so
an interrupted install leaves it absent and a retry re-extracts (existing
files are overwritten).

A cross-process advisory lock (filelock) on <root>/<id>/.<version>.lock is
held from Checking until Completed. Installs of different (id, version)
pairs use different locks and never contend.
"""

from __future__ import annotations

import argparse
import contextlib
import json
import logging
import os
import sys
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Union

from filelock import FileLock, Timeout

import vpi_archive
from vpi_config import InstallerConfig, load_config
from vpi_digest import SUPPORTED_ALGORITHMS, compute_archive_digest
from vpi_errors import ConfigurationError, InstallError, InstallIOError
from vpi_extract import extract
from vpi_fs import ensure_directory, remove_stale_temp_files, write_file_atomic
from vpi_identity import PackageId, PackageVersion, format_identity, resolve_install_path
from vpi_metadata import marker_exists, write_marker, write_metadata
from vpi_provenance import (
    SIGNATURE_ALGORITHMS,
    create_install_statement,
    sign_statement,
    write_provenance,
)
from vpi_request import InstallRequest, validate_install_request

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

LOCK_SUFFIX = ".lock"

_COMPOUND_SUFFIXES = (".tar.gz", ".tar.bz2", ".tar.xz")

ArchiveOpener = Callable[[Path], vpi_archive.ArchiveReader]


# =============================================================================
# Result types
# =============================================================================


class InstallState(Enum):
    NOT_STARTED = "NotStarted"
    CHECKING = "Checking"
    EXTRACTING = "Extracting"
    WRITING_METADATA = "WritingMetadata"
    COMPLETED = "Completed"
    FAILED = "Failed"


@dataclass(frozen=True)
class SigningOptions:
    private_key: Path
    passphrase: Optional[str] = None
    signature_algorithm: str = "auto"
    key_id: Optional[str] = None


@dataclass(frozen=True)
class InstallResult:
    path: Path
    state: InstallState
    already_installed: bool
    entry_count: Optional[int] = None
    content_hash: Optional[str] = None


# =============================================================================
# Locking
# =============================================================================


def lock_path_for(install_path: Path) -> Path:
    """Lock file for an install dir, kept in its parent (<root>/<id>/)."""
    install_path = Path(install_path)
    return install_path.parent / f".{install_path.name}{LOCK_SUFFIX}"


@contextlib.contextmanager
def install_lock(install_path: Path, timeout: float = -1) -> Iterator[Path]:
    """Hold the exclusive advisory lock for install_path."""
    lock_path = lock_path_for(install_path)
    lock = FileLock(str(lock_path), timeout=timeout)
    try:
        lock.acquire()
    except Timeout as exc:
        raise InstallIOError("Timed out waiting for install lock", lock_path) from exc
    except OSError as exc:
        raise InstallIOError(
            f"Cannot acquire install lock ({exc.strerror or exc})", lock_path
        ) from exc

    logger.debug("Acquired install lock %s", lock_path)
    try:
        yield lock_path
    finally:
        lock.release()
        logger.debug("Released install lock %s", lock_path)


# =============================================================================
# Installer
# =============================================================================


def is_installed(
    install_root: Union[str, Path], package_id: PackageId, version: PackageVersion
) -> bool:
    return marker_exists(resolve_install_path(install_root, package_id, version))


def _archive_suffix(archive_path: Path) -> str:
    name = archive_path.name.lower()
    for suffix in _COMPOUND_SUFFIXES:
        if name.endswith(suffix):
            return suffix
    return archive_path.suffix


def kept_archive_name(request: InstallRequest) -> str:
    """File name of the archive copy kept inside the install directory."""
    suffix = _archive_suffix(request.archive_path)
    return f"{request.package_id.folder_name}.{request.version}{suffix}"


def _iter_file_chunks(path: Path, chunk_size: int = 65536) -> Iterator[bytes]:
    with open(path, "rb") as f:
        while chunk := f.read(chunk_size):
            yield chunk


class Installer:
    """Runs one install at a time; ``state`` reflects the last install() call."""

    def __init__(
        self,
        config: Optional[InstallerConfig] = None,
        open_archive: ArchiveOpener = vpi_archive.open_archive,
    ):
        self.config = config or InstallerConfig()
        self.state = InstallState.NOT_STARTED
        self._open_archive = open_archive

    def _transition(self, state: InstallState) -> None:
        logger.debug("Install state %s -> %s", self.state.value, state.value)
        self.state = state

    def install(
        self,
        request: InstallRequest,
        signature: Optional[bytes] = None,
        signing: Optional[SigningOptions] = None,
        cancel: Optional[threading.Event] = None,
    ) -> InstallResult:
        """
        Install request.archive_path into its canonical directory.

        Args:
            request: Validated install request
            signature: Opaque signature blob stored verbatim next to the package
            signing: Sign the provenance statement with a local key
            cancel: Checked between archive entries

        Raises:
            PathTraversalError, ExtractionError, InstallIOError, InstallCancelled,
            MetadataError. The marker is absent after any failure.
        """
        install_path = request.install_path
        identity = format_identity(request.package_id, request.version)
        self._transition(InstallState.CHECKING)

        try:
            ensure_directory(install_path.parent)
            with install_lock(install_path, self.config.lock_timeout):
                if marker_exists(install_path):
                    logger.info("%s is already installed at %s", identity, install_path)
                    self._transition(InstallState.COMPLETED)
                    return InstallResult(install_path, self.state, already_installed=True)

                self._transition(InstallState.EXTRACTING)
                remove_stale_temp_files(install_path)
                reserved = (kept_archive_name(request),) if self.config.keep_archive else ()
                with self._open_archive(request.archive_path) as reader:
                    entry_count = extract(
                        reader, install_path, self.config.excludes, cancel, reserved=reserved
                    )

                self._transition(InstallState.WRITING_METADATA)
                content_hash = self._write_metadata(
                    request, install_path, entry_count, signature, signing
                )

                write_marker(
                    install_path,
                    request.package_id.value,
                    str(request.version),
                    content_hash,
                )
                self._transition(InstallState.COMPLETED)
        except BaseException:
            self._transition(InstallState.FAILED)
            raise

        logger.info("Installed %s into %s (%d files)", identity, install_path, entry_count)
        return InstallResult(
            install_path,
            self.state,
            already_installed=False,
            entry_count=entry_count,
            content_hash=content_hash,
        )

    def _write_metadata(
        self,
        request: InstallRequest,
        install_path: Path,
        entry_count: int,
        signature: Optional[bytes],
        signing: Optional[SigningOptions],
    ) -> str:
        archive_path = request.archive_path
        try:
            content_hash = str(compute_archive_digest(archive_path, self.config.hash_algorithm))
        except OSError as exc:
            raise InstallIOError(
                f"Cannot hash archive ({exc.strerror or exc})", archive_path
            ) from exc

        source = os.path.abspath(archive_path)
        write_metadata(install_path, content_hash, entry_count, source=source, signature=signature)

        if self.config.keep_archive:
            kept = install_path / kept_archive_name(request)
            write_file_atomic(kept, _iter_file_chunks(archive_path))

        if self.config.attest or signing is not None:
            document = create_install_statement(
                request.package_id.value,
                str(request.version),
                content_hash,
                entry_count,
                source=source,
            )
            if signing is not None:
                document = sign_statement(
                    document,
                    signing.private_key,
                    signature_algorithm=signing.signature_algorithm,
                    key_id=signing.key_id,
                    passphrase=signing.passphrase,
                )
            write_provenance(install_path, document)

        return content_hash


def install(
    request: InstallRequest,
    config: Optional[InstallerConfig] = None,
    signature: Optional[bytes] = None,
    signing: Optional[SigningOptions] = None,
    cancel: Optional[threading.Event] = None,
) -> InstallResult:
    """Convenience wrapper around Installer(config).install()."""
    return Installer(config).install(request, signature=signature, signing=signing, cancel=cancel)


# =============================================================================
# CLI
# =============================================================================


def _render_result(result: InstallResult, request: InstallRequest) -> str:
    identity = format_identity(request.package_id, request.version)
    if result.already_installed:
        return f"{identity} is already installed at {result.path}"
    return (
        f"Installed {identity} into {result.path} "
        f"({result.entry_count} files, {result.content_hash})"
    )


# pragma: no mutate
def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Install a package archive into <root>/<id>/<version>/",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s test.2.4.2.nupkg ./packages test 2.4.2
  %(prog)s pkg.zip ./packages my.pkg 1.0 --signature pkg.sig --attest
  %(prog)s pkg.zip ./packages my.pkg 1.0 --sign --private-key key.pem
        """,
    )
    parser.add_argument(
        "arguments",
        nargs="*",
        metavar="ARG",
        help="ARCHIVE INSTALL_ROOT PACKAGE_ID PACKAGE_VERSION",
    )
    parser.add_argument("--config", type=Path, help="YAML config file (default: $VPI_CONFIG)")
    parser.add_argument(
        "--signature",
        type=Path,
        help="Signature blob to store verbatim next to the package",
    )
    parser.add_argument(
        "--attest",
        action="store_true",
        help="Write an in-toto provenance statement",
    )
    parser.add_argument(
        "--sign",
        action="store_true",
        help="Sign the provenance statement (implies --attest)",
    )
    parser.add_argument("--private-key", type=Path, help="PEM private key for signing")
    parser.add_argument(
        "--private-key-passphrase",
        type=str,
        help="Passphrase for the private key (if encrypted)",
    )
    parser.add_argument(
        "--signature-alg",
        type=str,
        default="auto",
        choices=SIGNATURE_ALGORITHMS,
        help="Signature algorithm for DSSE signing",
    )
    parser.add_argument("--key-id", type=str, help="Key ID recorded in the DSSE signature")
    parser.add_argument(
        "--keep-archive",
        action="store_true",
        help="Keep a copy of the archive in the install directory",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        help="Top-level archive entry to skip (repeatable)",
    )
    parser.add_argument(
        "--lock-timeout",
        type=float,
        help="Seconds to wait for the install lock (-1 waits forever)",
    )
    parser.add_argument(
        "--hash-algorithm",
        choices=SUPPORTED_ALGORITHMS,
        help="Digest algorithm for the content record",
    )
    parser.add_argument("--json", action="store_true", help="Output result as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log progress to stderr")

    args = parser.parse_intermixed_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    try:
        request = validate_install_request(args.arguments)
        config = load_config(args.config).with_overrides(
            hash_algorithm=args.hash_algorithm,
            lock_timeout=args.lock_timeout,
            keep_archive=True if args.keep_archive else None,
            excludes=args.exclude,
            attest=True if args.attest else None,
        )

        signature = None
        if args.signature:
            try:
                signature = args.signature.read_bytes()
            except OSError as exc:
                raise ConfigurationError(
                    f"value {args.signature} should be a readable signature file."
                ) from exc

        signing = None
        if args.sign:
            if not args.private_key:
                raise ConfigurationError("--sign requires --private-key")
            signing = SigningOptions(
                private_key=args.private_key,
                passphrase=args.private_key_passphrase,
                signature_algorithm=args.signature_alg,
                key_id=args.key_id,
            )

        result = Installer(config).install(request, signature=signature, signing=signing)
    except ConfigurationError as e:
        print(e)
        return 1
    except InstallError as e:
        print(e)
        return 2

    if args.json:
        print(
            json.dumps(
                {
                    "path": str(result.path),
                    "state": result.state.value,
                    "alreadyInstalled": result.already_installed,
                    "entryCount": result.entry_count,
                    "contentHash": result.content_hash,
                }
            )
        )
    else:
        print(_render_result(result, request))
    return 0


if __name__ == "__main__":
    sys.exit(main())
