#!/usr/bin/env python3
"""Turn raw install arguments into a validated InstallRequest.

Arguments, in order:

    args[0]  path to the package archive
    args[1]  target install root
    args[2]  package id
    args[3]  package version

Checks run in that order and stop at the first failure.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from vpi_errors import ConfigurationError
from vpi_identity import (
    PackageId,
    PackageVersion,
    parse_package_id,
    parse_package_version,
    resolve_install_path,
)

REQUIRED_ARGUMENTS = 4


@dataclass(frozen=True)
class InstallRequest:
    archive_path: Path
    install_root: Path
    package_id: PackageId
    version: PackageVersion

    @property
    def install_path(self) -> Path:
        return resolve_install_path(self.install_root, self.package_id, self.version)


def validate_install_request(args: Sequence[str]) -> InstallRequest:
    """
    Validate raw arguments.

    Raises:
        ConfigurationError: Naming the first argument that failed
    """
    if len(args) != REQUIRED_ARGUMENTS:
        raise ConfigurationError(f"Exactly {REQUIRED_ARGUMENTS} arguments required.")

    raw_archive, raw_root, raw_id, raw_version = args

    archive_path = Path(raw_archive)
    if not raw_archive or not archive_path.is_file() or not os.access(archive_path, os.R_OK):
        raise ConfigurationError(f"value {raw_archive} should be a valid path to the package archive.")

    install_root = Path(raw_root)
    if not raw_root or not install_root.is_dir():
        raise ConfigurationError(f"value {raw_root} should be a valid directory.")

    # InvalidIdError / InvalidVersionError are ConfigurationErrors
    package_id = parse_package_id(raw_id)
    version = parse_package_version(raw_version)

    return InstallRequest(
        archive_path=archive_path,
        install_root=install_root,
        package_id=package_id,
        version=version,
    )
