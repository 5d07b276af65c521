#!/usr/bin/env python3
"""Verify an installed package against its metadata and source archive.

Checks:
    INST-001  install marker present and valid
    INST-002  content record present and valid
    INST-003  marker and content record agree on the content hash
    INST-004  archive digest matches the recorded content hash (needs --archive)

This detects silent archive substitution (same id/version, different bytes)
without re-extracting anything.

Exit codes:
    0 = Verification passed
    1 = Verification failed
    2 = Error (invalid input, etc.)
"""

from __future__ import annotations

import argparse
import json
import pathlib
import sys
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from vpi_digest import compute_archive_digest, parse_content_hash
from vpi_errors import ConfigurationError, InstallIOError, MetadataError
from vpi_identity import (
    PackageId,
    PackageVersion,
    parse_package_id,
    parse_package_version,
    resolve_install_path,
)
from vpi_metadata import read_content_record, read_marker

# =============================================================================
# Verification result types
# =============================================================================


class Severity(Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"


@dataclass
class VerificationResult:
    rule_id: str
    passed: bool
    severity: Severity
    message: str
    details: Optional[str] = None


class VerificationReport:
    def __init__(self):
        self.results: List[VerificationResult] = []

    def add(self, result: VerificationResult):
        self.results.append(result)

    def add_error(self, rule_id: str, message: str, details: Optional[str] = None):
        self.add(VerificationResult(rule_id, False, Severity.ERROR, message, details))

    def add_warning(self, rule_id: str, message: str, details: Optional[str] = None):
        self.add(VerificationResult(rule_id, False, Severity.WARNING, message, details))

    def add_pass(self, rule_id: str, message: str):
        self.add(VerificationResult(rule_id, True, Severity.INFO, message))

    @property
    def passed(self) -> bool:
        return not any(r.severity == Severity.ERROR and not r.passed for r in self.results)

    def failed_rules(self) -> List[str]:
        return [r.rule_id for r in self.results if not r.passed]

    def to_json(self) -> dict:
        return {
            "passed": self.passed,
            "results": [
                {
                    "rule_id": r.rule_id,
                    "passed": r.passed,
                    "severity": r.severity.value,
                    "message": r.message,
                    "details": r.details,
                }
                for r in self.results
            ],
        }

    def print_report(self, verbose: bool = False):
        errors = [r for r in self.results if r.severity == Severity.ERROR and not r.passed]
        warnings = [r for r in self.results if r.severity == Severity.WARNING and not r.passed]
        passes = [r for r in self.results if r.passed]

        for label, group in (("ERROR", errors), ("WARNING", warnings)):
            for r in group:
                print(f"{label} [{r.rule_id}] {r.message}")
                if r.details and verbose:
                    print(f"    {r.details}")

        if verbose:
            for r in passes:
                print(f"PASS [{r.rule_id}] {r.message}")

        print("RESULT: PASSED" if self.passed else "RESULT: FAILED")


# =============================================================================
# Verification
# =============================================================================


def verify_install(
    install_root: pathlib.Path,
    package_id: PackageId,
    version: PackageVersion,
    archive_path: Optional[pathlib.Path] = None,
) -> VerificationReport:
    """Verify the install of (package_id, version) under install_root."""
    report = VerificationReport()
    install_path = resolve_install_path(install_root, package_id, version)

    try:
        marker = read_marker(install_path)
    except (MetadataError, InstallIOError) as e:
        report.add_error("INST-001", "Install marker is unreadable", str(e))
        marker = None
    else:
        if marker is None:
            report.add_error("INST-001", f"Not installed: {install_path}")
        else:
            report.add_pass("INST-001", f"Install marker present ({marker.completed_at})")

    try:
        record = read_content_record(install_path)
    except (MetadataError, InstallIOError) as e:
        report.add_error("INST-002", "Content record is unreadable", str(e))
        record = None
    else:
        if record is None:
            report.add_error("INST-002", "Content record missing")
        else:
            report.add_pass("INST-002", f"Content record present ({record.entry_count} files)")

    if marker is not None and record is not None:
        if marker.content_hash != record.content_hash:
            report.add_error(
                "INST-003",
                "Install marker and content record disagree",
                f"Marker: {marker.content_hash}, Record: {record.content_hash}",
            )
        else:
            report.add_pass("INST-003", "Install marker matches content record")

    if archive_path is not None and record is not None:
        algorithm, _ = parse_content_hash(record.content_hash)
        try:
            computed = str(compute_archive_digest(archive_path, algorithm))
        except OSError as e:
            report.add_error("INST-004", f"Failed to compute archive digest: {e}")
        else:
            if computed != record.content_hash:
                report.add_error(
                    "INST-004",
                    "Archive digest does not match installed content",
                    f"Computed: {computed}, Recorded: {record.content_hash}",
                )
            else:
                report.add_pass("INST-004", f"Archive digest verified: {computed}")

    return report


# =============================================================================
# CLI
# =============================================================================


# pragma: no mutate
def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Verify an installed package against its metadata",
    )
    parser.add_argument("install_root", type=pathlib.Path, help="Install root directory")
    parser.add_argument("package_id", help="Package id")
    parser.add_argument("package_version", help="Package version")
    parser.add_argument(
        "--archive",
        type=pathlib.Path,
        help="Package archive to compare against the recorded content hash",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show passed checks")
    parser.add_argument("--json", action="store_true", help="Output report as JSON")

    args = parser.parse_args(argv)

    try:
        package_id = parse_package_id(args.package_id)
        version = parse_package_version(args.package_version)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    report = verify_install(args.install_root, package_id, version, archive_path=args.archive)

    if args.json:
        print(json.dumps(report.to_json(), indent=2))
    else:
        report.print_report(verbose=args.verbose)

    return 0 if report.passed else 1


if __name__ == "__main__":
    sys.exit(main())
