#!/usr/bin/env python3
"""vpi: one entry point for installing, verifying, hashing and packing.

    vpi install ARCHIVE ROOT ID VERSION [options]
    vpi verify ROOT ID VERSION [--archive ARCHIVE]
    vpi digest ARCHIVE
    vpi pack SOURCE_DIR OUT_ZIP

Each command is the main() of its module, called with the remaining
arguments. Modules are imported on demand so `vpi digest` never loads the
installer stack.
"""

from __future__ import annotations

import argparse
import importlib
import sys
from typing import Callable, List, NamedTuple, Optional


class Command(NamedTuple):
    module: str
    summary: str


COMMANDS = {
    "install": Command("vpi_install", "Install a package archive into <root>/<id>/<version>/"),
    "verify": Command("vpi_verify", "Check an install against its metadata and archive"),
    "digest": Command("vpi_digest", "Print the content hash of an archive"),
    "pack": Command("vpi_zip", "Pack a directory into a deterministic ZIP archive"),
}


def _build_parser() -> argparse.ArgumentParser:
    listing = "\n".join(f"  {name:<8} {cmd.summary}" for name, cmd in COMMANDS.items())
    parser = argparse.ArgumentParser(
        prog="vpi",
        description="VPI - Versioned Package Installer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"Commands:\n{listing}\n\nRun 'vpi <command> --help' for command options.",
    )
    parser.add_argument("command", metavar="COMMAND", choices=list(COMMANDS))
    parser.add_argument("arguments", nargs=argparse.REMAINDER, help=argparse.SUPPRESS)
    return parser


def resolve_command(name: str) -> Callable[[Optional[List[str]]], int]:
    return importlib.import_module(COMMANDS[name].module).main


# pragma: no mutate
def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    return resolve_command(args.command)(args.arguments)


if __name__ == "__main__":
    sys.exit(main())
