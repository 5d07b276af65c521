#!/usr/bin/env python3
"""Installer configuration.

Settings are layered, later layers winning:

1. Built-in defaults (InstallerConfig())
2. A YAML file given with --config or the VPI_CONFIG environment variable
3. Explicit CLI flags

Example file:

    hash_algorithm: sha512
    lock_timeout: 30
    keep_archive: true
    excludes: ["_rels", "package", "[Content_Types].xml"]
"""

from __future__ import annotations

import dataclasses
import os
import pathlib
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from vpi_digest import DEFAULT_ALGORITHM
from vpi_errors import ConfigurationError
from vpi_schema import CONFIG_SCHEMA, schema_errors

CONFIG_ENV_VAR = "VPI_CONFIG"


@dataclass(frozen=True)
class InstallerConfig:
    hash_algorithm: str = DEFAULT_ALGORITHM
    lock_timeout: float = -1.0  # seconds; -1 waits forever
    keep_archive: bool = False
    excludes: Tuple[str, ...] = ()
    attest: bool = False

    def with_overrides(self, **overrides: Any) -> "InstallerConfig":
        """Return a copy with every non-None override applied.

        Overrides are held to the same schema as the config file.

        Raises:
            ConfigurationError: If an override value is out of range
        """
        changes = {k: v for k, v in overrides.items() if v is not None}
        document = {k: list(v) if k == "excludes" else v for k, v in changes.items()}
        errors = schema_errors(document, CONFIG_SCHEMA)
        if errors:
            raise ConfigurationError("Invalid installer settings: " + "; ".join(errors))
        if "excludes" in changes:
            changes["excludes"] = tuple(changes["excludes"])
        if "lock_timeout" in changes:
            changes["lock_timeout"] = float(changes["lock_timeout"])
        return dataclasses.replace(self, **changes)


def _parse_config_document(text: str, source: pathlib.Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Config file {source} is not valid YAML: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {source} must contain a mapping")

    errors = schema_errors(data, CONFIG_SCHEMA)
    if errors:
        raise ConfigurationError(f"Config file {source} is invalid: " + "; ".join(errors))
    return data


def load_config(
    path: Optional[pathlib.Path] = None, environ: Optional[Mapping[str, str]] = None
) -> InstallerConfig:
    """
    Load configuration from path, falling back to $VPI_CONFIG, then defaults.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    if path is None:
        env = os.environ if environ is None else environ
        env_path = env.get(CONFIG_ENV_VAR)
        if not env_path:
            return InstallerConfig()
        path = pathlib.Path(env_path)

    path = pathlib.Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"value {path} should be a readable config file.") from exc

    return InstallerConfig().with_overrides(**_parse_config_document(text, path))
