#!/usr/bin/env python3
"""JSON Schema loading and validation for VPI documents."""

from __future__ import annotations

import json
import pathlib
from functools import lru_cache
from typing import Any, Dict, List

from jsonschema import Draft202012Validator

SCHEMA_DIR = pathlib.Path(__file__).parent

CONTENT_RECORD_SCHEMA = "vpi-content-record-v1.schema.json"
MARKER_SCHEMA = "vpi-marker-v1.schema.json"
CONFIG_SCHEMA = "vpi-config-v1.schema.json"


@lru_cache(maxsize=None)
def load_schema(schema_name: str) -> Dict[str, Any]:
    candidate = SCHEMA_DIR / schema_name
    with candidate.open(encoding="utf-8") as f:
        schema = json.load(f)
    Draft202012Validator.check_schema(schema)
    return schema


def _format_schema_errors(errors: List[Any]) -> List[str]:
    lines = []
    for err in errors[:5]:
        path = err.json_path or "$"
        lines.append(f"{path}: {err.message}")
    if len(errors) > 5:
        lines.append(f"... {len(errors) - 5} more")
    return lines


def schema_errors(document: Any, schema_name: str) -> List[str]:
    """Validate document and return human readable errors (empty if valid)."""
    validator = Draft202012Validator(load_schema(schema_name))
    errors = sorted(validator.iter_errors(document), key=lambda e: e.json_path)
    return _format_schema_errors(errors)
