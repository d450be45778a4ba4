"""
Schema Validation Utilities
===========================
JSON Schema loading and validation helpers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from jsonschema import Draft202012Validator, FormatChecker
from jsonschema.exceptions import ValidationError

UNIT_METADATA_SCHEMA = "unit_metadata.schema.json"
LEDGER_SCHEMA = "ledger.schema.json"


@dataclass(frozen=True)
class SchemaIssue:
    """First validation failure, reduced to what callers report."""

    path: str
    field: str
    message: str


@lru_cache(maxsize=32)
def _load_schema(schema_filename: str) -> Dict[str, Any]:
    """Load a schema JSON file from omniforge/schemas.

    Args:
        schema_filename: File name under omniforge/schemas (for example 'ledger.schema.json').

    Raises:
        FileNotFoundError: When schema file is missing.
        ValueError: When schema file is not valid JSON or not a JSON object.
    """
    schemas_dir = Path(__file__).resolve().parent.parent / "schemas"
    schema_path = (schemas_dir / schema_filename).resolve()
    if not schema_path.is_relative_to(schemas_dir.resolve()):
        raise ValueError(f"Schema path escapes schemas directory: {schema_filename}")
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema not found: {schema_filename}")

    try:
        with open(schema_path, "r", encoding="utf-8") as f:
            schema = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Failed to load schema {schema_filename}: {e}")

    if not isinstance(schema, dict):
        raise ValueError(f"Schema {schema_filename} must be a JSON object")
    return schema


def _field_of(error: ValidationError) -> str:
    if error.validator == "required" and isinstance(error.instance, dict):
        for name in error.validator_value:
            if name not in error.instance:
                return str(name)
    if error.path:
        return str(error.path[0])
    return ""


def first_schema_issue(payload: Any, schema_filename: str) -> Optional[SchemaIssue]:
    """Return the first validation failure, or None when payload is valid.

    Errors are ordered by instance path so the reported field is stable.
    """
    schema = _load_schema(schema_filename)
    validator = Draft202012Validator(schema, format_checker=FormatChecker())

    errors = sorted(validator.iter_errors(payload), key=lambda e: [str(p) for p in e.path])
    if not errors:
        return None

    error = errors[0]
    return SchemaIssue(
        path="/".join(str(p) for p in error.path),
        field=_field_of(error),
        message=error.message,
    )


def validate_against_schema(payload: Any, schema_filename: str) -> None:
    """Validate payload against a JSON Schema.

    Args:
        payload: Any JSON-serializable object.
        schema_filename: File name under omniforge/schemas.

    Raises:
        ValueError: When payload fails validation.
    """
    issue = first_schema_issue(payload, schema_filename)
    if issue is None:
        return

    prefix = f"Validation failed at '{issue.path}': " if issue.path else "Validation failed: "
    raise ValueError(prefix + issue.message)


def validate_ledger_document(payload: Dict[str, Any]) -> None:
    """Validate a ledger document.

    Uses omniforge/schemas/ledger.schema.json.
    """
    validate_against_schema(payload, LEDGER_SCHEMA)
