"""
Utility Functions
=================
Schema validation and subprocess environment helpers shared by the orchestrator.
"""

from .schema_validation import (
    SchemaIssue,
    first_schema_issue,
    validate_against_schema,
    validate_ledger_document,
)
from .subprocess_env import build_unit_env

__all__ = [
    "SchemaIssue",
    "first_schema_issue",
    "validate_against_schema",
    "validate_ledger_document",
    "build_unit_env",
]
