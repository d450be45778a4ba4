"""
Orchestrator Errors
===================
Error taxonomy for loading and running bootstrap units.

Load-time errors (MalformedMetadata, DuplicateUnitIdentity) abort before any
unit runs. Run-time errors abort the remaining schedule.
"""

from __future__ import annotations

from typing import Optional


class OrchestratorError(Exception):
    """Base class for all orchestrator failures."""

    kind = "orchestrator_error"


class MalformedMetadata(OrchestratorError, ValueError):
    """A unit's metadata block is missing or has an invalid field."""

    kind = "malformed_metadata"

    def __init__(self, source: str, field: str, reason: str):
        self.source = source
        self.field = field
        self.reason = reason
        super().__init__(f"Malformed metadata in {source}: field '{field}' {reason}")


class DuplicateUnitIdentity(OrchestratorError, ValueError):
    """Two loaded units share one identity."""

    kind = "duplicate_unit_identity"

    def __init__(self, unit_id: str, first_source: str, second_source: str):
        self.unit_id = unit_id
        self.first_source = first_source
        self.second_source = second_source
        super().__init__(
            f"Duplicate unit identity '{unit_id}' declared by {first_source} and {second_source}"
        )


class MissingRequiredSetting(OrchestratorError, LookupError):
    """A declared settings key resolved to nothing."""

    kind = "missing_required_setting"

    def __init__(self, key: str, unit_id: Optional[str] = None):
        self.key = key
        self.unit_id = unit_id
        where = f" (required by {unit_id})" if unit_id else ""
        super().__init__(f"Missing required setting '{key}'{where}")


class InstallFailure(OrchestratorError, RuntimeError):
    """The package manager failed to install declared dependencies."""

    kind = "install_failure"

    def __init__(self, packages: list[str], dev: bool, detail: str):
        self.packages = list(packages)
        self.dev = dev
        self.detail = detail
        label = "dev packages" if dev else "packages"
        super().__init__(f"Failed to install {label} {', '.join(self.packages)}: {detail}")


class UnitExecutionFailure(OrchestratorError, RuntimeError):
    """A unit body reported failure."""

    kind = "unit_execution_failure"

    def __init__(self, unit_id: str, exit_code: Optional[int] = None, detail: str = ""):
        self.unit_id = unit_id
        self.exit_code = exit_code
        self.detail = detail
        msg = f"Unit '{unit_id}' failed"
        if exit_code is not None:
            msg += f" with exit code {exit_code}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class LedgerError(OrchestratorError, OSError):
    """The idempotency ledger could not be read, locked or written."""

    kind = "ledger_error"


class LedgerLockTimeout(LedgerError, TimeoutError):
    """Another process held the ledger lock past the configured timeout."""

    kind = "ledger_lock_timeout"
