"""
OmniForge
=========
Bootstrap orchestrator: discovers units, orders them by phase, skips work
already done, and runs the rest with resolved settings and dependencies.
"""

from omniforge.errors import (
    DuplicateUnitIdentity,
    InstallFailure,
    LedgerError,
    LedgerLockTimeout,
    MalformedMetadata,
    MissingRequiredSetting,
    OrchestratorError,
    UnitExecutionFailure,
)
from omniforge.executor import RunContext, UnitExecutor, UnitOutcome, UnitState
from omniforge.flags import RunFlags, parse_run_flags
from omniforge.installer import DependencyInstaller, PackageManagerBackend
from omniforge.ledger import IdempotencyLedger, LedgerEntry
from omniforge.report import RunReport
from omniforge.runner import CancellationToken, build_resolver, load_units, run_units
from omniforge.scheduler import group_by_phase, schedule
from omniforge.settings import SettingsResolver
from omniforge.units import Unit, UnitDescriptor, UnitRegistry, parse_metadata

__version__ = "0.1.0"

__all__ = [
    "DuplicateUnitIdentity",
    "InstallFailure",
    "LedgerError",
    "LedgerLockTimeout",
    "MalformedMetadata",
    "MissingRequiredSetting",
    "OrchestratorError",
    "UnitExecutionFailure",
    "RunContext",
    "UnitExecutor",
    "UnitOutcome",
    "UnitState",
    "RunFlags",
    "parse_run_flags",
    "DependencyInstaller",
    "PackageManagerBackend",
    "IdempotencyLedger",
    "LedgerEntry",
    "RunReport",
    "CancellationToken",
    "build_resolver",
    "load_units",
    "run_units",
    "group_by_phase",
    "schedule",
    "SettingsResolver",
    "Unit",
    "UnitDescriptor",
    "UnitRegistry",
    "parse_metadata",
]
