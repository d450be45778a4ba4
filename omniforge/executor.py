"""
Unit Executor
=============
Runs one unit through its lifecycle:

    PENDING -> SKIPPED_ALREADY_SUCCEEDED
            -> SKIPPED_DRY_RUN
            -> RUNNING -> SUCCEEDED | FAILED

Decision order per unit:
1. The ledger records success and force does not apply: skip.
2. Dry-run: skip. No body, no install, no ledger write.
3. Otherwise run: resolve every declared setting, install declared packages,
   invoke the action.
4. On success the ledger is marked. On failure nothing is written and the
   error propagates so the run stops.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from omniforge.errors import OrchestratorError, UnitExecutionFailure
from omniforge.flags import RunFlags
from omniforge.installer import DependencyInstaller
from omniforge.ledger import IdempotencyLedger
from omniforge.log import log_dry, log_ok, log_skip, log_step
from omniforge.settings import SettingsResolver
from omniforge.tracing import get_tracer, safe_set_span_attributes
from omniforge.units.descriptor import Unit, UnitDescriptor


class UnitState(str, Enum):
    PENDING = "pending"
    SKIPPED_ALREADY_SUCCEEDED = "skipped_already_succeeded"
    SKIPPED_DRY_RUN = "skipped_dry_run"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self not in (UnitState.PENDING, UnitState.RUNNING)


@dataclass
class UnitOutcome:
    """What happened to one unit during a run."""

    unit_id: str
    phase: int
    state: UnitState = UnitState.PENDING
    duration_seconds: float = 0.0
    installed: List[str] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "phase": self.phase,
            "state": self.state.value,
            "duration_seconds": round(self.duration_seconds, 3),
            "installed": list(self.installed),
            "error": self.error,
            "error_kind": self.error_kind,
        }


@dataclass
class RunContext:
    """Everything a unit body may use. Built fresh for each unit."""

    descriptor: UnitDescriptor
    flags: RunFlags
    settings: Dict[str, str]
    resolver: SettingsResolver
    installer: DependencyInstaller
    project_root: Path
    install_dir: Path
    logger: Any = logger

    @property
    def unit_id(self) -> str:
        return self.descriptor.id

    def setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """A declared setting, or any other key through the resolver."""
        if key in self.settings:
            return self.settings[key]
        return self.resolver.get(key, default)


class UnitExecutor:
    """Applies the per-unit rules. One executor per run."""

    def __init__(
        self,
        ledger: IdempotencyLedger,
        flags: RunFlags,
        resolver: SettingsResolver,
        installer: DependencyInstaller,
        project_root: Path,
        install_dir: Optional[Path] = None,
    ):
        self.ledger = ledger
        self.flags = flags
        self.resolver = resolver
        self.installer = installer
        self.project_root = Path(project_root)
        self.install_dir = Path(install_dir) if install_dir is not None else self.project_root
        self.outcomes: List[UnitOutcome] = []
        self._tracer = get_tracer(__name__)

    def _install_dependencies(self, descriptor: UnitDescriptor) -> List[str]:
        installed: List[str] = []
        if descriptor.packages and not self.flags.dev_only:
            installed.extend(self.installer.install(descriptor.packages, dev=False))
        if descriptor.dev_packages and not self.flags.no_dev:
            installed.extend(self.installer.install(descriptor.dev_packages, dev=True))
        return installed

    def _invoke(self, unit: Unit, ctx: RunContext) -> None:
        try:
            result = unit.action(ctx)
        except OrchestratorError:
            raise
        except Exception as e:
            raise UnitExecutionFailure(unit.id, detail=f"{type(e).__name__}: {e}") from e

        if result is None or (isinstance(result, int) and not isinstance(result, bool) and result == 0):
            return
        if isinstance(result, int) and not isinstance(result, bool):
            raise UnitExecutionFailure(unit.id, exit_code=result)
        raise UnitExecutionFailure(unit.id, detail=f"action returned {result!r}")

    def execute(self, unit: Unit) -> UnitOutcome:
        """Run one unit and return its terminal outcome.

        Raises:
            MissingRequiredSetting: A declared setting has no value.
            InstallFailure: Dependency installation failed.
            UnitExecutionFailure: The body failed.
            LedgerError: The ledger could not be read or written.
        """
        descriptor = unit.descriptor
        outcome = UnitOutcome(unit_id=unit.id, phase=unit.phase)
        self.outcomes.append(outcome)

        with self._tracer.start_as_current_span("omniforge.unit") as span:
            safe_set_span_attributes(
                span,
                {
                    "omniforge.unit.id": unit.id,
                    "omniforge.unit.phase": unit.phase,
                    "omniforge.unit.source": descriptor.source,
                },
            )

            forced = self.flags.force_applies_to(unit.id)
            if not forced and self.ledger.has_succeeded(unit.id):
                outcome.state = UnitState.SKIPPED_ALREADY_SUCCEEDED
                log_skip(f"{descriptor.display_name} already completed ({unit.id})")
                safe_set_span_attributes(span, {"omniforge.unit.state": outcome.state.value})
                return outcome

            if self.flags.dry_run:
                outcome.state = UnitState.SKIPPED_DRY_RUN
                log_dry(f"Would run {descriptor.display_name} ({unit.id})")
                if descriptor.packages or descriptor.dev_packages:
                    log_dry(
                        f"Would install packages [{', '.join(descriptor.packages)}] "
                        f"dev [{', '.join(descriptor.dev_packages)}]"
                    )
                safe_set_span_attributes(span, {"omniforge.unit.state": outcome.state.value})
                return outcome

            outcome.state = UnitState.RUNNING
            log_step(f"{'Re-running' if forced else 'Running'} {descriptor.display_name} ({unit.id})")
            started = time.monotonic()
            try:
                settings = self.resolver.require(descriptor.settings_keys, unit_id=unit.id)
                outcome.installed = self._install_dependencies(descriptor)
                ctx = RunContext(
                    descriptor=descriptor,
                    flags=self.flags,
                    settings=settings,
                    resolver=self.resolver,
                    installer=self.installer,
                    project_root=self.project_root,
                    install_dir=self.install_dir,
                    logger=logger.bind(unit=unit.id),
                )
                self._invoke(unit, ctx)
                self.ledger.mark_succeeded(unit.id)
            except OrchestratorError as e:
                outcome.state = UnitState.FAILED
                outcome.error = str(e)
                outcome.error_kind = e.kind
                logger.error(str(e))
                safe_set_span_attributes(span, {"omniforge.unit.error_kind": e.kind})
                raise
            finally:
                outcome.duration_seconds = time.monotonic() - started
                safe_set_span_attributes(
                    span,
                    {
                        "omniforge.unit.state": outcome.state.value,
                        "omniforge.unit.duration_seconds": outcome.duration_seconds,
                    },
                )

            outcome.state = UnitState.SUCCEEDED
            safe_set_span_attributes(span, {"omniforge.unit.state": outcome.state.value})
            log_ok(f"{descriptor.display_name} completed in {outcome.duration_seconds:.1f}s")
            return outcome
