"""
Bootstrap Runner
================
Drives one orchestrator run end to end:

    load units -> schedule -> execute each unit in order -> report

The run is sequential and fail-fast. The first run-time error stops the
schedule; units that already succeeded keep their ledger entries, and the
report names the failed unit and the error kind. Nothing is retried or rolled
back.

A first Ctrl-C asks the run to stop after the unit in flight; a second one
interrupts immediately.
"""

from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Mapping, Optional, Union

from loguru import logger

from omniforge.config import PATHS
from omniforge.errors import OrchestratorError
from omniforge.executor import UnitExecutor
from omniforge.flags import RunFlags
from omniforge.installer import DependencyInstaller
from omniforge.ledger import IdempotencyLedger
from omniforge.log import log_section, log_step
from omniforge.report import RunReport
from omniforge.scheduler import phase_label, schedule
from omniforge.settings import DEFAULT_SETTINGS, SettingsResolver
from omniforge.tracing import init_tracing, safe_set_span_attributes
from omniforge.units.descriptor import Unit
from omniforge.units.loader import UnitRegistry


class CancellationToken:
    """Set once a stop has been requested; checked before each unit."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def request(self) -> None:
        self._event.set()

    @property
    def requested(self) -> bool:
        return self._event.is_set()


@contextmanager
def sigint_cancels(token: CancellationToken) -> Iterator[CancellationToken]:
    """Route SIGINT to token for the duration of the block.

    The first signal requests a stop; the second raises KeyboardInterrupt.
    Outside the main thread signal handlers cannot be installed and the
    block runs unchanged.
    """
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    def _handler(signum, frame):
        if token.requested:
            raise KeyboardInterrupt
        token.request()
        logger.warning("Interrupt received: stopping after the current unit (press Ctrl-C again to abort)")

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


def default_ledger_path(project_root: Union[str, Path]) -> Path:
    return Path(project_root) / PATHS.STATE_FILE


def build_resolver(
    project_root: Union[str, Path],
    env_file: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, str]] = None,
    install_dir: Optional[Union[str, Path]] = None,
) -> SettingsResolver:
    """Resolver for one run; PROJECT_ROOT/INSTALL_DIR default to the run's paths."""
    root = Path(project_root)
    defaults = dict(DEFAULT_SETTINGS)
    defaults["PROJECT_ROOT"] = str(root)
    defaults["INSTALL_DIR"] = str(Path(install_dir) if install_dir is not None else root)
    env_path = Path(env_file) if env_file is not None else root / PATHS.ENV_FILE
    return SettingsResolver(overrides=overrides, env_file=env_path, defaults=defaults)


def load_units(
    units_dir: Optional[Union[str, Path]] = None,
    registry: Optional[UnitRegistry] = None,
    timeout_seconds: Optional[int] = None,
) -> List[Unit]:
    """Collect script units from units_dir on top of any already registered units.

    Raises:
        MalformedMetadata, DuplicateUnitIdentity: Load fails as a whole.
        FileNotFoundError: units_dir does not exist.
    """
    registry = registry if registry is not None else UnitRegistry()
    if units_dir is not None:
        registry.load_directory(units_dir, timeout_seconds=timeout_seconds)
    return registry.units()


def run_units(
    units: Iterable[Unit],
    *,
    flags: RunFlags,
    project_root: Union[str, Path],
    install_dir: Optional[Union[str, Path]] = None,
    resolver: Optional[SettingsResolver] = None,
    ledger: Optional[IdempotencyLedger] = None,
    installer: Optional[DependencyInstaller] = None,
    profiles: Optional[Iterable[str]] = None,
    only: Optional[Iterable[str]] = None,
    cancel: Optional[CancellationToken] = None,
) -> RunReport:
    """Execute units in phase order and return the run report.

    Run-time failures are recorded in the report, not raised.

    Raises:
        KeyError: `only` names an unknown unit (before anything runs).
    """
    root = Path(project_root).expanduser().resolve()
    install_root = Path(install_dir).expanduser().resolve() if install_dir is not None else root
    resolver = resolver if resolver is not None else build_resolver(root, install_dir=install_root)
    ledger = ledger if ledger is not None else IdempotencyLedger(default_ledger_path(root))
    installer = (
        installer
        if installer is not None
        else DependencyInstaller(skip_install=flags.skip_install, cwd=install_root)
    )
    cancel = cancel if cancel is not None else CancellationToken()

    ordered = schedule(units, profiles=profiles, only=only)
    report = RunReport(project_root=root, flags=flags.to_dict(), scheduled=[u.id for u in ordered])
    executor = UnitExecutor(
        ledger=ledger,
        flags=flags,
        resolver=resolver,
        installer=installer,
        project_root=root,
        install_dir=install_root,
    )

    tracer = init_tracing()
    with tracer.start_as_current_span("omniforge.run") as span:
        safe_set_span_attributes(
            span,
            {
                "omniforge.run.id": report.run_id,
                "omniforge.run.unit_count": len(ordered),
                "omniforge.run.dry_run": flags.dry_run,
                "omniforge.run.flags": flags.set_flags(),
            },
        )
        report.mark_checkpoint("start")
        mode = " (dry run)" if flags.dry_run else ""
        log_section(f"Bootstrap run {report.run_id[:8]}{mode}: {len(ordered)} units")

        total = len(ordered)
        current_phase: Optional[int] = None
        for index, unit in enumerate(ordered, start=1):
            if cancel.requested:
                report.cancelled = True
                logger.warning(f"Stopping before {unit.id}: cancellation requested")
                break

            if unit.phase != current_phase:
                current_phase = unit.phase
                log_section(phase_label([u for u in ordered if u.phase == current_phase]))

            log_step(f"[{index}/{total}] {unit.id}")
            try:
                executor.execute(unit)
            except OrchestratorError as e:
                report.record_failure(unit.id, e)
                break
            finally:
                report.outcomes = list(executor.outcomes)

        if cancel.requested and report.failed_unit is not None:
            # the interrupted unit failed rather than completed
            report.cancelled = True

        report.finish()
        report.mark_checkpoint("end")
        safe_set_span_attributes(
            span,
            {
                "omniforge.run.success": report.success,
                "omniforge.run.cancelled": report.cancelled,
                "omniforge.run.failed_unit": report.failed_unit,
                "omniforge.run.error_kind": report.error_kind,
            },
        )

    report.log_recap()
    return report
