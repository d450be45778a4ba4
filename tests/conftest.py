"""Shared fixtures for orchestrator tests."""

from __future__ import annotations

import sys
import textwrap
from pathlib import Path
from typing import Iterable, Optional

import pytest
from loguru import logger

from omniforge.flags import RunFlags
from omniforge.installer import DependencyInstaller
from omniforge.ledger import IdempotencyLedger
from omniforge.settings import SettingsResolver
from omniforge.units.descriptor import Unit, UnitDescriptor


class RecordingBackend:
    """Install backend that records calls instead of running a package manager."""

    def __init__(self, fail_on: Optional[Iterable[str]] = None):
        self.calls = []
        self.fail_on = set(fail_on or [])

    def install(self, packages, dev, cwd):
        from omniforge.errors import InstallFailure

        self.calls.append((list(packages), dev))
        bad = [p for p in packages if p in self.fail_on]
        if bad:
            raise InstallFailure(list(packages), dev, "simulated failure")


def meta_script(
    unit_id: str,
    phase: int,
    *,
    settings: Iterable[str] = (),
    flags: Iterable[str] = (),
    packages: Iterable[str] = (),
    dev_packages: Iterable[str] = (),
    tags: Iterable[str] = (),
    body: str = "exit 0",
) -> str:
    def _list(name, values, indent="# "):
        values = list(values)
        if not values:
            return f"{indent}{name}: []"
        return "\n".join([f"{indent}{name}:"] + [f"{indent}  - {v}" for v in values])

    header = "\n".join(
        [
            "#!/usr/bin/env bash",
            "#!meta",
            f"# id: {unit_id}",
            f"# name: {unit_id.split('/')[-1]}",
            f"# phase: {phase}",
            "# phase_name: Test Phase",
            _list("profile_tags", tags),
            _list("uses_from_omni_settings", settings),
            _list("top_flags", flags),
            "# dependencies:",
            _list("packages", packages, indent="#   "),
            _list("dev_packages", dev_packages, indent="#   "),
            "#!endmeta",
        ]
    )
    return header + "\n" + textwrap.dedent(body) + "\n"


@pytest.fixture
def temp_project_folder(tmp_path: Path) -> Path:
    """Empty project root with a units directory."""
    root = tmp_path / "project"
    (root / "tech_stack").mkdir(parents=True)
    return root


@pytest.fixture
def ledger(temp_project_folder: Path) -> IdempotencyLedger:
    return IdempotencyLedger(temp_project_folder / ".omniforge_state.json", lock_timeout_seconds=1)


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def make_unit():
    """Build a Python unit whose action appends its id to `calls`."""

    def _make(unit_id, phase, calls=None, *, result=None, raises=None, **fields):
        descriptor = UnitDescriptor(id=unit_id, phase=phase, source=f"test:{unit_id}", **fields)

        def action(ctx):
            if calls is not None:
                calls.append(unit_id)
            if raises is not None:
                raise raises
            return result

        return Unit(descriptor=descriptor, action=action)

    return _make


@pytest.fixture
def run_parts(temp_project_folder, ledger, backend):
    """Resolver/installer/ledger triple wired for one run."""

    def _parts(flags: Optional[RunFlags] = None, overrides=None, defaults=None):
        flags = flags or RunFlags()
        resolver = SettingsResolver(
            overrides=overrides,
            env_file=temp_project_folder / ".env",
            defaults=defaults if defaults is not None else {},
        )
        installer = DependencyInstaller(backend=backend, skip_install=flags.skip_install, cwd=temp_project_folder)
        return flags, resolver, installer, ledger

    return _parts

@pytest.fixture(autouse=True)
def _restore_loguru():
    """configure_logging() replaces global sinks; put a plain stderr sink back afterwards."""
    yield
    logger.remove()
    logger.add(sys.stderr, level="DEBUG")

