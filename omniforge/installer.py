"""
Dependency Installer
====================
Installs packages declared by units, at most once per run.

Every package name submitted during a run is recorded in an in-memory set;
later requests for the same name are skipped without calling the package
manager. With --skip-install the names are still recorded but nothing is
installed, so ordering and logging can be checked without network or disk
cost. The package manager's own state stays the durable truth.

Failures raise InstallFailure and are not retried.
"""

from __future__ import annotations

import shlex
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Set, Union

from loguru import logger

from omniforge.config import INSTALLER, TIMEOUTS
from omniforge.errors import InstallFailure
from omniforge.log import log_ok, log_skip, log_step
from omniforge.utils.subprocess_env import build_unit_env

_STDERR_TAIL_CHARS = 2000


def package_name(spec: str) -> str:
    """Strip a version from a package spec: 'next@15' -> 'next', '@types/node@20' -> '@types/node'."""
    spec = spec.strip()
    if spec.startswith("@"):
        scope, sep, rest = spec.partition("/")
        if not sep:
            return spec
        return f"{scope}/{rest.split('@', 1)[0]}"
    return spec.split("@", 1)[0]


class InstallBackend(Protocol):
    def install(self, packages: Sequence[str], dev: bool, cwd: Path) -> None:
        """Install packages or raise InstallFailure."""


class PackageManagerBackend:
    """Invokes pnpm (preferred) or npm."""

    SUPPORTED = ("pnpm", "npm")

    def __init__(
        self,
        manager: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
        extra_flags: Optional[str] = None,
    ):
        self.manager = manager or INSTALLER.PACKAGE_MANAGER or None
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else TIMEOUTS.INSTALL
        self.extra_flags = shlex.split(extra_flags if extra_flags is not None else INSTALLER.EXTRA_FLAGS)

    def resolve_manager(self) -> Optional[str]:
        if self.manager:
            return self.manager
        for candidate in self.SUPPORTED:
            if shutil.which(candidate):
                return candidate
        return None

    def build_command(self, manager: str, packages: Sequence[str], dev: bool) -> List[str]:
        if manager == "pnpm":
            cmd = ["pnpm", "add"]
            if dev:
                cmd.append("-D")
            cmd.extend(self.extra_flags)
        else:
            cmd = [manager, "install"]
            if dev:
                cmd.append("--save-dev")
        cmd.extend(packages)
        return cmd

    def install(self, packages: Sequence[str], dev: bool, cwd: Path) -> None:
        manager = self.resolve_manager()
        if manager is None:
            raise InstallFailure(list(packages), dev, "no package manager available (need pnpm or npm)")

        cmd = self.build_command(manager, packages, dev)
        logger.debug(f"Running {' '.join(cmd)} in {cwd}")
        try:
            completed = subprocess.run(
                cmd,
                cwd=str(cwd),
                env=build_unit_env(),
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise InstallFailure(list(packages), dev, f"timed out after {self.timeout_seconds}s") from e
        except OSError as e:
            raise InstallFailure(list(packages), dev, f"{type(e).__name__}: {e}") from e

        if completed.returncode != 0:
            tail = (completed.stderr or completed.stdout or "").strip()[-_STDERR_TAIL_CHARS:]
            raise InstallFailure(list(packages), dev, f"exit code {completed.returncode}: {tail}")


class DependencyInstaller:
    """Run-scoped installer with at-most-once semantics per package name."""

    def __init__(
        self,
        backend: Optional[InstallBackend] = None,
        skip_install: bool = False,
        cwd: Optional[Union[str, Path]] = None,
    ):
        self.backend: InstallBackend = backend if backend is not None else PackageManagerBackend()
        self.skip_install = skip_install
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()
        self.installed: Set[str] = set()
        self.invocations = 0

    def pending(self, packages: Sequence[str]) -> List[str]:
        """Specs from packages whose names are not yet recorded, de-duplicated."""
        out: List[str] = []
        names: Set[str] = set()
        for spec in packages:
            spec = str(spec).strip()
            if not spec:
                continue
            name = package_name(spec)
            if name in self.installed or name in names:
                continue
            names.add(name)
            out.append(spec)
        return out

    def install(self, packages: Sequence[str], dev: bool = False) -> List[str]:
        """Install packages not yet handled in this run.

        Returns:
            The specs that were newly submitted (or recorded, with skip_install).

        Raises:
            InstallFailure: The backend failed; nothing from this call is recorded.
        """
        todo = self.pending(packages)
        label = "dev packages" if dev else "packages"
        if not todo:
            if packages:
                log_skip(f"{label.capitalize()} already handled this run: {', '.join(packages)}")
            return []

        if self.skip_install:
            log_skip(f"--skip-install: not installing {label} {', '.join(todo)}")
        else:
            cwd = self.cwd if self.cwd.is_dir() else Path.cwd()
            log_step(f"Installing {label}: {', '.join(todo)}")
            self.invocations += 1
            self.backend.install(todo, dev, cwd)
            log_ok(f"Installed {label}: {', '.join(todo)}")

        self.installed.update(package_name(spec) for spec in todo)
        return todo
