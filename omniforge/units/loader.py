"""
Unit Loader
===========
Discovers script units from a directory and registers Python units.

Script units are '*.sh' files carrying a '#!meta' block. Discovery order is
the sorted relative path, which makes it deterministic across machines; the
scheduler keeps that order within a phase.

Identity must be unique across everything loaded in a run. A duplicate fails
the whole load instead of shadowing the earlier unit.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Optional, Union

from loguru import logger

from omniforge.config import TIMEOUTS
from omniforge.errors import DuplicateUnitIdentity, UnitExecutionFailure
from omniforge.units.descriptor import Unit, UnitAction, UnitDescriptor
from omniforge.units.metadata import descriptor_from_mapping, has_meta_block, parse_metadata
from omniforge.utils.subprocess_env import build_unit_env

if TYPE_CHECKING:
    from omniforge.executor import RunContext


class ScriptAction:
    """Runs a bash unit script as a child process.

    The child gets resolved settings and DRY_RUN/SKIP_INSTALL/... in its
    environment, and the unit's recognized flags that are set as arguments.
    FORCE is true only when force applies to this unit.
    """

    def __init__(self, script_path: Union[str, Path], timeout_seconds: Optional[int] = None, shell: str = "bash"):
        self.script_path = Path(script_path)
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else TIMEOUTS.UNIT
        self.shell = shell

    def build_argv(self, ctx: "RunContext") -> List[str]:
        args = [self.shell, str(self.script_path)]
        for name in ctx.flags.set_flags(ctx.descriptor.id):
            if ctx.descriptor.recognizes(name):
                args.append(f"--{name}")
        return args

    def __call__(self, ctx: "RunContext") -> int:
        argv = self.build_argv(ctx)
        extra = dict(ctx.settings)
        extra.update(ctx.flags.to_env(ctx.descriptor.id))
        extra.setdefault("PROJECT_ROOT", str(ctx.project_root))
        extra.setdefault("INSTALL_DIR", str(ctx.install_dir))
        extra["OMNI_UNIT_ID"] = ctx.descriptor.id

        cwd = ctx.install_dir if Path(ctx.install_dir).is_dir() else ctx.project_root
        logger.debug(f"Executing {' '.join(argv)} (cwd={cwd})")

        try:
            completed = subprocess.run(
                argv,
                cwd=str(cwd),
                env=build_unit_env(extra=extra),
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise UnitExecutionFailure(
                ctx.descriptor.id, detail=f"timed out after {self.timeout_seconds}s"
            ) from e

        return completed.returncode

    def __repr__(self) -> str:
        return f"ScriptAction({str(self.script_path)!r})"


class UnitRegistry:
    """Ordered collection of units with unique identities.

    Usage:
        registry = UnitRegistry()
        registry.load_directory(project_root / "tech_stack")

        @registry.unit(id="db/seed", phase=2, settings_keys=["DATABASE_URL"])
        def seed(ctx):
            ...
    """

    def __init__(self) -> None:
        self._units: Dict[str, Unit] = {}

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[Unit]:
        return iter(self._units.values())

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._units

    def get(self, unit_id: str) -> Optional[Unit]:
        return self._units.get(unit_id)

    def units(self) -> List[Unit]:
        """Units in discovery/registration order."""
        return list(self._units.values())

    def add(self, unit: Unit) -> Unit:
        existing = self._units.get(unit.id)
        if existing is not None:
            raise DuplicateUnitIdentity(unit.id, existing.descriptor.source, unit.descriptor.source)
        self._units[unit.id] = unit
        logger.debug(f"Registered unit {unit.id} (phase {unit.phase}) from {unit.descriptor.source}")
        return unit

    def register(self, descriptor: UnitDescriptor, action: UnitAction) -> Unit:
        return self.add(Unit(descriptor=descriptor, action=action))

    def extend(self, units: Iterable[Unit]) -> None:
        for unit in units:
            self.add(unit)

    def unit(
        self,
        *,
        id: str,
        phase: int,
        name: str = "",
        phase_name: str = "",
        profile_tags: Iterable[str] = (),
        settings_keys: Iterable[str] = (),
        flags: Iterable[str] = (),
        packages: Iterable[str] = (),
        dev_packages: Iterable[str] = (),
    ):
        """Decorator registering a Python callable as a unit.

        The arguments go through the same schema validation as script metadata.
        """

        def decorator(func: UnitAction) -> UnitAction:
            descriptor = descriptor_from_mapping(
                {
                    "id": id,
                    "name": name or func.__name__,
                    "phase": phase,
                    "phase_name": phase_name,
                    "profile_tags": list(profile_tags),
                    "uses_from_omni_settings": list(settings_keys),
                    "top_flags": list(flags),
                    "dependencies": {
                        "packages": list(packages),
                        "dev_packages": list(dev_packages),
                    },
                },
                source=f"{func.__module__}.{func.__qualname__}",
            )
            self.register(descriptor, func)
            return func

        return decorator

    def load_directory(self, units_dir: Union[str, Path], timeout_seconds: Optional[int] = None) -> List[Unit]:
        """Discover and register every script unit under units_dir."""
        loaded = discover_script_units(units_dir, timeout_seconds=timeout_seconds)
        self.extend(loaded)
        return loaded


def iter_unit_scripts(units_dir: Union[str, Path]) -> List[Path]:
    """All '*.sh' files under units_dir, sorted by relative path.

    Directories starting with '_' (shared helper libraries) are excluded.
    """
    root = Path(units_dir)
    if not root.is_dir():
        raise FileNotFoundError(f"Units directory does not exist: {root}")

    scripts = []
    for path in root.rglob("*.sh"):
        rel = path.relative_to(root)
        if any(part.startswith("_") for part in rel.parts[:-1]):
            continue
        if path.is_file():
            scripts.append(path)
    return sorted(scripts, key=lambda p: p.relative_to(root).as_posix())


def discover_script_units(units_dir: Union[str, Path], timeout_seconds: Optional[int] = None) -> List[Unit]:
    """Parse every script with a metadata block into a Unit.

    Scripts without a block are skipped. Duplicate identities across the
    directory raise DuplicateUnitIdentity.

    Raises:
        MalformedMetadata: A block exists but is invalid.
        DuplicateUnitIdentity: Two scripts declare the same id.
    """
    units: List[Unit] = []
    seen: Dict[str, str] = {}
    skipped = 0

    for path in iter_unit_scripts(units_dir):
        text = path.read_text(encoding="utf-8", errors="replace")
        if not has_meta_block(text):
            skipped += 1
            logger.debug(f"No metadata block in {path}, skipping")
            continue

        descriptor = parse_metadata(text, source=str(path))
        if descriptor.id in seen:
            raise DuplicateUnitIdentity(descriptor.id, seen[descriptor.id], str(path))
        seen[descriptor.id] = str(path)

        units.append(Unit(descriptor=descriptor, action=ScriptAction(path, timeout_seconds=timeout_seconds)))

    logger.debug(f"Discovered {len(units)} units in {units_dir} ({skipped} scripts without metadata)")
    return units
