"""
Flag Registry
=============
Parses process arguments once per run into a shared, read-only RunFlags.

Only --dry-run has orchestrator-enforced meaning (the executor never invokes a
unit body in dry-run). --force bypasses the ledger skip, either for the whole
run (bare --force) or for targeted units (--force=ID[,ID] or --force-unit ID).
Every other flag is an opaque boolean handed to the units.

Unknown flags are kept rather than rejected because individual units may
recognize flags the orchestrator does not interpret.
"""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence

ENV_FLAG_PREFIX = "OMNI_STACK_"
_TRUTHY = {"1", "true", "yes", "on"}


class Flag(str, Enum):
    """Flags the orchestrator core knows by name."""

    DRY_RUN = "dry-run"
    SKIP_INSTALL = "skip-install"
    DEV_ONLY = "dev-only"
    NO_DEV = "no-dev"
    FORCE = "force"
    NO_VERIFY = "no-verify"

    @property
    def attr(self) -> str:
        return self.value.replace("-", "_")

    @property
    def env_name(self) -> str:
        return self.value.replace("-", "_").upper()


def normalize_flag_name(token: str) -> str:
    """Reduce '--Dry_Run=1', 'dry-run' or 'DRY_RUN' to 'dry-run'."""
    name = str(token).strip().lstrip("-")
    name = name.split("=", 1)[0]
    return name.replace("_", "-").lower()


class _FlagParser(argparse.ArgumentParser):
    def error(self, message: str):  # type: ignore[override]
        raise ValueError(f"Invalid run flags: {message}")


def _build_parser() -> _FlagParser:
    parser = _FlagParser(add_help=False, allow_abbrev=False)
    parser.add_argument("-n", "--dry-run", dest="dry_run", action="store_true")
    parser.add_argument("--skip-install", dest="skip_install", action="store_true")
    parser.add_argument("--dev-only", dest="dev_only", action="store_true")
    parser.add_argument("--no-dev", dest="no_dev", action="store_true")
    parser.add_argument("--no-verify", dest="no_verify", action="store_true")
    parser.add_argument("--force", dest="force", nargs="?", const=None, action="append")
    parser.add_argument("--force-unit", dest="force_unit", action="append", default=[])
    return parser


def _env_flag(environ: Mapping[str, str], flag: Flag) -> bool:
    raw = environ.get(f"{ENV_FLAG_PREFIX}{flag.env_name}", "")
    return str(raw).strip().lower() in _TRUTHY


@dataclass(frozen=True)
class RunFlags:
    """Flag set for one orchestrator invocation."""

    dry_run: bool = False
    skip_install: bool = False
    dev_only: bool = False
    no_dev: bool = False
    force: bool = False
    no_verify: bool = False
    force_targets: FrozenSet[str] = field(default_factory=frozenset)
    extra: FrozenSet[str] = field(default_factory=frozenset)

    def is_set(self, name: str, unit_id: Optional[str] = None) -> bool:
        """Whether a flag is on.

        With unit_id, force answers for that unit only; without it, any
        targeted force counts.
        """
        key = normalize_flag_name(name)
        if key == Flag.FORCE.value:
            if unit_id is not None:
                return self.force_applies_to(unit_id)
            return self.force or bool(self.force_targets)
        for flag in Flag:
            if flag.value == key:
                return bool(getattr(self, flag.attr))
        return key in self.extra

    def force_applies_to(self, unit_id: str) -> bool:
        return self.force or unit_id in self.force_targets

    def set_flags(self, unit_id: Optional[str] = None) -> List[str]:
        """Names of every flag that is on (for unit_id, when given), known flags first."""
        names = [flag.value for flag in Flag if self.is_set(flag.value, unit_id)]
        names.extend(sorted(self.extra))
        return names

    def to_env(self, unit_id: Optional[str] = None) -> Dict[str, str]:
        """Known flags as DRY_RUN=true/false style variables for unit scripts.

        Pass unit_id so FORCE reflects whether force targets that unit.
        """
        return {flag.env_name: "true" if self.is_set(flag.value, unit_id) else "false" for flag in Flag}

    def to_dict(self) -> Dict[str, object]:
        return {
            "dry_run": self.dry_run,
            "skip_install": self.skip_install,
            "dev_only": self.dev_only,
            "no_dev": self.no_dev,
            "force": self.force,
            "force_targets": sorted(self.force_targets),
            "no_verify": self.no_verify,
            "extra": sorted(self.extra),
        }


def parse_run_flags(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RunFlags:
    """Parse argv (and OMNI_STACK_* fallbacks) into RunFlags.

    Args:
        argv: Argument tokens; positional tokens are ignored.
        environ: Environment used for OMNI_STACK_<FLAG> fallbacks, defaults to os.environ.

    Raises:
        ValueError: When a known flag is malformed (for example '--dry-run=1'), or
            --force= names no unit ids.
    """
    environ = os.environ if environ is None else environ
    ns, unknown = _build_parser().parse_known_args(list(argv or []))

    targets: set[str] = set()
    global_force = False
    for value in ns.force or []:
        if value is None:
            global_force = True
            continue
        ids = [part.strip() for part in str(value).split(",") if part.strip()]
        if not ids:
            raise ValueError(f"Invalid run flags: --force={value!r} names no unit ids")
        targets.update(ids)
    for value in ns.force_unit:
        targets.update(part.strip() for part in str(value).split(",") if part.strip())

    extra = set()
    for token in unknown:
        if token == "--" or not token.startswith("-"):
            continue
        name = normalize_flag_name(token)
        if name:
            extra.add(name)

    return RunFlags(
        dry_run=bool(ns.dry_run) or _env_flag(environ, Flag.DRY_RUN),
        skip_install=bool(ns.skip_install) or _env_flag(environ, Flag.SKIP_INSTALL),
        dev_only=bool(ns.dev_only) or _env_flag(environ, Flag.DEV_ONLY),
        no_dev=bool(ns.no_dev) or _env_flag(environ, Flag.NO_DEV),
        force=global_force or _env_flag(environ, Flag.FORCE),
        no_verify=bool(ns.no_verify) or _env_flag(environ, Flag.NO_VERIFY),
        force_targets=frozenset(targets),
        extra=frozenset(extra),
    )
