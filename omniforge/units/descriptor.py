"""
Unit Descriptor
===============
Static, declarative record attached to each bootstrap unit, plus the
runtime pairing of a descriptor with its action.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, FrozenSet, Optional, Tuple

from omniforge.flags import normalize_flag_name

if TYPE_CHECKING:
    from omniforge.executor import RunContext

# Returns None or 0 on success; a non-zero int or a raised exception is failure.
UnitAction = Callable[["RunContext"], Optional[int]]


@dataclass(frozen=True)
class UnitDescriptor:
    """Parsed metadata for one unit. Never mutated after load."""

    id: str
    phase: int
    name: str = ""
    phase_name: str = ""
    profile_tags: FrozenSet[str] = field(default_factory=frozenset)
    settings_keys: Tuple[str, ...] = ()
    flags: FrozenSet[str] = field(default_factory=frozenset)
    packages: Tuple[str, ...] = ()
    dev_packages: Tuple[str, ...] = ()
    source: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def recognizes(self, flag_name: str) -> bool:
        return normalize_flag_name(flag_name) in self.flags

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "phase": self.phase,
            "phase_name": self.phase_name,
            "profile_tags": sorted(self.profile_tags),
            "settings_keys": list(self.settings_keys),
            "flags": sorted(self.flags),
            "packages": list(self.packages),
            "dev_packages": list(self.dev_packages),
            "source": self.source,
        }


@dataclass(frozen=True)
class Unit:
    """A descriptor and the callable that performs the unit's work."""

    descriptor: UnitDescriptor
    action: UnitAction

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def phase(self) -> int:
        return self.descriptor.phase
