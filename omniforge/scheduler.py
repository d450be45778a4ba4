"""
Phase Scheduler
===============
Orders units for execution.

Phase number is the only ordering signal: units are sorted ascending by
phase, and units sharing a phase keep their discovery order. There is no
dependency graph between units.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence

from loguru import logger

from omniforge.units.descriptor import Unit


def schedule(
    units: Iterable[Unit],
    profiles: Optional[Iterable[str]] = None,
    only: Optional[Iterable[str]] = None,
) -> List[Unit]:
    """Return units in execution order.

    Args:
        units: Units in discovery order.
        profiles: When given, keep units tagged with at least one of these.
        only: When given, keep only these unit ids. Order is still by phase.

    Raises:
        KeyError: An id in `only` does not match any loaded unit.
    """
    selected = list(units)

    if only:
        wanted = [u.strip() for u in only if u and u.strip()]
        known = {unit.id for unit in selected}
        unknown = [unit_id for unit_id in wanted if unit_id not in known]
        if unknown:
            raise KeyError(f"Unknown unit id(s): {', '.join(unknown)}")
        wanted_set = set(wanted)
        selected = [unit for unit in selected if unit.id in wanted_set]

    if profiles:
        tags = {p.strip() for p in profiles if p and p.strip()}
        if tags:
            selected = [unit for unit in selected if unit.descriptor.profile_tags & tags]

    # sorted() is stable, so ties keep discovery order
    ordered = sorted(selected, key=lambda unit: unit.phase)
    logger.debug(f"Scheduled {len(ordered)} units: {', '.join(unit.id for unit in ordered) or '-'}")
    return ordered


def group_by_phase(units: Sequence[Unit]) -> Dict[int, List[Unit]]:
    """Group an already ordered list by phase, preserving order."""
    groups: Dict[int, List[Unit]] = OrderedDict()
    for unit in units:
        groups.setdefault(unit.phase, []).append(unit)
    return groups


def phase_label(units: Sequence[Unit]) -> str:
    """'Phase 1: Infrastructure & Database' for a non-empty same-phase group."""
    first = units[0]
    name = next((u.descriptor.phase_name for u in units if u.descriptor.phase_name), "")
    return f"Phase {first.phase}: {name}" if name else f"Phase {first.phase}"
