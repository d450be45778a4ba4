"""
Run Report
==========
Serializable summary of one orchestrator run.

Stores only stable primitives: per-unit outcomes, counts per state, the
failed unit and its error kind, and named checkpoints. Written as JSON with
`run --report FILE` and printed as a short recap at the end of a run.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from loguru import logger

from omniforge.executor import UnitOutcome, UnitState
from omniforge.log import log_section


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RunReport:
    """Result of one run."""

    project_root: Path
    run_id: str = field(default_factory=lambda: uuid4().hex)
    created_at: str = field(default_factory=_utc_now_iso)
    finished_at: Optional[str] = None

    flags: Dict[str, Any] = field(default_factory=dict)
    scheduled: List[str] = field(default_factory=list)
    outcomes: List[UnitOutcome] = field(default_factory=list)

    success: bool = True
    cancelled: bool = False
    failed_unit: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None

    checkpoints: Dict[str, str] = field(default_factory=dict)

    def mark_checkpoint(self, name: str) -> None:
        if not name.strip():
            return
        self.checkpoints[name] = _utc_now_iso()

    def record_failure(self, unit_id: Optional[str], error: BaseException) -> None:
        self.success = False
        self.failed_unit = unit_id
        self.error_kind = getattr(error, "kind", type(error).__name__)
        self.error = str(error)

    def finish(self) -> None:
        self.finished_at = _utc_now_iso()

    def counts(self) -> Dict[str, int]:
        counter = Counter(outcome.state.value for outcome in self.outcomes)
        counter[UnitState.PENDING.value] += max(0, len(self.scheduled) - len(self.outcomes))
        return {state.value: counter.get(state.value, 0) for state in UnitState}

    def outcome_for(self, unit_id: str) -> Optional[UnitOutcome]:
        for outcome in self.outcomes:
            if outcome.unit_id == unit_id:
                return outcome
        return None

    def executed_ids(self) -> List[str]:
        """Units whose body ran (succeeded or failed), in order."""
        return [
            o.unit_id for o in self.outcomes if o.state in (UnitState.SUCCEEDED, UnitState.FAILED)
        ]

    def exit_code(self) -> int:
        if self.cancelled:
            return 130
        return 0 if self.success else 1

    def to_payload(self) -> Dict[str, Any]:
        return {
            "schema_version": "1.0",
            "run_id": self.run_id,
            "created_at": self.created_at,
            "finished_at": self.finished_at,
            "project_root": str(self.project_root),
            "flags": dict(self.flags),
            "success": self.success,
            "cancelled": self.cancelled,
            "failed_unit": self.failed_unit,
            "error_kind": self.error_kind,
            "error": self.error,
            "scheduled": list(self.scheduled),
            "counts": self.counts(),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "checkpoints": dict(self.checkpoints),
        }

    def write_json(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(self.to_payload(), indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )

    def log_recap(self) -> None:
        log_section("Run summary")
        for outcome in self.outcomes:
            line = f"{outcome.state.value:<26} {outcome.unit_id}"
            if outcome.state in (UnitState.SUCCEEDED, UnitState.FAILED):
                line += f" ({outcome.duration_seconds:.1f}s)"
            logger.info(line)

        counts = ", ".join(f"{k}={v}" for k, v in self.counts().items() if v)
        logger.info(f"Totals: {counts or 'nothing scheduled'}")

        if self.cancelled:
            logger.warning("Run cancelled before completion")
        elif not self.success:
            logger.error(f"Run failed at {self.failed_unit or '-'} ({self.error_kind})")
