"""
Idempotency Ledger
==================
Durable record of which units have completed successfully.

The ledger is a single JSON document:

    {
      "schema_version": "1.0",
      "entries": {
        "core/nextjs.sh": {"status": "succeeded", "timestamp": "2026-01-01T00:00:00+00:00"}
      }
    }

Only success is recorded. A unit is marked after its body returns, so a crash
mid-unit leaves it unmarked and it runs again next time.

Writes take an exclusive file lock, re-read the document, and replace it
atomically (temp file in the same directory, fsync, os.replace). Readers
never observe a partially written file.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from filelock import FileLock, Timeout
from loguru import logger

from omniforge.config import TIMEOUTS
from omniforge.errors import LedgerError, LedgerLockTimeout
from omniforge.utils.schema_validation import validate_ledger_document

LEDGER_SCHEMA_VERSION = "1.0"
STATUS_SUCCEEDED = "succeeded"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _empty_document() -> Dict[str, Any]:
    return {"schema_version": LEDGER_SCHEMA_VERSION, "entries": {}}


@dataclass(frozen=True)
class LedgerEntry:
    unit_id: str
    status: str
    timestamp: str

    def to_dict(self) -> Dict[str, str]:
        return {"status": self.status, "timestamp": self.timestamp}


class IdempotencyLedger:
    """File-backed success ledger shared by every run against one project."""

    def __init__(self, path: Union[str, Path], lock_timeout_seconds: Optional[int] = None):
        self.path = Path(path)
        self.lock_path = self.path.with_suffix(self.path.suffix + ".lock")
        self.lock_timeout_seconds = (
            lock_timeout_seconds if lock_timeout_seconds is not None else TIMEOUTS.FILE_LOCK
        )

    def _read_document(self) -> Dict[str, Any]:
        if not self.path.exists():
            return _empty_document()

        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise LedgerError(f"Failed to read ledger {self.path}: {e}") from e

        if not raw.strip():
            return _empty_document()

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise LedgerError(f"Ledger {self.path} is not valid JSON: {e}") from e

        try:
            validate_ledger_document(payload)
        except ValueError as e:
            raise LedgerError(f"Ledger {self.path} is invalid: {e}") from e

        return payload

    def _write_document(self, payload: Dict[str, Any]) -> None:
        data = json.dumps(payload, indent=2, sort_keys=True) + "\n"

        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise LedgerError(f"Failed to write ledger {self.path}: {e}") from e

    def _locked(self) -> FileLock:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(str(self.lock_path), timeout=self.lock_timeout_seconds)

    def _update(self, mutate) -> Dict[str, Any]:
        try:
            with self._locked():
                payload = self._read_document()
                mutate(payload["entries"])
                self._write_document(payload)
                return payload
        except Timeout as e:
            raise LedgerLockTimeout(
                f"Timed out acquiring ledger lock {self.lock_path} after {self.lock_timeout_seconds}s"
            ) from e
        except LedgerError:
            raise
        except OSError as e:
            # unusable ledger directory or lock file
            raise LedgerError(f"Failed to update ledger {self.path}: {e}") from e

    def entries(self) -> Dict[str, LedgerEntry]:
        payload = self._read_document()
        return {
            unit_id: LedgerEntry(unit_id=unit_id, status=str(e["status"]), timestamp=str(e["timestamp"]))
            for unit_id, e in payload["entries"].items()
        }

    def get(self, unit_id: str) -> Optional[LedgerEntry]:
        return self.entries().get(unit_id)

    def has_succeeded(self, unit_id: str) -> bool:
        entry = self.get(unit_id)
        return entry is not None and entry.status == STATUS_SUCCEEDED

    def mark_succeeded(self, unit_id: str) -> LedgerEntry:
        """Record success for unit_id; the write is durable before this returns."""
        entry = LedgerEntry(unit_id=unit_id, status=STATUS_SUCCEEDED, timestamp=_utc_now_iso())

        def _set(entries: Dict[str, Any]) -> None:
            entries[unit_id] = entry.to_dict()

        self._update(_set)
        logger.debug(f"Ledger: marked {unit_id} succeeded")
        return entry

    def clear(self, unit_id: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        removed = []

        def _drop(entries: Dict[str, Any]) -> None:
            if entries.pop(unit_id, None) is not None:
                removed.append(unit_id)

        self._update(_drop)
        return bool(removed)

    def clear_all(self) -> int:
        """Remove every entry. Returns how many were removed."""
        count = []

        def _drop_all(entries: Dict[str, Any]) -> None:
            count.append(len(entries))
            entries.clear()

        self._update(_drop_all)
        return count[0]
