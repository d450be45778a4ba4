"""
Tests for the Idempotency Ledger
================================
"""

import json
import os
from unittest.mock import patch

from filelock import FileLock
import pytest

from omniforge.errors import LedgerError, LedgerLockTimeout
from omniforge.ledger import IdempotencyLedger


@pytest.mark.unit
def test_fresh_ledger_is_empty(ledger):
    assert ledger.entries() == {}
    assert not ledger.has_succeeded("A")
    assert not ledger.path.exists()


@pytest.mark.unit
def test_mark_and_query(ledger):
    entry = ledger.mark_succeeded("core/nextjs.sh")
    assert entry.status == "succeeded"
    assert ledger.has_succeeded("core/nextjs.sh")
    assert ledger.get("core/nextjs.sh") == entry

    payload = json.loads(ledger.path.read_text(encoding="utf-8"))
    assert payload["schema_version"] == "1.0"
    assert payload["entries"]["core/nextjs.sh"]["status"] == "succeeded"


@pytest.mark.unit
def test_entries_survive_new_instance(ledger):
    ledger.mark_succeeded("A")
    reopened = IdempotencyLedger(ledger.path)
    assert reopened.has_succeeded("A")


@pytest.mark.unit
def test_remark_overwrites_timestamp(ledger):
    first = ledger.mark_succeeded("A")
    with patch("omniforge.ledger._utc_now_iso", return_value="2099-01-01T00:00:00+00:00"):
        second = ledger.mark_succeeded("A")
    assert second.timestamp != first.timestamp
    assert list(ledger.entries()) == ["A"]
    assert ledger.get("A").timestamp == "2099-01-01T00:00:00+00:00"


@pytest.mark.unit
def test_write_rereads_file_under_lock(ledger):
    other = IdempotencyLedger(ledger.path)
    ledger.mark_succeeded("A")
    other.mark_succeeded("B")
    assert set(ledger.entries()) == {"A", "B"}


@pytest.mark.unit
def test_clear_and_clear_all(ledger):
    ledger.mark_succeeded("A")
    ledger.mark_succeeded("B")
    assert ledger.clear("A") is True
    assert ledger.clear("A") is False
    assert set(ledger.entries()) == {"B"}
    assert ledger.clear_all() == 1
    assert ledger.entries() == {}


@pytest.mark.unit
def test_corrupt_ledger_is_an_error(ledger):
    ledger.path.write_text("{not json", encoding="utf-8")
    with pytest.raises(LedgerError, match="not valid JSON"):
        ledger.has_succeeded("A")


@pytest.mark.unit
def test_schema_violation_is_an_error(ledger):
    ledger.path.write_text(json.dumps({"schema_version": "1.0", "entries": {"A": {"status": "maybe"}}}), encoding="utf-8")
    with pytest.raises(LedgerError, match="invalid"):
        ledger.entries()


@pytest.mark.unit
def test_lock_timeout(ledger):
    ledger.path.parent.mkdir(parents=True, exist_ok=True)
    with FileLock(str(ledger.lock_path)):
        with pytest.raises(LedgerLockTimeout, match="Timed out"):
            IdempotencyLedger(ledger.path, lock_timeout_seconds=0.1).mark_succeeded("A")
    assert not ledger.has_succeeded("A")


@pytest.mark.unit
def test_crash_before_rename_keeps_previous_ledger(ledger):
    ledger.mark_succeeded("A")
    before = ledger.path.read_text(encoding="utf-8")

    with patch("omniforge.ledger.os.replace", side_effect=OSError("disk gone")):
        with pytest.raises(LedgerError, match="Failed to write"):
            ledger.mark_succeeded("B")

    assert ledger.path.read_text(encoding="utf-8") == before
    assert not ledger.has_succeeded("B")
    leftovers = [p for p in os.listdir(ledger.path.parent) if p.endswith(".tmp")]
    assert leftovers == []


@pytest.mark.unit
def test_unusable_directory_is_a_ledger_error(tmp_path):
    blocker = tmp_path / "state"
    blocker.write_text("not a directory", encoding="utf-8")
    ledger = IdempotencyLedger(blocker / "ledger.json", lock_timeout_seconds=1)

    assert not ledger.has_succeeded("A")
    with pytest.raises(LedgerError, match="Failed to update ledger") as exc:
        ledger.mark_succeeded("A")
    assert not isinstance(exc.value, LedgerLockTimeout)
    assert isinstance(exc.value.__cause__, OSError)


@pytest.mark.unit
def test_temp_file_failure_is_a_ledger_error(ledger):
    ledger.mark_succeeded("A")
    with patch("omniforge.ledger.tempfile.mkstemp", side_effect=PermissionError("read-only")):
        with pytest.raises(LedgerError, match="read-only"):
            ledger.mark_succeeded("B")
    assert not ledger.has_succeeded("B")
