"""
Tests for the Unit Executor
===========================
"""

import pytest

from omniforge.errors import InstallFailure, MissingRequiredSetting, UnitExecutionFailure
from omniforge.executor import RunContext, UnitExecutor, UnitState
from omniforge.flags import RunFlags


def _executor(run_parts, temp_project_folder, **kwargs):
    flags, resolver, installer, ledger = run_parts(**kwargs)
    return UnitExecutor(ledger, flags, resolver, installer, temp_project_folder)


@pytest.mark.unit
def test_success_marks_ledger(run_parts, temp_project_folder, make_unit):
    calls = []
    executor = _executor(run_parts, temp_project_folder)
    outcome = executor.execute(make_unit("A", 0, calls))

    assert outcome.state is UnitState.SUCCEEDED
    assert calls == ["A"]
    assert executor.ledger.has_succeeded("A")


@pytest.mark.unit
def test_already_succeeded_is_skipped(run_parts, temp_project_folder, make_unit, ledger):
    ledger.mark_succeeded("A")
    calls = []
    outcome = _executor(run_parts, temp_project_folder).execute(make_unit("A", 0, calls))
    assert outcome.state is UnitState.SKIPPED_ALREADY_SUCCEEDED
    assert calls == []


@pytest.mark.unit
def test_dry_run_has_no_side_effects(run_parts, temp_project_folder, make_unit, backend, ledger):
    calls = []
    executor = _executor(run_parts, temp_project_folder, flags=RunFlags(dry_run=True))
    unit = make_unit("A", 0, calls, packages=("next",), settings_keys=("MISSING_KEY",))
    outcome = executor.execute(unit)

    assert outcome.state is UnitState.SKIPPED_DRY_RUN
    assert calls == []
    assert backend.calls == []
    assert executor.installer.installed == set()
    assert not ledger.path.exists()


@pytest.mark.unit
def test_skip_check_precedes_dry_run(run_parts, temp_project_folder, make_unit, ledger):
    ledger.mark_succeeded("A")
    outcome = _executor(run_parts, temp_project_folder, flags=RunFlags(dry_run=True)).execute(make_unit("A", 0))
    assert outcome.state is UnitState.SKIPPED_ALREADY_SUCCEEDED


@pytest.mark.unit
def test_force_reruns_and_updates_timestamp(run_parts, temp_project_folder, make_unit, ledger):
    first = ledger.mark_succeeded("B")
    calls = []
    executor = _executor(run_parts, temp_project_folder, flags=RunFlags(force_targets=frozenset({"B"})))

    assert executor.execute(make_unit("B", 0, calls)).state is UnitState.SUCCEEDED
    assert calls == ["B"]
    assert ledger.get("B").timestamp >= first.timestamp


@pytest.mark.unit
def test_missing_setting_fails_before_install_or_body(run_parts, temp_project_folder, make_unit, backend, ledger):
    calls = []
    executor = _executor(run_parts, temp_project_folder)
    unit = make_unit("A", 0, calls, settings_keys=("DATABASE_URL",), packages=("pg",))

    with pytest.raises(MissingRequiredSetting) as exc:
        executor.execute(unit)

    assert exc.value.key == "DATABASE_URL"
    assert calls == []
    assert backend.calls == []
    assert executor.outcomes[-1].state is UnitState.FAILED
    assert executor.outcomes[-1].error_kind == "missing_required_setting"
    assert not ledger.has_succeeded("A")


@pytest.mark.unit
def test_settings_reach_the_action(run_parts, temp_project_folder, make_unit):
    seen = {}
    executor = _executor(run_parts, temp_project_folder, overrides={"DATABASE_URL": "postgres://db"})
    unit = make_unit("A", 0, settings_keys=("DATABASE_URL",))

    def action(ctx: RunContext):
        seen.update(ctx.settings)
        seen["root"] = ctx.project_root
        seen["unit"] = ctx.unit_id

    executor.execute(unit.__class__(descriptor=unit.descriptor, action=action))
    assert seen == {"DATABASE_URL": "postgres://db", "root": temp_project_folder, "unit": "A"}


@pytest.mark.unit
@pytest.mark.parametrize(
    "flags,expected",
    [
        (RunFlags(), [(["next"], False), (["vitest"], True)]),
        (RunFlags(dev_only=True), [(["vitest"], True)]),
        (RunFlags(no_dev=True), [(["next"], False)]),
    ],
)
def test_dev_toggles_choose_lists(run_parts, temp_project_folder, make_unit, backend, flags, expected):
    executor = _executor(run_parts, temp_project_folder, flags=flags)
    executor.execute(make_unit("A", 0, packages=("next",), dev_packages=("vitest",)))
    assert backend.calls == expected


@pytest.mark.unit
def test_install_failure_blocks_body_and_ledger(run_parts, temp_project_folder, make_unit, backend, ledger):
    backend.fail_on.add("broken")
    calls = []
    executor = _executor(run_parts, temp_project_folder)
    with pytest.raises(InstallFailure):
        executor.execute(make_unit("A", 0, calls, packages=("broken",)))
    assert calls == []
    assert not ledger.has_succeeded("A")


@pytest.mark.unit
@pytest.mark.parametrize("result", [1, 127, "nope"])
def test_non_success_return_is_failure(run_parts, temp_project_folder, make_unit, ledger, result):
    executor = _executor(run_parts, temp_project_folder)
    with pytest.raises(UnitExecutionFailure) as exc:
        executor.execute(make_unit("A", 0, result=result))
    if isinstance(result, int):
        assert exc.value.exit_code == result
    assert not ledger.has_succeeded("A")


@pytest.mark.unit
def test_zero_return_is_success(run_parts, temp_project_folder, make_unit):
    assert _executor(run_parts, temp_project_folder).execute(make_unit("A", 0, result=0)).state is UnitState.SUCCEEDED


@pytest.mark.unit
def test_raised_exception_is_wrapped(run_parts, temp_project_folder, make_unit, ledger):
    executor = _executor(run_parts, temp_project_folder)
    with pytest.raises(UnitExecutionFailure, match="RuntimeError: boom") as exc:
        executor.execute(make_unit("A", 0, raises=RuntimeError("boom")))
    assert isinstance(exc.value.__cause__, RuntimeError)
    assert executor.outcomes[-1].state is UnitState.FAILED
    assert not ledger.has_succeeded("A")
