"""
Tests for the Phase Scheduler
=============================
"""

import pytest

from omniforge.scheduler import group_by_phase, phase_label, schedule


@pytest.mark.unit
def test_sorted_by_phase_and_stable_within_phase(make_unit):
    units = [make_unit("C", 3), make_unit("A", 0), make_unit("X", 1), make_unit("B", 0)]
    assert [u.id for u in schedule(units)] == ["A", "B", "X", "C"]


@pytest.mark.unit
def test_only_keeps_phase_order(make_unit):
    units = [make_unit("A", 0), make_unit("B", 0), make_unit("C", 3)]
    assert [u.id for u in schedule(units, only=["C", "A"])] == ["A", "C"]


@pytest.mark.unit
def test_only_unknown_id_raises(make_unit):
    with pytest.raises(KeyError, match="ghost"):
        schedule([make_unit("A", 0)], only=["ghost"])


@pytest.mark.unit
def test_profile_filter(make_unit):
    units = [
        make_unit("docker", 1, profile_tags=frozenset({"docker"})),
        make_unit("core", 0, profile_tags=frozenset({"core", "minimal"})),
        make_unit("untagged", 0),
    ]
    assert [u.id for u in schedule(units, profiles=["minimal", "docker"])] == ["core", "docker"]


@pytest.mark.unit
def test_group_by_phase_and_label(make_unit):
    ordered = schedule([make_unit("A", 0), make_unit("B", 0, phase_name="Foundation"), make_unit("C", 3)])
    groups = group_by_phase(ordered)
    assert list(groups) == [0, 3]
    assert [u.id for u in groups[0]] == ["A", "B"]
    assert phase_label(groups[0]) == "Phase 0: Foundation"
    assert phase_label(groups[3]) == "Phase 3"
