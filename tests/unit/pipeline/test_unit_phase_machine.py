# tests/unit/pipeline/test_unit_phase_machine.py — v1
"""Tests for pipeline/phase_machine.py — transitions and prerequisites."""

from __future__ import annotations

import pytest

from stronghold.config.phases import PHASE_ORDER
from stronghold.core.models import PhaseStatus
from stronghold.pipeline.phase_machine import (
    PhaseIncomplete,
    PhaseMachine,
    PrerequisiteMissing,
    build_phase_graph,
)
from stronghold.storage.models import RunDescriptor


@pytest.fixture
def machine() -> PhaseMachine:
    return PhaseMachine()


def completed(*phases: str) -> RunDescriptor:
    d = RunDescriptor(run_id="r")
    for p in phases:
        d.phase(p).status = PhaseStatus.COMPLETE
    return d


class TestGraph:
    def test_order_matches_pipeline(self, machine):
        assert machine.order == PHASE_ORDER

    def test_transitive_prerequisites(self, machine):
        assert machine.prerequisites("report") == ["scan", "analyze", "strategize", "investigate"]
        assert machine.prerequisites("scan") == []

    def test_unknown_phase(self, machine):
        with pytest.raises(ValueError):
            machine.prerequisites("deploy")

    def test_cycle_rejected(self):
        with pytest.raises(ValueError, match="cycle"):
            build_phase_graph({"a": ["b"], "b": ["a"]})

    def test_unknown_dependency_rejected(self):
        with pytest.raises(ValueError, match="unknown phase"):
            build_phase_graph({"a": ["ghost"]})


class TestTransitions:
    def test_begin_requires_prerequisites(self, machine):
        d = completed("scan")
        with pytest.raises(PrerequisiteMissing) as exc_info:
            machine.begin(d, "investigate")
        assert exc_info.value.missing == ["analyze", "strategize"]
        assert "stronghold analyze" in str(exc_info.value)
        assert d.phase_status("investigate") == PhaseStatus.PENDING

    def test_begin_returns_new_value(self, machine):
        d = completed("scan")
        updated = machine.begin(d, "analyze")
        assert updated.phase_status("analyze") == PhaseStatus.IN_PROGRESS
        assert updated.phase("analyze").started_at is not None
        assert d.phase_status("analyze") == PhaseStatus.PENDING

    def test_begin_keeps_start_time_on_resume(self, machine):
        first = machine.begin(completed(), "scan")
        again = machine.begin(first, "scan")
        assert again.phase("scan").started_at == first.phase("scan").started_at

    def test_begin_on_complete_phase_is_noop(self, machine):
        d = completed("scan")
        assert machine.begin(d, "scan").phase_status("scan") == PhaseStatus.COMPLETE

    def test_complete_requires_no_outstanding(self, machine):
        d = machine.begin(completed(), "scan")
        with pytest.raises(PhaseIncomplete):
            machine.complete(d, "scan", outstanding=2)
        done = machine.complete(d, "scan", outstanding=0)
        assert done.is_complete("scan")
        assert done.phase("scan").completed_at is not None

    def test_current_phase(self, machine):
        assert machine.current_phase(completed()) is None
        assert machine.current_phase(completed("scan", "analyze")) == "analyze"
        d = machine.begin(completed("scan"), "analyze")
        assert machine.current_phase(d) == "analyze"

    def test_next_command(self, machine):
        assert machine.next_command("scan") == "stronghold analyze"
        assert machine.next_command("verify") is None
