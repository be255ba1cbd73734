# tests/unit/core/test_unit_models.py — v1
"""Tests for core/models.py — work units, outcomes and findings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from stronghold.core.models import UnitOutcome, WorkUnit, is_significant


class TestWorkUnit:
    def test_hashable_and_frozen(self, make_unit):
        u = make_unit("H-1")
        assert {u, u} == {u}
        with pytest.raises(ValidationError):
            u.tier = 2

    def test_tier_must_be_positive(self, make_unit):
        with pytest.raises(ValidationError):
            make_unit("H-1", tier=0)

    def test_plain_unit_has_no_marker(self, make_unit):
        u = make_unit("H-1")
        assert not u.is_sibling
        assert u.section_marker is None

    def test_sibling_markers(self, make_unit):
        first = make_unit("H-1#1", split_group="H-1", sibling_index=1, sibling_count=2)
        second = make_unit("H-1#2", split_group="H-1", sibling_index=2, sibling_count=2)
        assert first.is_sibling and not first.is_supplemental
        assert second.is_supplemental
        assert first.section_marker == "<!-- section:H-1:1/2 -->"
        assert second.section_marker == "<!-- section:H-1:2/2 -->"


class TestOutcome:
    @pytest.mark.parametrize("severity,verdict,expected", [
        ("critical", "confirmed", True),
        ("high", "potential", True),
        ("high", "dismissed", False),
        ("medium", "confirmed", False),
        (None, None, False),
    ])
    def test_is_significant(self, severity, verdict, expected):
        assert is_significant(severity, verdict) is expected

    def test_failed_outcome_never_significant(self):
        o = UnitOutcome(unit_id="H-1", succeeded=False, severity="critical", verdict="confirmed")
        assert not o.significant

    def test_outcomes_form_sets(self):
        a = UnitOutcome(unit_id="H-1", succeeded=True)
        assert len(frozenset([a, UnitOutcome(unit_id="H-1", succeeded=True)])) == 1
