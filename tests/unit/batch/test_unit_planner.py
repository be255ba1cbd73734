# tests/unit/batch/test_unit_planner.py — v1
"""Tests for batch/planner.py — estimation, splitting and tier partitioning."""

from __future__ import annotations

import pytest

from stronghold.batch.planner import BatchPlanner
from stronghold.budget.estimator import BudgetEstimator
from stronghold.config.settings import RunConfig
from stronghold.core.tags import TagVocabulary
from stronghold.routing.table import RoutingTable
from stronghold.storage.models import ArtifactIndexEntry


def entry(path: str, tag: str, size: int) -> ArtifactIndexEntry:
    return ArtifactIndexEntry(path=path, unit_id=path, phase="analyze", provides=[tag], size_bytes=size)


@pytest.fixture
def planner() -> BatchPlanner:
    table = RoutingTable(
        [
            # 25K tokens: a unit requiring it costs 5K + 25K = 30K.
            entry("analyze/architecture.md", "architecture", 100_000),
            # Two 62.5K-token artifacts: a unit requiring both costs 130K.
            entry("investigate/findings/A.md", "findings", 250_000),
            entry("investigate/findings/B.md", "findings", 250_000),
            entry("analyze/oracle.md", "oracle", 600_000),
        ],
        TagVocabulary(),
    )
    return BatchPlanner(BudgetEstimator(RunConfig()), table)


class TestPrepare:
    def test_estimate_attached(self, planner, make_unit):
        p = planner.prepare(make_unit("U", requires=frozenset({"architecture"})))
        assert p.estimate == 30_000
        assert p.id == "U"


class TestTierPlan:
    def test_ten_light_units_make_batches_of_eight_and_two(self, planner, make_unit):
        units = [make_unit(f"U{i:02d}", requires=frozenset({"architecture"})) for i in range(10)]
        planned, split = planner.expand(units)
        assert split == []
        plan = planner.plan_tier(1, planned)
        assert plan.batch_size == 8
        assert [len(b) for b in plan.batches] == [8, 2]
        assert plan.total_batches == 2

    def test_batches_are_deterministic(self, planner, make_unit):
        units = [make_unit(f"U{i:02d}") for i in range(3)]
        planned, _ = planner.expand(list(reversed(units)))
        plan = planner.plan_tier(1, planned)
        assert [p.id for p in plan.batches[0]] == ["U00", "U01", "U02"]


class TestSplit:
    def test_oversized_unit_splits_into_two_siblings(self, planner, make_unit):
        big = make_unit("BIG", requires=frozenset({"findings"}))
        assert planner.prepare(big).estimate == 130_000

        planned, split = planner.expand([big])
        assert split == ["BIG"]
        assert [p.id for p in planned] == ["BIG#1", "BIG#2"]

        first, second = (p.unit for p in planned)
        assert first.output_path == second.output_path == big.output_path
        assert first.split_group == second.split_group == "BIG"
        assert (first.sibling_index, second.sibling_index) == (1, 2)
        assert set(first.input_subset).isdisjoint(second.input_subset)
        assert set(first.input_subset) | set(second.input_subset) == {
            "investigate/findings/A.md", "investigate/findings/B.md",
        }
        assert all(p.estimate <= 120_000 for p in planned)

    def test_split_groups_run_after_ordinary_batches(self, planner, make_unit):
        planned, _ = planner.expand([
            make_unit("BIG", requires=frozenset({"findings"})),
            make_unit("SMALL"),
        ])
        plan = planner.plan_tier(1, planned)
        assert [[p.id for p in b] for b in plan.batches] == [["SMALL"]]
        assert [[p.id for p in g] for g in plan.split_groups] == [["BIG#1", "BIG#2"]]
        assert plan.total_batches == 2

    def test_indivisible_unit_dispatched_unsplit(self, planner, make_unit):
        huge = make_unit("HUGE", requires=frozenset({"oracle"}))
        planned, split = planner.expand([huge])
        assert split == []
        assert [p.id for p in planned] == ["HUGE"]
        assert planned[0].estimate > 120_000
