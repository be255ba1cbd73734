# src/batch/planner.py — v1
"""Batch planner — resolve, estimate, split and partition units into batches."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path

from stronghold.budget.estimator import BudgetEstimator, BudgetExceeded
from stronghold.core.models import WorkUnit
from stronghold.routing.table import Resolution, RoutingTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedUnit:
    """A unit with its resolved inputs and cost estimate."""

    unit: WorkUnit
    resolution: Resolution
    estimate: int

    @property
    def id(self) -> str:
        return self.unit.id


@dataclass
class TierPlan:
    tier: int
    batch_size: int
    batches: list[list[PlannedUnit]] = field(default_factory=list)
    split_groups: list[list[PlannedUnit]] = field(default_factory=list)

    @property
    def total_batches(self) -> int:
        return len(self.batches) + len(self.split_groups)


class BatchPlanner:
    """Turn a unit queue into tiered, budget-sized batches."""

    def __init__(
        self,
        estimator: BudgetEstimator,
        table: RoutingTable,
        reference_root: Path | None = None,
    ) -> None:
        self._estimator = estimator
        self._table = table
        self._reference_root = reference_root

    def prepare(self, unit: WorkUnit) -> PlannedUnit:
        resolution = self._table.resolve(unit, self._reference_root)
        return PlannedUnit(unit, resolution, self._estimator.estimate(unit, resolution.inputs))

    def expand(self, units: list[WorkUnit]) -> tuple[list[PlannedUnit], list[str]]:
        """Prepare every unit, replacing over-ceiling units by their siblings.

        Returns:
            (planned units, ids of the units that were split)
        """
        planned: list[PlannedUnit] = []
        split: list[str] = []
        for unit in units:
            item = self.prepare(unit)
            try:
                self._estimator.check(unit, item.estimate)
            except BudgetExceeded as exc:
                siblings = self.split(item)
                if not siblings:
                    logger.warning("%s; input is indivisible, dispatching unsplit", exc)
                    planned.append(item)
                    continue
                logger.info("%s; split into %d siblings", exc, len(siblings))
                planned.extend(siblings)
                split.append(unit.id)
                continue
            planned.append(item)
        return planned, split

    def split(self, item: PlannedUnit) -> list[PlannedUnit]:
        """Siblings sharing the unit's output path, with disjoint input partitions."""
        unit, inputs = item.unit, item.resolution.inputs
        parts = self._estimator.split_count(unit, inputs)
        if parts < 2:
            return []

        siblings: list[PlannedUnit] = []
        for index, subset in enumerate(self._estimator.partition(inputs, parts), start=1):
            sibling = unit.model_copy(update={
                "id": f"{unit.id}#{index}",
                "split_group": unit.id,
                "sibling_index": index,
                "sibling_count": parts,
                "input_subset": tuple(i.path for i in subset),
            })
            resolution = Resolution(unit_id=sibling.id, inputs=subset, misses=item.resolution.misses)
            estimate = self._estimator.estimate(sibling, subset)
            if estimate > self._estimator.ceiling:
                logger.warning(
                    "Sibling %s still estimated at %d (ceiling %d)",
                    sibling.id, estimate, self._estimator.ceiling,
                )
            siblings.append(PlannedUnit(sibling, resolution, estimate))
        return siblings

    def plan_tier(self, tier: int, planned: list[PlannedUnit]) -> TierPlan:
        """Partition one tier's outstanding units.

        Ordinary units are chunked by the band of their average estimate;
        split siblings form one group per original unit, run after them.
        """
        ordinary = sorted((p for p in planned if not p.unit.is_sibling), key=lambda p: p.id)
        groups: dict[str, list[PlannedUnit]] = defaultdict(list)
        for p in planned:
            if p.unit.is_sibling:
                groups[p.unit.split_group or p.id].append(p)

        size = self._estimator.batch_size([p.estimate for p in ordinary])
        plan = TierPlan(tier=tier, batch_size=size)
        plan.batches = [ordinary[i:i + size] for i in range(0, len(ordinary), size)]
        plan.split_groups = [
            sorted(groups[g], key=lambda p: p.unit.sibling_index) for g in sorted(groups)
        ]
        logger.info(
            "Tier %d: %d unit(s) in %d batch(es) of <= %d, %d split group(s)",
            tier, len(ordinary), len(plan.batches), size, len(plan.split_groups),
        )
        return plan
