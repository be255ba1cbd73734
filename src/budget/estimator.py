# src/budget/estimator.py — v1
"""Budget estimator: per-unit cost, batch-size bands and oversize splitting.

cost = overhead + sum(cost(input_i)) over a unit's resolved inputs, where
  overhead  = fixed template cost (reduced for lightweight units)
  reference = per-file fixed cost + tokens(size) * reference_weight
  artifact  = tokens(size) * artifact_weight
and tokens(size) ~= bytes / bytes_per_token.

The average cost of a queued set selects a band, and the band selects the
maximum batch size. A single unit over the hard ceiling is split instead.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from stronghold.config.settings import RunConfig
from stronghold.core.models import WorkUnit

logger = logging.getLogger(__name__)


class BudgetExceeded(Exception):
    """A single unit's estimate is above the per-unit ceiling."""

    def __init__(self, unit_id: str, estimate: int, ceiling: int) -> None:
        self.unit_id = unit_id
        self.estimate = estimate
        self.ceiling = ceiling
        super().__init__(
            f"Unit {unit_id} estimated at {estimate} tokens exceeds ceiling {ceiling}"
        )


class InputKind(str, Enum):
    REFERENCE = "reference"
    ARTIFACT = "artifact"


class CostBand(str, Enum):
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"


@dataclass(frozen=True)
class ResolvedInput:
    """One concrete input of a unit, as produced by routing."""

    path: str
    size_bytes: int
    kind: InputKind = InputKind.ARTIFACT
    tag: str | None = None


class BudgetEstimator:
    """Estimate unit costs and size batches from a RunConfig."""

    def __init__(self, config: RunConfig) -> None:
        self._config = config

    @property
    def ceiling(self) -> int:
        return self._config.unit_ceiling

    def tokens(self, size_bytes: int) -> int:
        return math.ceil(max(size_bytes, 0) / self._config.bytes_per_token)

    def overhead(self, unit: WorkUnit) -> int:
        if unit.lightweight:
            return self._config.lightweight_overhead
        return self._config.fixed_overhead

    def input_cost(self, item: ResolvedInput) -> int:
        if item.kind == InputKind.REFERENCE:
            return self._config.reference_file_cost + math.ceil(
                self.tokens(item.size_bytes) * self._config.reference_weight
            )
        return math.ceil(self.tokens(item.size_bytes) * self._config.artifact_weight)

    def estimate(self, unit: WorkUnit, inputs: Iterable[ResolvedInput]) -> int:
        """Estimated cost of one unit given its resolved inputs."""
        return self.overhead(unit) + sum(self.input_cost(i) for i in inputs)

    def check(self, unit: WorkUnit, estimate: int) -> None:
        """Raise BudgetExceeded if the estimate is above the per-unit ceiling."""
        if estimate > self._config.unit_ceiling:
            raise BudgetExceeded(unit.id, estimate, self._config.unit_ceiling)

    # --- Bands ---

    def band(self, average: float) -> CostBand:
        if average < self._config.light_threshold:
            return CostBand.LIGHT
        if average <= self._config.heavy_threshold:
            return CostBand.MEDIUM
        return CostBand.HEAVY

    def batch_size_for(self, band: CostBand) -> int:
        return {
            CostBand.LIGHT: self._config.batch_size_light,
            CostBand.MEDIUM: self._config.batch_size_medium,
            CostBand.HEAVY: self._config.batch_size_heavy,
        }[band]

    def batch_size(self, estimates: Sequence[int]) -> int:
        """Maximum batch size for a queued set, from its average estimate."""
        if not estimates:
            return self._config.batch_size_light
        average = sum(estimates) / len(estimates)
        return self.batch_size_for(self.band(average))

    # --- Splitting ---

    def split_count(self, unit: WorkUnit, inputs: Sequence[ResolvedInput]) -> int:
        """Number of siblings needed so each stays under the ceiling (>= 2).

        Returns 1 when the input set cannot be divided.
        """
        if len(inputs) < 2:
            return 1
        variable = sum(self.input_cost(i) for i in inputs)
        capacity = max(self._config.unit_ceiling - self.overhead(unit), 1)
        return min(max(2, math.ceil(variable / capacity)), len(inputs))

    def partition(
        self, inputs: Sequence[ResolvedInput], parts: int,
    ) -> list[tuple[ResolvedInput, ...]]:
        """Disjoint, cost-balanced partition of inputs.

        Largest-first into the currently lightest bin. Bins keep the
        original input order so siblings see inputs in a stable order.
        """
        if parts < 2 or len(inputs) < parts:
            raise ValueError(f"Cannot split {len(inputs)} inputs into {parts} parts")

        order = {item.path: pos for pos, item in enumerate(inputs)}
        bins: list[list[ResolvedInput]] = [[] for _ in range(parts)]
        loads = [0] * parts
        for item in sorted(inputs, key=lambda i: (-self.input_cost(i), i.path)):
            target = min(range(parts), key=lambda b: (loads[b], len(bins[b]), b))
            bins[target].append(item)
            loads[target] += self.input_cost(item)

        logger.debug("Partitioned %d inputs into loads %s", len(inputs), loads)
        return [tuple(sorted(b, key=lambda i: order[i.path])) for b in bins]
