# src/batch/models.py — v2
"""Batch execution models: Batch, BatchReport, ScheduleReport and failures."""

from __future__ import annotations

from dataclasses import dataclass, field

from stronghold.core.models import UnitOutcome, WorkUnit


class WorkUnitFailure(Exception):
    """A unit did not produce its artifact."""

    def __init__(self, unit_id: str, reason: str) -> None:
        self.unit_id = unit_id
        self.reason = reason
        super().__init__(f"Unit {unit_id} failed: {reason}")


class PartialBatchFailure(Exception):
    """Some units of a batch failed. Recovered by the missing-subset retry."""

    def __init__(self, batch_index: int, failed: frozenset[str]) -> None:
        self.batch_index = batch_index
        self.failed = failed
        super().__init__(
            f"Batch {batch_index}: {len(failed)} unit(s) failed: {', '.join(sorted(failed))}"
        )


@dataclass(frozen=True)
class Batch:
    """A set of units dispatched together. No order among members."""

    index: int
    tier: int
    units: frozenset[WorkUnit]
    split_group: str | None = None

    def __len__(self) -> int:
        return len(self.units)


@dataclass
class BatchReport:
    """Resolved outcomes of one batch, including its retry."""

    batch: Batch
    outcomes: frozenset[UnitOutcome]
    retried: frozenset[str] = frozenset()

    @property
    def failed(self) -> frozenset[str]:
        return frozenset(o.unit_id for o in self.outcomes if not o.succeeded)

    @property
    def succeeded(self) -> frozenset[str]:
        return frozenset(o.unit_id for o in self.outcomes if o.succeeded)

    @property
    def significant(self) -> frozenset[UnitOutcome]:
        return frozenset(o for o in self.outcomes if o.significant)

    def failure(self) -> PartialBatchFailure | None:
        return PartialBatchFailure(self.batch.index, self.failed) if self.failed else None


@dataclass
class ScheduleReport:
    """Everything one scheduler invocation did."""

    phase: str
    skipped: frozenset[str] = frozenset()
    batches: list[BatchReport] = field(default_factory=list)
    routing_misses: list[Exception] = field(default_factory=list)
    inconsistencies: list[Exception] = field(default_factory=list)
    splits: list[str] = field(default_factory=list)
    synthesized: list[WorkUnit] = field(default_factory=list)

    @property
    def outcomes(self) -> dict[str, UnitOutcome]:
        """Final outcome per unit (a later retry overrides an earlier attempt)."""
        merged: dict[str, UnitOutcome] = {}
        for report in self.batches:
            for outcome in report.outcomes:
                previous = merged.get(outcome.unit_id)
                if previous is None or not previous.succeeded:
                    merged[outcome.unit_id] = outcome
        return merged

    @property
    def completed(self) -> frozenset[str]:
        return frozenset(uid for uid, o in self.outcomes.items() if o.succeeded)

    @property
    def failed(self) -> frozenset[str]:
        return frozenset(uid for uid, o in self.outcomes.items() if not o.succeeded)

    @property
    def retries(self) -> int:
        return sum(len(r.retried) for r in self.batches)
