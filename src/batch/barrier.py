# src/batch/barrier.py — v1
"""Batch barrier: run a set of units concurrently and join on all of them.

The result is a frozenset, so callers cannot depend on completion order.
Concurrency is bounded by a semaphore sized at the hard ceiling, whatever
the estimated batch size.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from stronghold.batch.models import WorkUnitFailure
from stronghold.core.models import UnitOutcome, WorkUnit

logger = logging.getLogger(__name__)

RunUnit = Callable[[WorkUnit], Awaitable[UnitOutcome]]


class Barrier:
    """Join point for one batch."""

    def __init__(self, max_concurrency: int, timeout_s: float | None = None) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._timeout_s = timeout_s

    async def _guarded(self, unit: WorkUnit, run_unit: RunUnit) -> UnitOutcome:
        async with self._semaphore:
            try:
                if self._timeout_s:
                    return await asyncio.wait_for(run_unit(unit), timeout=self._timeout_s)
                return await run_unit(unit)
            except asyncio.TimeoutError:
                failure = WorkUnitFailure(unit.id, f"no response within {self._timeout_s}s")
            except WorkUnitFailure as exc:
                failure = exc
            except Exception as exc:
                failure = WorkUnitFailure(unit.id, f"{type(exc).__name__}: {exc}")
        logger.warning("%s", failure)
        return UnitOutcome(unit_id=unit.id, succeeded=False, error=failure.reason)

    async def run(self, units: frozenset[WorkUnit], run_unit: RunUnit) -> frozenset[UnitOutcome]:
        """Run every unit and return once all have produced or definitively failed."""
        if not units:
            return frozenset()
        # Siblings start in index order so a sibling waiting on its writer
        # token never holds a slot an earlier sibling needs.
        ordered = sorted(units, key=lambda u: (u.sibling_index, u.id))
        results = await asyncio.gather(*(self._guarded(u, run_unit) for u in ordered))
        return frozenset(results)
