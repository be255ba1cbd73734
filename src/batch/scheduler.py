# src/batch/scheduler.py — v1
"""Batch scheduler — tier-ordered, barrier-joined batch execution.

For one phase invocation:
  1. resolve and estimate every unit, splitting over-ceiling units
  2. reconcile with the store (artifacts win) and keep only outstanding units
  3. for each tier in ascending order, re-resolve its units against the
     artifacts earlier tiers produced, then run its batches one at a time
     and its split groups; after every batch re-derive the missing subset
     and retry it (bounded), then rewrite the run descriptor
  4. after the first Tier 1 batch, optionally synthesize derived units once
"""

from __future__ import annotations

import dataclasses
import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Awaitable, Callable

from stronghold.batch.barrier import Barrier
from stronghold.batch.models import Batch, BatchReport, ScheduleReport
from stronghold.batch.planner import BatchPlanner, PlannedUnit
from stronghold.batch.writer_token import WriterToken
from stronghold.budget.estimator import BudgetEstimator
from stronghold.core.models import UnitOutcome, UnitStatus, WorkUnit
from stronghold.logging.context import set_batch_context
from stronghold.resume.controller import ResumeController, recount
from stronghold.routing.table import RoutingTable
from stronghold.storage.models import UnitRecord, utcnow

if TYPE_CHECKING:
    from stronghold.pipeline.context import RunContext

logger = logging.getLogger(__name__)

ExecuteFn = Callable[[PlannedUnit, "WriterToken | None"], Awaitable[UnitOutcome]]
Synthesizer = Callable[[list[UnitOutcome]], Awaitable[list[WorkUnit]]]

TOP_TIER = 1


class BatchScheduler:
    """Drive one phase's units through planned batches."""

    def __init__(
        self,
        ctx: RunContext,
        phase: str,
        execute: ExecuteFn,
        resume: ResumeController | None = None,
    ) -> None:
        self._ctx = ctx
        self._phase = phase
        self._execute = execute
        self._resume = resume or ResumeController(ctx.store)
        self._estimator = BudgetEstimator(ctx.config)
        self._planned: dict[str, PlannedUnit] = {}
        self._originals: dict[str, WorkUnit] = {}
        self._batch_seq = 0

    async def run(
        self,
        units: list[WorkUnit],
        synthesizer: Synthesizer | None = None,
        single_batch: bool = False,
    ) -> ScheduleReport:
        """Execute every outstanding unit.

        Args:
            units: The phase's full unit set; completed ones are skipped.
            synthesizer: Called once with the significant outcomes of the
                first Tier 1 batch; returns derived lower-tier units.
            single_batch: Dispatch everything outstanding as one batch
                (coverage follow-ups).
        """
        planner = await self._planner()
        self._originals.update({u.id: u for u in units})

        planned, split_parents = planner.expand(units)
        reconciled = await self._resume.reconcile(self._ctx, self._phase, [p.unit for p in planned])
        report = ScheduleReport(
            phase=self._phase,
            skipped=reconciled.complete,
            inconsistencies=list(reconciled.issues),
        )
        outstanding = [p for p in planned if p.id in reconciled.outstanding_ids]
        self._planned.update({p.id: p for p in outstanding})
        report.splits = sorted({
            p.unit.split_group for p in outstanding
            if p.unit.is_sibling and p.unit.split_group in split_parents
        })

        if not outstanding:
            logger.info("Phase %s: nothing outstanding", self._phase)
            return report

        if single_batch:
            await self._add_batches_total(1)
            report.batches.append(await self._dispatch(outstanding, tier=min(p.unit.tier for p in outstanding), report=report))
            return report

        by_tier: dict[int, list[PlannedUnit]] = defaultdict(list)
        for p in outstanding:
            by_tier[p.unit.tier].append(p)

        synthesis_pending = synthesizer is not None and not self._ctx.descriptor.synthesis_evaluated
        done: set[int] = set()
        while True:
            remaining = sorted(t for t in by_tier if t not in done)
            if not remaining:
                break
            tier = remaining[0]
            if done:
                planner = await self._planner()
                by_tier[tier] = await self._replan(planner, by_tier[tier], report)
            done.add(tier)
            plan = planner.plan_tier(tier, by_tier[tier])
            await self._add_batches_total(plan.total_batches)

            for members in plan.batches:
                batch_report = await self._dispatch(members, tier, report)
                report.batches.append(batch_report)

                if synthesis_pending and tier == TOP_TIER:
                    synthesis_pending = False
                    derived = await self._synthesize(batch_report, synthesizer, tier, planner)
                    report.synthesized.extend(p.unit for p in derived)
                    for p in derived:
                        by_tier[p.unit.tier].append(p)

            for group in plan.split_groups:
                report.batches.append(await self._dispatch(group, tier, report))

        logger.info(
            "Phase %s scheduled: %d batch(es), %d complete, %d failed",
            self._phase, len(report.batches), len(report.completed), len(report.failed),
        )
        return report

    # --- internals ---

    async def _planner(self) -> BatchPlanner:
        """Planner over a routing table rebuilt from the current artifact indexes."""
        table = await RoutingTable.build(self._ctx.store, self._ctx.vocabulary)
        return BatchPlanner(self._estimator, table, self._ctx.project_dir)

    async def _replan(
        self, planner: BatchPlanner, members: list[PlannedUnit], report: ScheduleReport,
    ) -> list[PlannedUnit]:
        """Re-resolve and re-estimate a tier once earlier tiers have written their artifacts.

        A split group that already has sections on disk keeps its shape;
        every other unit is expanded again from its original definition.
        """
        groups: dict[str, list[PlannedUnit]] = defaultdict(list)
        for p in members:
            groups[p.unit.split_group if p.unit.is_sibling and p.unit.split_group else p.id].append(p)

        kept: list[PlannedUnit] = []
        originals: list[WorkUnit] = []
        for parent, parts in groups.items():
            first = parts[0].unit
            untouched = not first.is_sibling or len(parts) == first.sibling_count
            if parent in self._originals and untouched:
                originals.append(self._originals[parent])
            else:
                # Siblings keep their input partition; only the resolution is refreshed.
                kept.extend(planner.prepare(p.unit) for p in parts)
        self._planned.update({p.id: p for p in kept})
        if not originals:
            return kept

        replanned, split = planner.expand(originals)
        old_ids = {p.id for p in members} - {p.id for p in kept}
        new_ids = {p.id for p in replanned}
        if old_ids != new_ids:
            descriptor = self._ctx.descriptor.model_copy(deep=True)
            for uid in old_ids - new_ids:
                descriptor.units.pop(uid, None)
            recount(descriptor, self._phase)
            await self._ctx.commit(descriptor)
            fresh = [p.unit for p in replanned if p.id not in old_ids]
            if fresh:
                reconciled = await self._resume.reconcile(self._ctx, self._phase, fresh)
                replanned = [p for p in replanned if p.id in old_ids or p.id in reconciled.outstanding_ids]
        report.splits = sorted((set(report.splits) - {u.id for u in originals}) | set(split))
        self._planned.update({p.id: p for p in replanned})
        return kept + replanned

    async def _add_batches_total(self, n: int) -> None:
        descriptor = self._ctx.descriptor.model_copy(deep=True)
        descriptor.phase(self._phase).counts.batches_total += n
        await self._ctx.commit(descriptor)

    async def _set_records(self, units: list[WorkUnit], status_of: Callable[[WorkUnit], UnitStatus],
                           errors: dict[str, str] | None = None, attempts: dict[str, int] | None = None,
                           batch_done: bool = False) -> None:
        descriptor = self._ctx.descriptor.model_copy(deep=True)
        now = utcnow()
        for unit in units:
            previous = descriptor.units.get(unit.id)
            status = status_of(unit)
            descriptor.units[unit.id] = UnitRecord(
                phase=self._phase,
                output_path=unit.output_path,
                section_marker=unit.section_marker,
                status=status,
                attempts=(previous.attempts if previous else 0) + (attempts or {}).get(unit.id, 0),
                error=(errors or {}).get(unit.id) if status == UnitStatus.FAILED else None,
                updated_at=now,
            )
        if batch_done:
            descriptor.phase(self._phase).counts.batches_completed += 1
        recount(descriptor, self._phase)
        await self._ctx.commit(descriptor)

    def _tokens_for(self, units: list[PlannedUnit]) -> dict[str, WriterToken]:
        """One token per split group. Siblings not being run already hold their section."""
        running: dict[str, set[int]] = defaultdict(set)
        counts: dict[str, int] = {}
        for p in units:
            u = p.unit
            if u.is_sibling and u.split_group:
                running[u.split_group].add(u.sibling_index)
                counts[u.split_group] = u.sibling_count
        return {
            group: WriterToken.resuming(group, count, set(range(1, count + 1)) - running[group])
            for group, count in counts.items()
        }

    async def _run(self, barrier: Barrier, members: list[PlannedUnit],
                   tokens: dict[str, WriterToken]) -> frozenset[UnitOutcome]:
        async def run_unit(unit: WorkUnit) -> UnitOutcome:
            token = tokens.get(unit.split_group) if unit.split_group else None
            try:
                return await self._execute(self._planned[unit.id], token)
            finally:
                # A sibling that failed or timed out must not block later siblings.
                if token is not None:
                    token.release(unit.sibling_index, wrote=False)

        return await barrier.run(frozenset(p.unit for p in members), run_unit)

    async def _dispatch(self, members: list[PlannedUnit], tier: int, report: ScheduleReport) -> BatchReport:
        self._batch_seq += 1
        batch = Batch(
            index=self._batch_seq,
            tier=tier,
            units=frozenset(p.unit for p in members),
            split_group=members[0].unit.split_group if all(p.unit.is_sibling for p in members) else None,
        )
        set_batch_context(f"{self._phase}-{batch.index}")
        units = [p.unit for p in members]
        logger.info("Dispatching batch %d (tier %d, %d unit(s))", batch.index, tier, len(units))

        await self._set_records(units, lambda u: UnitStatus.IN_PROGRESS)
        await self._record_misses(members, report)
        if batch.split_group:
            await self._ctx.events.record(
                "unit_split", phase=self._phase, unit_id=batch.split_group, siblings=len(units),
            )
            descriptor = self._ctx.descriptor.model_copy(deep=True)
            descriptor.phase(self._phase).counts.splits += 1
            await self._ctx.commit(descriptor)

        config = self._ctx.config
        barrier = Barrier(config.max_concurrency, config.unit_timeout_s)
        outcomes = {o.unit_id: o for o in await self._run(barrier, members, self._tokens_for(members))}
        attempts = {u.id: 1 for u in units}

        retried: set[str] = set()
        for _ in range(config.max_unit_retries):
            missing = await self._resume.missing(units)
            if not missing:
                break
            missing_ids = {u.id for u in missing}
            retried |= missing_ids
            logger.info("Retrying %d missing unit(s) of batch %d", len(missing), batch.index)
            retry_members = [p for p in members if p.id in missing_ids]
            for outcome in await self._run(barrier, retry_members, self._tokens_for(retry_members)):
                outcomes[outcome.unit_id] = dataclasses.replace(outcome, attempts=attempts[outcome.unit_id] + 1)
                attempts[outcome.unit_id] += 1

        # Final status comes from the store, not from the worker's claim.
        still_missing = {u.id for u in await self._resume.missing(units)}
        for uid in list(outcomes):
            o = outcomes[uid]
            if uid in still_missing and o.succeeded:
                outcomes[uid] = dataclasses.replace(o, succeeded=False, error="artifact not produced")
            elif uid not in still_missing and not o.succeeded:
                outcomes[uid] = dataclasses.replace(o, succeeded=True, error=None)

        errors = {uid: o.error or "failed" for uid, o in outcomes.items() if not o.succeeded}
        await self._set_records(
            units,
            lambda u: UnitStatus.FAILED if u.id in still_missing else UnitStatus.COMPLETE,
            errors=errors, attempts=attempts, batch_done=True,
        )
        if retried:
            descriptor = self._ctx.descriptor.model_copy(deep=True)
            descriptor.phase(self._phase).counts.retries += len(retried)
            await self._ctx.commit(descriptor)

        for uid, o in sorted(outcomes.items()):
            if o.succeeded:
                await self._ctx.events.record(
                    "unit_completed", phase=self._phase, unit_id=uid,
                    attempts=o.attempts, severity=o.severity, verdict=o.verdict, partial=o.partial,
                )
            else:
                await self._ctx.events.record(
                    "unit_failed", phase=self._phase, unit_id=uid, attempts=o.attempts, error=o.error,
                )

        batch_report = BatchReport(batch=batch, outcomes=frozenset(outcomes.values()), retried=frozenset(retried))
        failure = batch_report.failure()
        if failure is not None:
            logger.warning("%s", failure)
        set_batch_context(None)
        return batch_report

    async def _record_misses(self, members: list[PlannedUnit], report: ScheduleReport) -> None:
        misses = [m for p in members for m in p.resolution.misses]
        if not misses:
            return
        for miss in misses:
            logger.warning("Routing miss, dispatching without input: %s", miss)
            await self._ctx.events.record("routing_miss", phase=self._phase, unit_id=miss.unit_id, tag=miss.tag)
        report.routing_misses.extend(misses)
        descriptor = self._ctx.descriptor.model_copy(deep=True)
        descriptor.phase(self._phase).counts.routing_misses += len(misses)
        await self._ctx.commit(descriptor)

    async def _synthesize(
        self,
        batch_report: BatchReport,
        synthesizer: Synthesizer,
        tier: int,
        planner: BatchPlanner,
    ) -> list[PlannedUnit]:
        significant = sorted(batch_report.significant, key=lambda o: o.unit_id)
        cap = self._ctx.config.synthesis_cap
        if not significant or cap <= 0:
            # Evaluated once per run, even when nothing qualified.
            descriptor = self._ctx.descriptor.model_copy(deep=True)
            descriptor.synthesis_evaluated = True
            await self._ctx.commit(descriptor)
            logger.info("Synthesis evaluated: no significant result in the first tier %d batch", tier)
            return []

        derived = (await synthesizer(significant))[:cap]
        bumped: list[WorkUnit] = []
        for unit in derived:
            if unit.tier <= tier:
                logger.warning("Synthesized unit %s moved below tier %d", unit.id, tier)
                unit = unit.model_copy(update={"tier": tier + 1})
            bumped.append(unit)

        descriptor = self._ctx.descriptor.model_copy(deep=True)
        descriptor.synthesis_evaluated = True
        descriptor.synthesis_triggered = True
        descriptor.phase(self._phase).counts.synthesized += len(bumped)
        await self._ctx.commit(descriptor)
        await self._ctx.events.record(
            "synthesis_triggered", phase=self._phase,
            sources=[o.unit_id for o in significant], units=[u.id for u in bumped],
        )
        logger.info("Synthesized %d derived unit(s) from %d significant result(s)", len(bumped), len(significant))

        self._originals.update({u.id: u for u in bumped})
        planned, _ = planner.expand(bumped)
        missing = {u.id for u in await self._resume.missing([p.unit for p in planned])}
        fresh = [p for p in planned if p.id in missing]
        self._planned.update({p.id: p for p in fresh})
        return fresh
