# src/pipeline/phase_runner.py — v1
"""Phase runner — one CLI phase command end to end.

prerequisite check -> enumerate units -> resume + schedule -> (investigate)
coverage follow-up batch -> complete if nothing is outstanding -> summary.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path

from stronghold.batch.models import ScheduleReport, WorkUnitFailure
from stronghold.batch.planner import PlannedUnit
from stronghold.batch.scheduler import BatchScheduler
from stronghold.batch.writer_token import WriterToken
from stronghold.config.phases import TIER_PROFILES
from stronghold.config.settings import Settings
from stronghold.core.models import PhaseStatus, UnitOutcome, UnitStatus, WorkResult, WorkUnit
from stronghold.core.tags import CapabilityTag as Tag
from stronghold.coverage.verifier import CoverageVerifier, load_checklist, render_coverage
from stronghold.delta.snapshot import take_snapshot
from stronghold.logging.context import set_run_context, set_unit_context
from stronghold.pipeline.context import RunContext
from stronghold.pipeline.phase_machine import PhaseMachine, PrerequisiteMissing
from stronghold.pipeline.planners import PhasePlanner, dump_units, load_units, planner_for
from stronghold.pipeline.registry import WorkerRegistry
from stronghold.pipeline.workers.base_worker import WorkRequest
from stronghold.resume.controller import InconsistentState
from stronghold.storage import artifact_index, layout, reader
from stronghold.storage.models import ArtifactIndexEntry
from stronghold.storage.run_manager import archive_run, create_run, load_descriptor
from stronghold.storage.store_factory import create_store

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Opening a run
# ----------------------------------------------------------------------


async def open_run(project_dir: Path, settings: Settings, phase: str) -> RunContext:
    """Context for an existing run.

    Raises:
        PrerequisiteMissing: If no run exists yet.
    """
    store = create_store(project_dir, settings)
    descriptor = await load_descriptor(store)
    if descriptor is None:
        raise PrerequisiteMissing(phase, ["scan"])
    return RunContext.create(settings, project_dir, store, descriptor)


async def open_scan_run(
    project_dir: Path, settings: Settings, new_run: bool = False,
) -> tuple[RunContext, bool]:
    """Context for `scan`, creating or chaining a run as needed.

    Returns:
        (context, fresh) where fresh is False when the scan is already
        complete for an unchanged corpus and nothing needs to run.
    """
    project_dir = Path(project_dir)
    snapshot = take_snapshot(
        project_dir,
        settings.corpus_extensions_list,
        settings.corpus_exclude_dirs_list,
        settings.corpus_max_file_bytes,
    )
    store = create_store(project_dir, settings)
    current = await load_descriptor(store)
    config = settings.to_run_config()

    if current is None:
        descriptor = await create_run(store, config, corpus_ref=snapshot.digest)
        ctx = RunContext.create(settings, project_dir, store, descriptor)
        await ctx.events.record("run_created", sequence=descriptor.sequence)
        return ctx, True

    scan_done = current.is_complete("scan")
    changed = current.corpus_ref != snapshot.digest
    if not new_run and not (scan_done and changed):
        if changed:
            logger.warning("Corpus changed while scan of run %s was in progress; resuming it", current.run_id)
        return RunContext.create(settings, project_dir, store, current), not scan_done

    archive = archive_run(project_dir, settings, current)
    store = create_store(project_dir, settings)
    descriptor = await create_run(store, config, corpus_ref=snapshot.digest, prior=current, prior_archive=archive)
    ctx = RunContext.create(settings, project_dir, store, descriptor)
    await ctx.events.record("run_archived", archive=archive, prior_run=current.run_id)
    await ctx.events.record("run_created", sequence=descriptor.sequence, prior_run=current.run_id)
    return ctx, True


# ----------------------------------------------------------------------
# Executing one unit
# ----------------------------------------------------------------------


class UnitExecutor:
    """Run a unit's worker and persist its artifact, index entry and records."""

    def __init__(self, ctx: RunContext, registry: WorkerRegistry) -> None:
        self._ctx = ctx
        self._registry = registry

    def _request(self, planned: PlannedUnit) -> WorkRequest:
        ctx = self._ctx
        return WorkRequest(
            unit=planned.unit,
            inputs=planned.resolution.inputs,
            missing_tags=planned.resolution.missing_tags,
            project_dir=ctx.project_dir,
            audit_dir=ctx.project_dir / ctx.settings.audit_dir,
            knowledge_dir=ctx.settings.knowledge_dir,
            options={
                "tier": ctx.config.tier,
                "max_hypotheses": TIER_PROFILES[ctx.config.tier].max_hypotheses,
                "estimate": planned.estimate,
            },
        )

    async def __call__(self, planned: PlannedUnit, token: WriterToken | None) -> UnitOutcome:
        unit = planned.unit
        set_unit_context(unit.id)
        started = time.monotonic()

        worker = self._registry.worker_for(unit.kind)
        request = self._request(planned)
        result = await worker.run(request)
        problems = worker.validate_result(request, result)
        if problems:
            raise WorkUnitFailure(unit.id, "quality gate: " + "; ".join(problems))

        provides, dropped = self._ctx.vocabulary.partition(result.provides)
        if dropped:
            logger.warning("Unit %s: dropping unregistered provides %s", unit.id, sorted(dropped))
        provides = provides | unit.provides

        if token is None:
            await self._ctx.store.create(unit.output_path, _with_newline(result.content))
            partial = False
            sections: list[str] = []
        else:
            await token.acquire(unit.sibling_index)
            try:
                partial = await self._write_section(unit, result)
            except BaseException:
                token.release(unit.sibling_index, wrote=False)
                raise
            token.release(unit.sibling_index, wrote=True)
            sections = [unit.section_marker or ""]

        records_paths: list[str] = []
        if result.records:
            path = layout.records_path(unit.output_path, unit.sibling_index if unit.is_sibling else None)
            await self._ctx.store.write(path, json.dumps(result.records, indent=2))
            records_paths.append(path)

        size = await self._ctx.store.size(unit.output_path)
        await artifact_index.register_artifact(self._ctx.store, ArtifactIndexEntry(
            path=unit.output_path,
            unit_id=unit.split_group or unit.id,
            phase=unit.phase,
            kind=unit.kind,
            title=unit.title,
            provides=sorted(provides),
            size_bytes=size,
            target=unit.target,
            targets=sorted(set(result.targets) | ({unit.target} if unit.target else set())),
            severity=result.severity,
            verdict=result.verdict,
            records_paths=records_paths,
            sections=sections,
            partial=partial,
            metadata={"origin": unit.origin} if unit.origin else {},
        ))
        logger.info("Unit %s done in %.1fs (%d bytes)", unit.id, time.monotonic() - started, size)
        set_unit_context(None)
        return UnitOutcome(
            unit_id=unit.id,
            succeeded=True,
            severity=result.severity,
            verdict=result.verdict,
            size_bytes=size,
            partial=partial,
        )

    async def _write_section(self, unit: WorkUnit, result: WorkResult) -> bool:
        """Write this sibling's section in index order. Returns whether the artifact is partial."""
        store = self._ctx.store
        marker = unit.section_marker or ""
        if unit.is_supplemental:
            heading = f"## Supplemental (part {unit.sibling_index} of {unit.sibling_count})"
            body = f"{marker}\n{heading}\n\n{_with_newline(result.content)}"
        else:
            body = f"{marker}\n{_with_newline(result.content)}"

        if not await store.exists(unit.output_path):
            await store.create(unit.output_path, body)
            sections = {unit.sibling_index: body}
        else:
            sections = _split_sections(
                await store.read_text(unit.output_path), unit.split_group or "", unit.sibling_count,
            )
            later = [i for i in sections if i > unit.sibling_index]
            sections[unit.sibling_index] = body
            if later:
                # An earlier sibling arrived after later ones: rebuild in sibling order.
                logger.info("Rebuilding %s with section %d ahead of %s", unit.output_path, unit.sibling_index, later)
                await store.write(unit.output_path, _join_sections(sections))
            else:
                await store.append(unit.output_path, f"\n{body}")

        present = sorted(sections)
        gaps = [i for i in range(1, max(present) + 1) if i not in present]
        if gaps:
            issue = InconsistentState(
                unit.id, unit.output_path,
                f"section(s) {gaps} of {unit.split_group} missing; artifact marked partial",
            )
            logger.warning("%s", issue)
            await self._ctx.events.record(
                "inconsistent_state", phase=unit.phase, unit_id=unit.id,
                path=unit.output_path, detail=issue.detail,
            )
        return bool(gaps)


def _split_sections(text: str, group: str, count: int) -> dict[int, str]:
    """Sibling index -> section text (marker included) of a shared artifact."""
    pattern = re.compile(rf"<!-- section:{re.escape(group)}:(\d+)/{count} -->")
    matches = list(pattern.finditer(text))
    sections: dict[int, str] = {}
    for m, nxt in zip(matches, matches[1:] + [None]):
        end = nxt.start() if nxt is not None else len(text)
        sections[int(m.group(1))] = text[m.start():end]
    return sections


def _join_sections(sections: dict[int, str]) -> str:
    return "\n\n".join(sections[i].rstrip("\n") for i in sorted(sections)) + "\n"


def _with_newline(text: str) -> str:
    return text if text.endswith("\n") else text + "\n"


# ----------------------------------------------------------------------
# Running a phase
# ----------------------------------------------------------------------


@dataclass
class PhaseSummary:
    """What one phase command did, for the CLI."""

    phase: str
    status: PhaseStatus
    run_id: str
    sequence: int
    units_total: int = 0
    units_complete: int = 0
    units_failed: int = 0
    dispatched: int = 0
    skipped: int = 0
    batches: int = 0
    routing_misses: int = 0
    inconsistencies: int = 0
    splits: int = 0
    synthesized: int = 0
    followups: int = 0
    notes: list[str] = field(default_factory=list)
    next_command: str | None = None

    def render(self) -> str:
        lines = [
            f"Phase '{self.phase}' of run {self.run_id} (#{self.sequence}): {self.status.value}",
            f"  Units: {self.units_complete}/{self.units_total} complete, {self.units_failed} failed "
            f"({self.dispatched} dispatched, {self.skipped} already done) in {self.batches} batch(es)",
        ]
        extras = [
            (self.splits, "split"),
            (self.routing_misses, "routing miss(es)"),
            (self.inconsistencies, "inconsistenc(ies) resolved"),
            (self.synthesized, "synthesized"),
            (self.followups, "coverage follow-up(s)"),
        ]
        shown = [f"{n} {label}" for n, label in extras if n]
        if shown:
            lines.append("  " + ", ".join(shown))
        lines += [f"  {note}" for note in self.notes]
        if self.status == PhaseStatus.COMPLETE:
            lines.append(f"Next: {self.next_command}" if self.next_command else "Audit complete.")
        else:
            lines.append(f"Incomplete: re-run `stronghold {self.phase}` to retry outstanding units.")
        return "\n".join(lines)


class PhaseRunner:
    """Execute one phase against a run context."""

    def __init__(
        self,
        ctx: RunContext,
        machine: PhaseMachine | None = None,
        registry: WorkerRegistry | None = None,
    ) -> None:
        self._ctx = ctx
        self._machine = machine or PhaseMachine()
        self._registry = registry or WorkerRegistry(ctx)

    async def run(self, phase: str) -> PhaseSummary:
        """Run or resume a phase.

        Raises:
            PrerequisiteMissing: Before anything is written.
            ConfigurationError: If the phase's worker is not configured.
        """
        ctx = self._ctx
        set_run_context(ctx.run_id, phase)
        self._machine.check_prerequisites(ctx.descriptor, phase)

        planner = planner_for(phase, ctx)
        units = await planner.units()
        for kind in sorted({u.kind for u in units}):
            self._registry.worker_for(kind)

        was_pending = ctx.descriptor.phase_status(phase) == PhaseStatus.PENDING
        await ctx.commit(self._machine.begin(ctx.descriptor, phase))
        if was_pending:
            await ctx.events.record("phase_started", phase=phase)
        await self._prune_records(phase, units)

        scheduler = BatchScheduler(ctx, phase, UnitExecutor(ctx, self._registry))
        report = await scheduler.run(units, synthesizer=planner.synthesizer)
        reports = [report]

        notes: list[str] = []
        followups = 0
        if phase == "investigate":
            follow_report, notes, followups = await self._coverage(scheduler, report)
            if follow_report is not None:
                reports.append(follow_report)

        notes += await planner.finalize(report)
        return await self._close(phase, reports, notes, followups)

    async def _prune_records(self, phase: str, units: list[WorkUnit]) -> None:
        """Drop records of units the phase no longer enumerates (e.g. a changed split)."""
        keep = {u.id for u in units}
        descriptor = self._ctx.descriptor
        stale = [
            uid for uid, rec in descriptor.units_for(phase).items()
            if uid not in keep and uid.split("#", 1)[0] not in keep
        ]
        if stale:
            logger.info("Dropping %d stale unit record(s) for %s", len(stale), phase)
            updated = descriptor.model_copy(deep=True)
            for uid in stale:
                del updated.units[uid]
            await self._ctx.commit(updated)

    async def _coverage(
        self, scheduler: BatchScheduler, report: ScheduleReport,
    ) -> tuple[ScheduleReport | None, list[str], int]:
        ctx = self._ctx
        checklist = ctx.settings.coverage_checklist
        if not ctx.config.coverage_enabled or checklist is None:
            return None, [], 0
        if report.failed:
            logger.info("Coverage check deferred until all investigate units succeed")
            return None, [], 0

        verifier = CoverageVerifier(load_checklist(checklist))
        entries = (await artifact_index.load_index(ctx.store, "investigate")).entries.values()
        coverage = verifier.evaluate(entries)

        follow_report: ScheduleReport | None = None
        scheduled = 0
        followups = load_units(await reader.load_json(ctx.store, layout.followups_path(), default=[]))
        if not ctx.descriptor.coverage_followup_done:
            followups = verifier.followup_units(coverage)
            await ctx.store.write(layout.followups_path(), dump_units(followups))
            descriptor = ctx.descriptor.model_copy(deep=True)
            descriptor.coverage_followup_done = True
            descriptor.phase("investigate").counts.followups += len(followups)
            await ctx.commit(descriptor)
            scheduled = len(followups)
            if followups:
                await ctx.events.record(
                    "coverage_followup", phase="investigate", units=[u.id for u in followups],
                )
                follow_report = await scheduler.run(followups, single_batch=True)
                entries = (await artifact_index.load_index(ctx.store, "investigate")).entries.values()
                coverage = verifier.evaluate(entries)

        await ctx.store.write(layout.coverage_path(), render_coverage(coverage, [u.id for u in followups]))
        await artifact_index.register_artifact(ctx.store, ArtifactIndexEntry(
            path=layout.coverage_path(),
            unit_id="coverage",
            phase="investigate",
            kind="coverage",
            title="Coverage",
            provides=[Tag.COVERAGE.value],
            size_bytes=await ctx.store.size(layout.coverage_path()),
        ))
        note = (
            f"Coverage: {len(coverage.covered)}/{coverage.total} covered, "
            f"{len(coverage.actionable)} critical/high gap(s), {len(coverage.reported_only)} reported only"
        )
        return follow_report, [note], scheduled

    async def _close(
        self, phase: str, reports: list[ScheduleReport], notes: list[str], followups: int,
    ) -> PhaseSummary:
        ctx = self._ctx
        records = ctx.descriptor.units_for(phase)
        outstanding = sum(1 for r in records.values() if r.status != UnitStatus.COMPLETE)
        if outstanding == 0:
            was_complete = ctx.descriptor.is_complete(phase)
            await ctx.commit(self._machine.complete(ctx.descriptor, phase, outstanding))
            if not was_complete:
                await ctx.events.record("phase_completed", phase=phase)
        else:
            logger.warning("Phase %s left in progress: %d unit(s) outstanding", phase, outstanding)

        counts = ctx.descriptor.phase(phase).counts
        main = reports[0]
        return PhaseSummary(
            phase=phase,
            status=ctx.descriptor.phase_status(phase),
            run_id=ctx.run_id,
            sequence=ctx.descriptor.sequence,
            units_total=counts.units_total,
            units_complete=counts.units_complete,
            units_failed=counts.units_failed,
            dispatched=sum(len(r.outcomes) for r in reports),
            skipped=len(main.skipped),
            batches=sum(len(r.batches) for r in reports),
            routing_misses=sum(len(r.routing_misses) for r in reports),
            inconsistencies=sum(len(r.inconsistencies) for r in reports),
            splits=sum(len(r.splits) for r in reports),
            synthesized=sum(len(r.synthesized) for r in reports),
            followups=followups,
            notes=notes,
            next_command=self._machine.next_command(phase),
        )
