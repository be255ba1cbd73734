# src/pipeline/verify_runner.py — v1
"""Verify — post-hoc re-investigation of findings whose targets changed.

Loads the completed run's findings, re-derives which targets changed since
the run's own snapshot, and schedules a bounded set of re-verification
units. The plan is frozen in verify/plan.json on first invocation so a
re-invocation resumes the same units even if the corpus moved again.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from stronghold.batch.models import ScheduleReport
from stronghold.core.models import SEVERITY_RANK, FindingDisposition, ReclassifiedFinding, WorkUnit
from stronghold.core.tags import CapabilityTag as Tag
from stronghold.delta.engine import DeltaEngine
from stronghold.delta.snapshot import CorpusSnapshot, take_snapshot
from stronghold.pipeline.planners import PhasePlanner, safe_id
from stronghold.storage import artifact_index, layout, reader

logger = logging.getLogger(__name__)


class VerifyPlan(BaseModel):
    """Frozen result of the change check."""

    changed: list[ReclassifiedFinding] = Field(default_factory=list)
    removed: list[ReclassifiedFinding] = Field(default_factory=list)
    unchanged: int = 0
    skipped: list[str] = Field(default_factory=list)
    units: list[WorkUnit] = Field(default_factory=list)


class VerifyPlanner(PhasePlanner):
    phase = "verify"

    async def plan(self) -> VerifyPlan:
        existing = await reader.load_json(self._ctx.store, layout.verify_plan_path())
        if existing is not None:
            return VerifyPlan(**existing)

        ctx = self._ctx
        settings = ctx.settings
        baseline = CorpusSnapshot.model_validate_json(await ctx.store.read_text(layout.snapshot_path()))
        current = take_snapshot(
            ctx.project_dir,
            settings.corpus_extensions_list,
            settings.corpus_exclude_dirs_list,
            settings.corpus_max_file_bytes,
        )
        findings = [f for f in await reader.load_findings(ctx.store, ctx.run_id) if not f.is_dismissal]
        # Verification always looks at individual targets, whatever the overall ratio.
        engine = DeltaEngine(rewrite_threshold=1.0, major_change_lines=ctx.config.major_change_lines)
        report = engine.compare(baseline, current, findings)

        changed = sorted(
            report.dispositions(FindingDisposition.RECHECK),
            key=lambda r: (SEVERITY_RANK.get(r.finding.severity or "info", 9), r.finding.id),
        )
        cap = ctx.config.verify_max_units
        plan = VerifyPlan(
            changed=changed,
            removed=report.dispositions(FindingDisposition.RESOLVED_BY_REMOVAL),
            unchanged=len(report.dispositions(FindingDisposition.VERIFY)),
            skipped=[r.finding.id for r in changed[cap:]],
        )
        for item in changed[:cap]:
            finding = item.finding
            unit_id = f"V-{safe_id(finding.id)}"
            plan.units.append(WorkUnit(
                id=unit_id,
                phase="verify",
                kind="reverify",
                output_path=layout.verification_unit_path(unit_id),
                tier=1,
                title=f"Re-verify: {finding.title or finding.id}",
                requires=frozenset({Tag.REPORT.value}),
                provides=frozenset({Tag.VERIFICATION.value}),
                origin=finding.id,
                target=finding.target,
                references=(self._audit_relative(finding.artifact_path),) if finding.artifact_path else (),
                severity_hint=finding.severity,
            ))
        if plan.skipped:
            logger.warning("Verify capped at %d unit(s); %d changed finding(s) skipped", cap, len(plan.skipped))
        await ctx.store.write(layout.verify_plan_path(), plan.model_dump_json(indent=2))
        return plan

    async def units(self) -> list[WorkUnit]:
        return (await self.plan()).units

    async def finalize(self, report: ScheduleReport) -> list[str]:
        plan = await self.plan()
        index = await artifact_index.load_index(self._ctx.store, "verify")
        results = {e.unit_id: e for e in index.entries.values()}
        await self._ctx.store.write(layout.verification_report_path(), render_verification(plan, results))
        return [
            f"Verification: {len(plan.units)} re-verified, {len(plan.removed)} resolved by removal, "
            f"{plan.unchanged} unchanged"
        ]


def render_verification(plan: VerifyPlan, results: dict) -> str:
    lines = [
        "# Verification",
        "",
        f"- Changed targets re-verified: {len(plan.units)}",
        f"- Findings whose target was removed: {len(plan.removed)}",
        f"- Findings with unchanged targets: {plan.unchanged}",
        "",
    ]
    if plan.units:
        lines += ["## Re-verified", "", "| Unit | Finding | Target | Severity | Verdict |", "|---|---|---|---|---|"]
        for unit in plan.units:
            entry = results.get(unit.id)
            severity = entry.severity if entry and entry.severity else "-"
            verdict = entry.verdict if entry and entry.verdict else ("pending" if entry is None else "-")
            lines.append(f"| {unit.id} | {unit.origin} | {unit.target or '-'} | {severity} | {verdict} |")
        lines.append("")
    if plan.removed:
        lines += ["## Resolved by removal", ""]
        lines += [f"- {r.finding.id} (`{r.finding.target}`)" for r in plan.removed]
        lines.append("")
    if plan.skipped:
        lines += ["## Not re-verified (cap reached)", ""]
        lines += [f"- {fid}" for fid in plan.skipped]
        lines.append("")
    return "\n".join(lines)
