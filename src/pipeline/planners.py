# src/pipeline/planners.py — v1
"""Phase planners — enumerate the work units of each phase.

Planners are deterministic: re-enumerating a phase yields the same unit ids,
which is what lets the resume controller match units to artifacts. Units
created during a phase (synthesized, coverage follow-ups) are persisted as
engine files and re-enumerated from there.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

from stronghold.batch.models import ScheduleReport
from stronghold.config.phases import FOCUS_AREAS, TIER_PROFILES
from stronghold.core.models import (
    SEVERITY_RANK,
    FindingDisposition,
    Severity,
    UnitOutcome,
    WorkUnit,
)
from stronghold.core.tags import CapabilityTag as Tag
from stronghold.delta.engine import DeltaReport
from stronghold.storage import artifact_index, layout, reader

if TYPE_CHECKING:
    from stronghold.pipeline.context import RunContext

logger = logging.getLogger(__name__)

_UNSAFE_ID = re.compile(r"[^A-Za-z0-9_.-]+")

SEVERITY_TIER: dict[str, int] = {"critical": 1, "high": 1, "medium": 2, "low": 3, "info": 3}
LOWEST_TIER = 3


def safe_id(raw: str) -> str:
    return _UNSAFE_ID.sub("-", raw).strip("-") or "unnamed"


class Hypothesis(BaseModel):
    """One strategize record, as produced by the strategize worker."""

    id: str
    title: str = ""
    severity: Severity = "medium"
    target: str | None = None
    description: str = ""
    tags: list[str] = Field(default_factory=list)


class PhasePlanner(ABC):
    """Base planner: subclasses enumerate units; no synthesis, nothing to finalize by default."""

    phase: str = ""

    def __init__(self, ctx: RunContext) -> None:
        self._ctx = ctx

    @property
    def synthesizer(self):
        return None

    @abstractmethod
    async def units(self) -> list[WorkUnit]:
        """Every unit of the phase, completed ones included."""

    async def finalize(self, report: ScheduleReport) -> list[str]:
        """Post-schedule bookkeeping. Returns summary notes."""
        return []

    def _chained(self) -> bool:
        return self._ctx.descriptor.prior_run is not None

    def _context_requires(self, *tags: str) -> frozenset[str]:
        required = set(tags)
        if self._chained():
            required.add(Tag.DELTA_REPORT.value)
        return frozenset(required)

    def _audit_relative(self, artifact_path: str) -> str:
        """Project-relative path of a file in the current audit directory."""
        return f"{self._ctx.settings.audit_dir}/{artifact_path}"


class ScanPlanner(PhasePlanner):
    phase = "scan"

    async def units(self) -> list[WorkUnit]:
        units = [WorkUnit(
            id="corpus-snapshot",
            phase="scan",
            kind="snapshot",
            output_path=layout.corpus_index_path(),
            tier=1,
            title="Corpus snapshot",
            provides=frozenset({Tag.CORPUS_INDEX.value}),
            lightweight=True,
        )]
        if self._chained():
            units.append(WorkUnit(
                id="corpus-delta",
                phase="scan",
                kind="delta",
                output_path=layout.delta_summary_path(),
                tier=2,
                title="Delta against prior run",
                requires=frozenset({Tag.CORPUS_INDEX.value}),
                provides=frozenset({Tag.DELTA_REPORT.value}),
                lightweight=True,
            ))
        return units

    async def finalize(self, report: ScheduleReport) -> list[str]:
        data = await reader.load_json(self._ctx.store, layout.delta_path())
        if data is None:
            return []
        delta = DeltaReport(**data)
        if delta.massive_rewrite != self._ctx.descriptor.massive_rewrite:
            descriptor = self._ctx.descriptor.model_copy(deep=True)
            descriptor.massive_rewrite = delta.massive_rewrite
            await self._ctx.commit(descriptor)
        counts = delta.counts
        notes = [
            f"Delta: {counts['added']} added, {counts['modified']} modified, "
            f"{counts['deleted']} deleted, {counts['unchanged']} unchanged ({delta.ratio:.1%})"
        ]
        if delta.massive_rewrite:
            notes.append("Massive rewrite detected: prior findings carried forward as context only")
        return notes


class AnalyzePlanner(PhasePlanner):
    phase = "analyze"

    def _references(self, area: str) -> tuple[str, ...]:
        root = self._ctx.settings.knowledge_dir
        if root is None:
            return ()
        folder = Path(root) / area
        if not folder.is_dir():
            return ()
        return tuple(str(p) for p in sorted(folder.rglob("*.md")))

    async def units(self) -> list[WorkUnit]:
        units = [WorkUnit(
            id="context-architecture",
            phase="analyze",
            kind="context",
            output_path=layout.context_path("architecture"),
            tier=1,
            title="Architecture overview",
            requires=self._context_requires(Tag.CORPUS_INDEX.value),
            provides=frozenset({Tag.ARCHITECTURE.value}),
        )]
        profile = TIER_PROFILES[self._ctx.config.tier]
        for name in profile.focus_areas:
            area = FOCUS_AREAS[name]
            units.append(WorkUnit(
                id=f"context-{area.name}",
                phase="analyze",
                kind="context",
                output_path=layout.context_path(area.name),
                tier=2,
                title=area.title,
                requires=self._context_requires(Tag.CORPUS_INDEX.value, Tag.ARCHITECTURE.value),
                provides=frozenset({area.tag}),
                references=self._references(area.name),
            ))
        return units


class StrategizePlanner(PhasePlanner):
    phase = "strategize"

    async def units(self) -> list[WorkUnit]:
        profile = TIER_PROFILES[self._ctx.config.tier]
        focus_tags = {FOCUS_AREAS[name].tag for name in profile.focus_areas}
        return [WorkUnit(
            id="strategies",
            phase="strategize",
            kind="strategize",
            output_path=layout.strategies_path(),
            tier=1,
            title="Attack strategies and hypotheses",
            requires=self._context_requires(Tag.ARCHITECTURE.value, *sorted(focus_tags)),
            provides=frozenset({Tag.STRATEGIES.value}),
        )]


class InvestigatePlanner(PhasePlanner):
    phase = "investigate"

    def __init__(self, ctx: RunContext) -> None:
        super().__init__(ctx)
        self._by_id: dict[str, WorkUnit] = {}

    async def hypotheses(self) -> list[Hypothesis]:
        """Strategize records, most severe first, capped by the tier profile."""
        index = await artifact_index.load_index(self._ctx.store, "strategize")
        found: dict[str, Hypothesis] = {}
        for entry in index.entries.values():
            for path in entry.records_paths:
                for raw in await reader.load_json(self._ctx.store, path, default=[]) or []:
                    try:
                        hyp = Hypothesis(**raw)
                    except (ValidationError, TypeError) as exc:
                        logger.warning("Skipping malformed hypothesis in %s: %s", path, exc)
                        continue
                    found.setdefault(safe_id(hyp.id), hyp)
        ordered = sorted(found.values(), key=lambda h: (SEVERITY_RANK[h.severity], safe_id(h.id)))
        cap = TIER_PROFILES[self._ctx.config.tier].max_hypotheses
        if len(ordered) > cap:
            logger.info("Capping %d hypotheses to %d for tier %s", len(ordered), cap, self._ctx.config.tier)
        return ordered[:cap]

    def _hypothesis_unit(self, hyp: Hypothesis) -> WorkUnit:
        known, unknown = self._ctx.vocabulary.partition(hyp.tags)
        if unknown:
            logger.warning("Hypothesis %s: dropping unregistered tags %s", hyp.id, sorted(unknown))
        unit_id = f"H-{safe_id(hyp.id)}"
        return WorkUnit(
            id=unit_id,
            phase="investigate",
            kind="investigate",
            output_path=layout.finding_path(unit_id),
            tier=SEVERITY_TIER[hyp.severity],
            title=hyp.title or hyp.id,
            description=hyp.description,
            requires=frozenset({Tag.ARCHITECTURE.value, Tag.STRATEGIES.value}) | known,
            provides=frozenset({Tag.FINDINGS.value}),
            target=hyp.target,
            severity_hint=hyp.severity,
        )

    async def _delta_units(self) -> list[WorkUnit]:
        """Recheck and verify units for prior findings, unless a massive rewrite."""
        descriptor = self._ctx.descriptor
        if descriptor.massive_rewrite or descriptor.prior_run is None:
            return []
        data = await reader.load_json(self._ctx.store, layout.delta_path())
        if data is None:
            return []
        delta = DeltaReport(**data)
        archive = f"{self._ctx.settings.history_dir}/{descriptor.prior_run.archive}"
        units: list[WorkUnit] = []
        for item in delta.findings:
            finding = item.finding
            refs = (f"{archive}/{finding.artifact_path}",) if finding.artifact_path else ()
            if item.disposition == FindingDisposition.RECHECK:
                unit_id = f"RE-{safe_id(finding.id)}"
                units.append(WorkUnit(
                    id=unit_id,
                    phase="investigate",
                    kind="recheck",
                    output_path=layout.finding_path(unit_id),
                    tier=1,
                    title=f"Recheck: {finding.title or finding.id}",
                    requires=frozenset({Tag.ARCHITECTURE.value, Tag.DELTA_REPORT.value}),
                    provides=frozenset({Tag.FINDINGS.value}),
                    origin=finding.id,
                    target=finding.target,
                    references=refs,
                    severity_hint=finding.severity,
                ))
            elif item.disposition == FindingDisposition.VERIFY:
                unit_id = f"VF-{safe_id(finding.id)}"
                units.append(WorkUnit(
                    id=unit_id,
                    phase="investigate",
                    kind="verify-finding",
                    output_path=layout.finding_path(unit_id),
                    tier=LOWEST_TIER,
                    title=f"Re-confirm: {finding.title or finding.id}",
                    requires=frozenset({Tag.DELTA_REPORT.value}),
                    provides=frozenset({Tag.FINDINGS.value}),
                    origin=finding.id,
                    target=finding.target,
                    references=refs,
                    lightweight=True,
                    severity_hint=finding.severity,
                ))
        return units

    async def _persisted_units(self, path: str) -> list[WorkUnit]:
        return load_units(await reader.load_json(self._ctx.store, path, default=[]))

    async def units(self) -> list[WorkUnit]:
        units = [self._hypothesis_unit(h) for h in await self.hypotheses()]
        units += await self._delta_units()
        units += await self._persisted_units(layout.synthesized_path())
        units += await self._persisted_units(layout.followups_path())

        deduped: dict[str, WorkUnit] = {}
        for unit in units:
            if unit.id in deduped:
                logger.warning("Duplicate investigate unit id %s ignored", unit.id)
                continue
            deduped[unit.id] = unit
        self._by_id = deduped
        return list(deduped.values())

    @property
    def synthesizer(self):
        return self.synthesize

    async def synthesize(self, significant: list[UnitOutcome]) -> list[WorkUnit]:
        """Derived lowest-tier variant units, persisted so resume re-enumerates them."""
        derived: list[WorkUnit] = []
        for outcome in significant[: self._ctx.config.synthesis_cap]:
            source = self._by_id.get(outcome.unit_id)
            if source is None:
                continue
            unit_id = f"SYN-{source.id}"
            derived.append(WorkUnit(
                id=unit_id,
                phase="investigate",
                kind="synthesized",
                output_path=layout.finding_path(unit_id),
                tier=LOWEST_TIER,
                title=f"Variant analysis: {source.title}",
                description=f"Look for variants of {source.id} ({outcome.severity}) elsewhere in the corpus.",
                requires=frozenset({Tag.ARCHITECTURE.value}),
                provides=frozenset({Tag.FINDINGS.value}),
                origin=source.id,
                target=source.target,
                references=(self._audit_relative(source.output_path),),
                severity_hint=outcome.severity,
            ))
        await self._ctx.store.write(layout.synthesized_path(), dump_units(derived))
        self._by_id.update({u.id: u for u in derived})
        return derived


class ReportPlanner(PhasePlanner):
    phase = "report"

    async def units(self) -> list[WorkUnit]:
        return [WorkUnit(
            id="final-report",
            phase="report",
            kind="report",
            output_path=layout.report_path(),
            tier=1,
            title="Final report",
            requires=self._context_requires(
                Tag.ARCHITECTURE.value, Tag.STRATEGIES.value, Tag.FINDINGS.value, Tag.COVERAGE.value,
            ),
            provides=frozenset({Tag.REPORT.value}),
        )]


def planner_for(phase: str, ctx: RunContext) -> PhasePlanner:
    from stronghold.pipeline.verify_runner import VerifyPlanner

    planners: dict[str, type[PhasePlanner]] = {
        "scan": ScanPlanner,
        "analyze": AnalyzePlanner,
        "strategize": StrategizePlanner,
        "investigate": InvestigatePlanner,
        "report": ReportPlanner,
        "verify": VerifyPlanner,
    }
    if phase not in planners:
        raise ValueError(f"Unknown phase: {phase}")
    return planners[phase](ctx)


def dump_units(units: list[WorkUnit]) -> str:
    return json.dumps([u.model_dump(mode="json") for u in units], indent=2)


def load_units(raw: Any) -> list[WorkUnit]:
    return [WorkUnit(**item) for item in raw or []]
