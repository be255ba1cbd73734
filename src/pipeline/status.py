# src/pipeline/status.py — v1
"""Status dashboard — read-only view of the current run plus recommendations.

Nothing here writes to the store: reconciliation issues are reported, not
fixed, and the corpus digest is recomputed only to detect drift.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal

from stronghold.config.settings import Settings
from stronghold.core.models import PhaseStatus
from stronghold.delta.snapshot import take_snapshot
from stronghold.pipeline.phase_machine import PhaseMachine
from stronghold.resume.controller import InconsistentState, ResumeController
from stronghold.storage import layout, reader
from stronghold.storage.models import PhaseCounts, RunDescriptor
from stronghold.storage.run_manager import load_descriptor
from stronghold.storage.store_factory import create_store
from stronghold.tracking.events import EventRecord, load_events

logger = logging.getLogger(__name__)

Priority = Literal["critical", "high", "medium", "info"]
_PRIORITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "info": 3}
_RECENT_EVENTS = 5


@dataclass(frozen=True)
class Recommendation:
    text: str
    priority: Priority
    reason: str = ""


@dataclass
class PhaseRow:
    name: str
    status: PhaseStatus
    completed_at: datetime | None
    counts: PhaseCounts


@dataclass
class StatusView:
    descriptor: RunDescriptor | None = None
    phases: list[PhaseRow] = field(default_factory=list)
    current_phase: str | None = None
    issues: list[InconsistentState] = field(default_factory=list)
    artifact_count: int = 0
    recent_events: list[EventRecord] = field(default_factory=list)
    history_count: int = 0
    corpus_changed: bool = False
    recommendations: list[Recommendation] = field(default_factory=list)

    @property
    def progress(self) -> str | None:
        """batches_completed/batches_total of the in-progress phase."""
        for row in self.phases:
            if row.status == PhaseStatus.IN_PROGRESS:
                return f"{row.counts.batches_completed}/{row.counts.batches_total} batches"
        return None

    def render(self) -> str:
        lines: list[str] = []
        d = self.descriptor
        if d is None:
            lines.append("No audit in progress.")
        else:
            lines.append(f"Run {d.run_id} (#{d.sequence}, tier {d.config.tier})")
            if d.prior_run:
                lines.append(f"  Chained from {d.prior_run.run_id} ({d.prior_run.archive})")
            if d.massive_rewrite:
                lines.append("  Massive rewrite: incremental shortcuts disabled")
            lines.append("")
            lines.append(f"  {'Phase':<12} {'Status':<12} {'Units':>9} {'Failed':>7} {'Batches':>9}")
            for row in self.phases:
                c = row.counts
                units = f"{c.units_complete}/{c.units_total}"
                batches = f"{c.batches_completed}/{c.batches_total}"
                lines.append(
                    f"  {row.name:<12} {row.status.value:<12} {units:>9} {c.units_failed:>7} {batches:>9}"
                )
            lines.append("")
            if self.current_phase:
                progress = f" ({self.progress})" if self.progress else ""
                lines.append(f"Current phase: {self.current_phase}{progress}")
            lines.append(f"Artifacts: {self.artifact_count}")
        if self.issues:
            lines.append(f"Inconsistencies ({len(self.issues)}):")
            lines += [f"  - {issue}" for issue in self.issues]
        if self.recent_events:
            lines.append("Recent events:")
            lines += [
                f"  {e.timestamp:%Y-%m-%d %H:%M:%S} {e.event}" + (f" {e.unit_id}" if e.unit_id else "")
                for e in self.recent_events
            ]
        if self.history_count:
            lines.append(f"Archived runs: {self.history_count}")
        lines.append("")
        lines.append("Recommendations:")
        lines += [f"  [{r.priority}] {r.text}" for r in self.recommendations]
        return "\n".join(lines)


def recommend(
    descriptor: RunDescriptor | None,
    machine: PhaseMachine,
    unresolved: dict[str, int],
    corpus_changed: bool,
    issues: int,
    history_count: int,
) -> list[Recommendation]:
    """Ordered next-step suggestions."""
    recs: list[Recommendation] = []
    if descriptor is None:
        reason = (
            f"{history_count} archived run(s) exist but none is current."
            if history_count else "No audit has been started for this project."
        )
        recs.append(Recommendation("Run `stronghold scan` to start an audit", "high", reason))
        return recs

    current = machine.current_phase(descriptor)
    if current and descriptor.phase_status(current) == PhaseStatus.IN_PROGRESS:
        recs.append(Recommendation(
            f"Resume with `stronghold {current}`", "high",
            "The phase has outstanding units; re-running it only dispatches those.",
        ))
    elif current is None:
        recs.append(Recommendation("Run `stronghold scan`", "high", "No phase has completed yet."))
    elif machine.next_command(current):
        recs.append(Recommendation(f"Next: `{machine.next_command(current)}`", "medium"))

    if descriptor.is_complete("report") and (unresolved.get("critical") or unresolved.get("high")):
        recs.append(Recommendation(
            f"{unresolved.get('critical', 0)} CRITICAL + {unresolved.get('high', 0)} HIGH "
            "finding(s) may be unresolved; fix before launch",
            "critical",
            "The report contains confirmed critical or high severity findings.",
        ))
    if corpus_changed and descriptor.is_complete("scan"):
        recs.append(Recommendation(
            "Corpus changed since this run: `stronghold scan` starts an incremental run", "medium",
            "The snapshot digest no longer matches the run's corpus reference.",
        ))
    if issues:
        recs.append(Recommendation(
            f"{issues} record(s) disagree with the artifact store; re-run the affected phase",
            "medium",
            "Artifacts win on resume, so re-running reconciles the descriptor.",
        ))
    if not recs:
        recs.append(Recommendation("Audit complete", "info"))
    return sorted(recs, key=lambda r: _PRIORITY_ORDER[r.priority])


async def build_status(project_dir: Path, settings: Settings) -> StatusView:
    """Assemble the dashboard without mutating anything."""
    project_dir = Path(project_dir)
    machine = PhaseMachine()
    store = create_store(project_dir, settings)
    descriptor = await load_descriptor(store)
    view = StatusView(descriptor=descriptor, history_count=len(reader.list_history(project_dir, settings)))

    unresolved: dict[str, int] = {}
    if descriptor is not None:
        view.phases = [
            PhaseRow(p, descriptor.phase_status(p), descriptor.phase(p).completed_at, descriptor.phase(p).counts)
            for p in machine.order
        ]
        view.current_phase = machine.current_phase(descriptor)
        view.issues = await ResumeController(store).inspect_records(descriptor)
        view.artifact_count = sum(
            1 for path in await store.list_files() if not layout.is_engine_file(path)
        )
        view.recent_events = (await load_events(store))[-_RECENT_EVENTS:]
        for finding in await reader.load_findings(store, descriptor.run_id):
            if finding.verdict == "confirmed" and finding.severity:
                unresolved[finding.severity] = unresolved.get(finding.severity, 0) + 1
        if descriptor.corpus_ref and project_dir.is_dir():
            digest = take_snapshot(
                project_dir,
                settings.corpus_extensions_list,
                settings.corpus_exclude_dirs_list,
                settings.corpus_max_file_bytes,
            ).digest
            view.corpus_changed = digest != descriptor.corpus_ref

    view.recommendations = recommend(
        descriptor, machine, unresolved, view.corpus_changed, len(view.issues), view.history_count,
    )
    return view
