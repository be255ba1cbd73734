# src/storage/models.py — v2
"""Storage domain models: RunDescriptor, PhaseRecord, UnitRecord, ArtifactIndex.

The RunDescriptor is the single persisted STATE.json document. It is
rewritten whole on every transition, never patched in place.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from stronghold.config.phases import PHASE_ORDER
from stronghold.config.settings import RunConfig
from stronghold.core.models import PhaseStatus, Severity, UnitStatus, Verdict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PhaseCounts(BaseModel):
    """Unit accounting for one phase."""

    units_total: int = 0
    units_complete: int = 0
    units_failed: int = 0
    units_outstanding: int = 0
    batches_total: int = 0
    batches_completed: int = 0
    splits: int = 0
    routing_misses: int = 0
    inconsistencies: int = 0
    retries: int = 0
    synthesized: int = 0
    followups: int = 0


class PhaseRecord(BaseModel):
    """Status and timestamps of a single phase."""

    status: PhaseStatus = PhaseStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    counts: PhaseCounts = Field(default_factory=PhaseCounts)


class UnitRecord(BaseModel):
    """Last known state of a work unit. The artifact on disk wins on conflict."""

    phase: str
    output_path: str
    section_marker: str | None = None
    status: UnitStatus = UnitStatus.PENDING
    attempts: int = 0
    error: str | None = None
    updated_at: datetime | None = None


class PriorRunRef(BaseModel):
    """Link to the archived run this one chains from."""

    run_id: str
    sequence: int
    archive: str
    corpus_ref: str | None = None


class RunDescriptor(BaseModel):
    """Persisted progress record of one audit run (STATE.json)."""

    run_id: str
    sequence: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    corpus_ref: str | None = None
    prior_run: PriorRunRef | None = None
    config: RunConfig = Field(default_factory=RunConfig)
    phases: dict[str, PhaseRecord] = Field(
        default_factory=lambda: {p: PhaseRecord() for p in PHASE_ORDER}
    )
    units: dict[str, UnitRecord] = Field(default_factory=dict)

    # One-shot flags
    massive_rewrite: bool = False
    synthesis_evaluated: bool = False
    synthesis_triggered: bool = False
    coverage_followup_done: bool = False

    def phase(self, name: str) -> PhaseRecord:
        return self.phases.setdefault(name, PhaseRecord())

    def phase_status(self, name: str) -> PhaseStatus:
        return self.phase(name).status

    def is_complete(self, phase: str) -> bool:
        return self.phase_status(phase) == PhaseStatus.COMPLETE

    def units_for(self, phase: str) -> dict[str, UnitRecord]:
        return {uid: rec for uid, rec in self.units.items() if rec.phase == phase}


class ArtifactIndexEntry(BaseModel):
    """Manifest entry: which capability tags an artifact satisfies."""

    path: str
    unit_id: str
    phase: str
    kind: str = ""
    title: str = ""
    provides: list[str] = Field(default_factory=list)
    size_bytes: int = 0
    # Corpus file the unit was declared to audit; targets adds what the worker reported.
    target: str | None = None
    targets: list[str] = Field(default_factory=list)
    severity: Severity | None = None
    verdict: Verdict | None = None
    records_paths: list[str] = Field(default_factory=list)
    sections: list[str] = Field(default_factory=list)
    partial: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ArtifactIndex(BaseModel):
    """Per-phase manifest (<phase>/_index.json)."""

    phase: str
    entries: dict[str, ArtifactIndexEntry] = Field(default_factory=dict)
