# src/core/models.py — v1
"""Shared domain models used across modules.

No module redefines these types; all imports come from core.models.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

Severity = Literal["critical", "high", "medium", "low", "info"]
Verdict = Literal["confirmed", "potential", "dismissed", "inconclusive"]

SEVERITY_RANK: dict[str, int] = {
    "critical": 0,
    "high": 1,
    "medium": 2,
    "low": 3,
    "info": 4,
}

SIGNIFICANT_SEVERITIES: frozenset[str] = frozenset({"critical", "high"})


def is_significant(severity: str | None, verdict: str | None) -> bool:
    """High-value result: critical/high severity that was not dismissed."""
    return severity in SIGNIFICANT_SEVERITIES and verdict != "dismissed"


# === STATUS ENUMS ===


class PhaseStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


class UnitStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"


# === WORK UNITS ===


class WorkUnit(BaseModel):
    """Atomic schedulable task.

    Immutable and hashable so batches can be modeled as sets. Execution
    status is tracked in the run descriptor, not on the unit itself.
    """

    model_config = {"frozen": True}

    id: str
    phase: str
    kind: str
    output_path: str
    tier: int = Field(default=1, ge=1)
    title: str = ""
    description: str = ""
    requires: frozenset[str] = frozenset()
    provides: frozenset[str] = frozenset()
    origin: str | None = None
    target: str | None = None
    references: tuple[str, ...] = ()
    lightweight: bool = False
    severity_hint: Severity | None = None

    # --- split/merge siblings ---
    split_group: str | None = None
    sibling_index: int = 0
    sibling_count: int = 0
    input_subset: tuple[str, ...] | None = None

    @property
    def is_sibling(self) -> bool:
        return self.sibling_count > 1

    @property
    def is_supplemental(self) -> bool:
        """Sibling that appends to an artifact created by an earlier sibling."""
        return self.is_sibling and self.sibling_index > 1

    @property
    def section_marker(self) -> str | None:
        """Delimiter written ahead of this sibling's section of the shared artifact."""
        if not self.is_sibling:
            return None
        return f"<!-- section:{self.split_group}:{self.sibling_index}/{self.sibling_count} -->"


class WorkResult(BaseModel):
    """What a worker hands back for one unit."""

    content: str
    provides: list[str] = Field(default_factory=list)
    targets: list[str] = Field(default_factory=list)
    severity: Severity | None = None
    verdict: Verdict | None = None
    records: list[dict[str, Any]] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class UnitOutcome:
    """Resolved state of one unit after a barrier. Hashable; batch results are sets."""

    unit_id: str
    succeeded: bool
    attempts: int = 1
    error: str | None = None
    severity: str | None = None
    verdict: str | None = None
    size_bytes: int = 0
    partial: bool = False

    @property
    def significant(self) -> bool:
        return self.succeeded and is_significant(self.severity, self.verdict)


# === DELTA ===


class DeltaClass(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    UNCHANGED = "unchanged"


class ChangeMagnitude(str, Enum):
    MINOR = "minor"
    MAJOR = "major"


class DeltaRecord(BaseModel):
    """Per-file change classification between two corpus snapshots."""

    model_config = {"frozen": True}

    path: str
    classification: DeltaClass
    magnitude: ChangeMagnitude | None = None
    changed_lines: int = 0


# === FINDINGS ===


class Finding(BaseModel):
    """A prior run's investigate result."""

    id: str
    run_id: str = ""
    title: str = ""
    target: str | None = None
    severity: Severity | None = None
    verdict: Verdict | None = None
    artifact_path: str | None = None

    @property
    def is_dismissal(self) -> bool:
        return self.verdict == "dismissed"


class FindingDisposition(str, Enum):
    RECHECK = "recheck"
    VERIFY = "verify"
    RESOLVED_BY_REMOVAL = "resolved_by_removal"
    RETAINED = "retained"
    INVALIDATED = "invalidated"
    CARRIED_FORWARD = "carried_forward"


class ReclassifiedFinding(BaseModel):
    """A prior Finding mapped onto exactly one disposition for this run."""

    finding: Finding
    disposition: FindingDisposition
    target_class: DeltaClass | None = None
    magnitude: ChangeMagnitude | None = None
