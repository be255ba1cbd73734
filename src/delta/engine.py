# src/delta/engine.py — v1
"""Delta engine — classify corpus changes and reclassify prior findings.

Every path in the union of two snapshots gets exactly one classification.
A modified file is major when its changed-line count reaches the threshold.
When (added + modified) / |union| exceeds the rewrite threshold the run is a
massive rewrite: prior findings are carried forward as context only.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable, Mapping

from pydantic import BaseModel, Field

from stronghold.core.models import (
    ChangeMagnitude,
    DeltaClass,
    DeltaRecord,
    Finding,
    FindingDisposition,
    ReclassifiedFinding,
)
from stronghold.delta.snapshot import CorpusSnapshot, FileSignature, changed_lines

logger = logging.getLogger(__name__)


class MassiveRewriteDetected(Exception):
    """Informational: the changed-file ratio exceeds the rewrite threshold."""

    def __init__(self, ratio: float, threshold: float) -> None:
        self.ratio = ratio
        self.threshold = threshold
        super().__init__(
            f"Massive rewrite: {ratio:.0%} of files added or modified (threshold {threshold:.0%})"
        )


class DeltaReport(BaseModel):
    """Per-file classification of a corpus against its prior snapshot."""

    records: list[DeltaRecord] = Field(default_factory=list)
    ratio: float = 0.0
    rewrite_threshold: float = 0.70
    major_change_lines: int = 50
    massive_rewrite: bool = False
    findings: list[ReclassifiedFinding] = Field(default_factory=list)

    @property
    def counts(self) -> dict[str, int]:
        tally = Counter(r.classification.value for r in self.records)
        return {c.value: tally.get(c.value, 0) for c in DeltaClass}

    @property
    def by_path(self) -> dict[str, DeltaRecord]:
        return {r.path: r for r in self.records}

    def paths(self, classification: DeltaClass) -> list[str]:
        return [r.path for r in self.records if r.classification == classification]

    def dispositions(self, disposition: FindingDisposition) -> list[ReclassifiedFinding]:
        return [f for f in self.findings if f.disposition == disposition]

    def rewrite_notice(self) -> MassiveRewriteDetected | None:
        if not self.massive_rewrite:
            return None
        return MassiveRewriteDetected(self.ratio, self.rewrite_threshold)


def classify(
    previous: Mapping[str, FileSignature],
    current: Mapping[str, FileSignature],
    major_change_lines: int = 50,
) -> list[DeltaRecord]:
    """Classify every path of the union exactly once, sorted by path."""
    records: list[DeltaRecord] = []
    for path in sorted(set(previous) | set(current)):
        old, new = previous.get(path), current.get(path)
        if old is None:
            records.append(DeltaRecord(path=path, classification=DeltaClass.ADDED))
        elif new is None:
            records.append(DeltaRecord(path=path, classification=DeltaClass.DELETED))
        elif old.sha256 == new.sha256:
            records.append(DeltaRecord(path=path, classification=DeltaClass.UNCHANGED))
        else:
            lines = changed_lines(old, new)
            magnitude = ChangeMagnitude.MAJOR if lines >= major_change_lines else ChangeMagnitude.MINOR
            records.append(DeltaRecord(
                path=path,
                classification=DeltaClass.MODIFIED,
                magnitude=magnitude,
                changed_lines=lines,
            ))
    return records


def change_ratio(records: list[DeltaRecord]) -> float:
    """(added + modified) / |union|; 0 for an empty union."""
    if not records:
        return 0.0
    changed = sum(
        1 for r in records if r.classification in (DeltaClass.ADDED, DeltaClass.MODIFIED)
    )
    return changed / len(records)


def reclassify(
    finding: Finding,
    by_path: Mapping[str, DeltaRecord],
    massive_rewrite: bool = False,
) -> ReclassifiedFinding:
    """Map one prior finding onto exactly one disposition."""
    record = by_path.get(finding.target) if finding.target else None
    if massive_rewrite or record is None:
        return ReclassifiedFinding(
            finding=finding,
            disposition=FindingDisposition.CARRIED_FORWARD,
            target_class=record.classification if record else None,
            magnitude=record.magnitude if record else None,
        )

    cls = record.classification
    if finding.is_dismissal:
        disposition = (
            FindingDisposition.RETAINED if cls == DeltaClass.UNCHANGED
            else FindingDisposition.INVALIDATED
        )
    elif cls == DeltaClass.UNCHANGED:
        disposition = FindingDisposition.VERIFY
    elif cls == DeltaClass.DELETED:
        disposition = FindingDisposition.RESOLVED_BY_REMOVAL
    else:
        # Modified, or a target that reappeared after being absent.
        disposition = FindingDisposition.RECHECK

    return ReclassifiedFinding(
        finding=finding, disposition=disposition, target_class=cls, magnitude=record.magnitude,
    )


class DeltaEngine:
    """Compare snapshots and reclassify findings with one run's thresholds."""

    def __init__(self, rewrite_threshold: float = 0.70, major_change_lines: int = 50) -> None:
        self._rewrite_threshold = rewrite_threshold
        self._major_change_lines = major_change_lines

    def compare(
        self,
        previous: CorpusSnapshot,
        current: CorpusSnapshot,
        findings: Iterable[Finding] = (),
    ) -> DeltaReport:
        records = classify(previous.files, current.files, self._major_change_lines)
        ratio = change_ratio(records)
        massive = ratio > self._rewrite_threshold
        by_path = {r.path: r for r in records}

        report = DeltaReport(
            records=records,
            ratio=ratio,
            rewrite_threshold=self._rewrite_threshold,
            major_change_lines=self._major_change_lines,
            massive_rewrite=massive,
            findings=[reclassify(f, by_path, massive) for f in findings],
        )
        notice = report.rewrite_notice()
        if notice is not None:
            logger.warning("%s; incremental shortcuts disabled", notice)
        logger.info(
            "Delta: %s, ratio %.1f%%, %d prior finding(s) reclassified",
            report.counts, ratio * 100, len(report.findings),
        )
        return report
