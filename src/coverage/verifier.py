# src/coverage/verifier.py — v1
"""Coverage verifier — compare investigate results against a target checklist.

The checklist is external input (JSON). An item is covered when a produced
investigate artifact lists the item id, or a path matching one of the
item's target patterns, among its targets. Critical and high gaps become
follow-up units; medium and low gaps are reported only.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import re
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, Field

from stronghold.core.models import SEVERITY_RANK, SIGNIFICANT_SEVERITIES, Severity, WorkUnit
from stronghold.core.tags import CapabilityTag as Tag
from stronghold.storage import layout
from stronghold.storage.models import ArtifactIndexEntry

logger = logging.getLogger(__name__)

_UNSAFE_ID = re.compile(r"[^A-Za-z0-9_.-]+")


class ChecklistItem(BaseModel):
    id: str
    title: str = ""
    severity: Severity = "medium"
    targets: list[str] = Field(default_factory=list)
    description: str = ""

    def matches(self, target: str) -> bool:
        return target == self.id or any(fnmatch.fnmatch(target, p) for p in self.targets)


class CoverageReport(BaseModel):
    covered: list[ChecklistItem] = Field(default_factory=list)
    uncovered: list[ChecklistItem] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.covered) + len(self.uncovered)

    @property
    def actionable(self) -> list[ChecklistItem]:
        """Gaps that are scheduled as follow-up units."""
        return [i for i in self.uncovered if i.severity in SIGNIFICANT_SEVERITIES]

    @property
    def reported_only(self) -> list[ChecklistItem]:
        return [i for i in self.uncovered if i.severity not in SIGNIFICANT_SEVERITIES]


def load_checklist(path: Path) -> list[ChecklistItem]:
    """Read a checklist: either a JSON list of items or {"items": [...]}."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    raw = data.get("items", []) if isinstance(data, dict) else data
    items = [ChecklistItem(**entry) for entry in raw]
    ids = [i.id for i in items]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ValueError(f"Duplicate checklist ids in {path}: {', '.join(duplicates)}")
    return items


def followup_id(item: ChecklistItem) -> str:
    return f"COV-{_UNSAFE_ID.sub('-', item.id).strip('-')}"


class CoverageVerifier:
    """Evaluate a checklist against produced artifacts."""

    def __init__(self, items: Iterable[ChecklistItem]) -> None:
        self._items = sorted(items, key=lambda i: (SEVERITY_RANK[i.severity], i.id))

    @property
    def items(self) -> list[ChecklistItem]:
        return list(self._items)

    def evaluate(self, entries: Iterable[ArtifactIndexEntry]) -> CoverageReport:
        targets = {t for e in entries for t in e.targets}
        report = CoverageReport()
        for item in self._items:
            if any(item.matches(t) for t in targets):
                report.covered.append(item)
            else:
                report.uncovered.append(item)
        logger.info(
            "Coverage: %d/%d covered, %d actionable gap(s), %d reported only",
            len(report.covered), report.total, len(report.actionable), len(report.reported_only),
        )
        return report

    def followup_units(self, report: CoverageReport) -> list[WorkUnit]:
        """One investigate unit per critical/high gap."""
        units: list[WorkUnit] = []
        for item in report.actionable:
            unit_id = followup_id(item)
            units.append(WorkUnit(
                id=unit_id,
                phase="investigate",
                kind="followup",
                output_path=layout.finding_path(unit_id),
                tier=1,
                title=f"Coverage follow-up: {item.title or item.id}",
                description=item.description,
                requires=frozenset({Tag.STRATEGIES.value, Tag.ARCHITECTURE.value}),
                provides=frozenset({Tag.FINDINGS.value, Tag.COVERAGE.value}),
                target=item.targets[0] if item.targets else item.id,
                severity_hint=item.severity,
            ))
        return units


def render_coverage(report: CoverageReport, followups: Iterable[str] = ()) -> str:
    """COVERAGE.md content."""
    pct = (len(report.covered) / report.total * 100) if report.total else 100.0
    lines = [
        "# Coverage",
        "",
        f"Covered **{len(report.covered)}** of **{report.total}** checklist items ({pct:.0f}%).",
        "",
    ]
    scheduled = set(followups)
    if report.uncovered:
        lines += ["## Gaps", "", "| Item | Severity | Title | Action |", "|---|---|---|---|"]
        for item in report.uncovered:
            if item.severity in SIGNIFICANT_SEVERITIES:
                action = f"follow-up `{followup_id(item)}`" if followup_id(item) in scheduled else "follow-up pending"
            else:
                action = "reported only"
            lines.append(f"| {item.id} | {item.severity} | {item.title} | {action} |")
        lines.append("")
    if report.covered:
        lines += ["## Covered", ""]
        lines += [f"- {item.id} ({item.severity}) {item.title}".rstrip() for item in report.covered]
        lines.append("")
    return "\n".join(lines)
