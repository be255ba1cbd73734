# src/resume/controller.py — v1
"""Resume controller — reconcile unit records against produced artifacts.

Artifacts are ground truth. A unit whose output exists is complete whatever
its record says; a unit recorded complete whose output is missing is
re-queued. For split siblings the unit of truth is the sibling's section
marker inside the shared artifact.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

from stronghold.core.models import UnitStatus, WorkUnit
from stronghold.storage import artifact_index
from stronghold.storage.base_artifact_store import BaseArtifactStore
from stronghold.storage.models import ArtifactIndexEntry, RunDescriptor, UnitRecord, utcnow

if TYPE_CHECKING:
    from stronghold.pipeline.context import RunContext

logger = logging.getLogger(__name__)


class InconsistentState(Exception):
    """Descriptor and artifact store disagree. Resolved by the artifact, logged."""

    def __init__(self, unit_id: str, path: str, detail: str) -> None:
        self.unit_id = unit_id
        self.path = path
        self.detail = detail
        super().__init__(f"{unit_id} ({path}): {detail}")


@dataclass
class ReconcileResult:
    complete: frozenset[str] = frozenset()
    outstanding: list[WorkUnit] = field(default_factory=list)
    issues: list[InconsistentState] = field(default_factory=list)
    unindexed: list[WorkUnit] = field(default_factory=list)

    @property
    def outstanding_ids(self) -> frozenset[str]:
        return frozenset(u.id for u in self.outstanding)


async def is_produced(store: BaseArtifactStore, path: str, marker: str | None = None) -> bool:
    """Whether an output exists: the file, or the sibling's section inside it."""
    if marker is None:
        return await store.exists(path)
    return await store.contains(path, marker)


def recount(descriptor: RunDescriptor, phase: str) -> None:
    """Recompute a phase's unit counts from its unit records."""
    records = descriptor.units_for(phase).values()
    counts = descriptor.phase(phase).counts
    counts.units_total = len(records)
    counts.units_complete = sum(1 for r in records if r.status == UnitStatus.COMPLETE)
    counts.units_failed = sum(1 for r in records if r.status == UnitStatus.FAILED)
    counts.units_outstanding = counts.units_total - counts.units_complete


class ResumeController:
    """Cross-check unit records with the store before a phase dispatches work."""

    def __init__(self, store: BaseArtifactStore) -> None:
        self._store = store

    async def inspect(self, descriptor: RunDescriptor, units: Iterable[WorkUnit]) -> ReconcileResult:
        """Read-only reconciliation of the given units."""
        result = ReconcileResult()
        complete: set[str] = set()
        indexes: dict[str, dict[str, ArtifactIndexEntry]] = {}

        for unit in sorted(units, key=lambda u: (u.tier, u.id)):
            produced = await is_produced(self._store, unit.output_path, unit.section_marker)
            record = descriptor.units.get(unit.id)
            status = record.status if record else None

            if produced:
                complete.add(unit.id)
                if status != UnitStatus.COMPLETE:
                    result.issues.append(InconsistentState(
                        unit.id, unit.output_path,
                        f"artifact present but recorded as {status.value if status else 'unrecorded'}",
                    ))
                if unit.phase not in indexes:
                    indexes[unit.phase] = (await artifact_index.load_index(self._store, unit.phase)).entries
                entry = indexes[unit.phase].get(unit.output_path)
                if entry is None or (unit.section_marker and unit.section_marker not in entry.sections):
                    result.unindexed.append(unit)
            else:
                result.outstanding.append(unit)
                if status == UnitStatus.COMPLETE:
                    result.issues.append(InconsistentState(
                        unit.id, unit.output_path, "recorded complete but artifact missing",
                    ))

        result.complete = frozenset(complete)
        return result

    async def inspect_records(self, descriptor: RunDescriptor) -> list[InconsistentState]:
        """Read-only cross-check of every recorded unit, for the status view."""
        issues: list[InconsistentState] = []
        for unit_id, record in sorted(descriptor.units.items()):
            produced = await is_produced(self._store, record.output_path, record.section_marker)
            if produced and record.status != UnitStatus.COMPLETE:
                issues.append(InconsistentState(
                    unit_id, record.output_path,
                    f"artifact present but recorded as {record.status.value}",
                ))
            elif not produced and record.status == UnitStatus.COMPLETE:
                issues.append(InconsistentState(
                    unit_id, record.output_path, "recorded complete but artifact missing",
                ))
        return issues

    async def missing(self, units: Iterable[WorkUnit]) -> list[WorkUnit]:
        """Units whose output is not produced yet."""
        return [
            u for u in units
            if not await is_produced(self._store, u.output_path, u.section_marker)
        ]

    async def reconcile(self, ctx: RunContext, phase: str, units: list[WorkUnit]) -> ReconcileResult:
        """Reconcile and persist: fix records, re-index orphans, rewrite the descriptor."""
        result = await self.inspect(ctx.descriptor, units)
        descriptor = ctx.descriptor.model_copy(deep=True)
        now = utcnow()

        for unit in units:
            previous = descriptor.units.get(unit.id)
            if unit.id in result.complete:
                status = UnitStatus.COMPLETE
            elif previous is not None and previous.status == UnitStatus.FAILED:
                status = UnitStatus.FAILED
            else:
                status = UnitStatus.PENDING
            descriptor.units[unit.id] = UnitRecord(
                phase=phase,
                output_path=unit.output_path,
                section_marker=unit.section_marker,
                status=status,
                attempts=previous.attempts if previous else 0,
                error=previous.error if previous and status != UnitStatus.COMPLETE else None,
                updated_at=now if previous is None or previous.status != status else previous.updated_at,
            )

        for unit in result.unindexed:
            await artifact_index.register_artifact(self._store, ArtifactIndexEntry(
                path=unit.output_path,
                unit_id=unit.split_group or unit.id,
                phase=unit.phase,
                kind=unit.kind,
                title=unit.title,
                provides=sorted(unit.provides),
                size_bytes=await self._store.size(unit.output_path),
                target=unit.target,
                targets=[unit.target] if unit.target else [],
                sections=[unit.section_marker] if unit.section_marker else [],
                metadata={"reregistered": True},
            ))
            logger.info("Re-registered unindexed artifact %s for %s", unit.output_path, unit.id)

        for issue in result.issues:
            logger.warning("Inconsistent state, artifact wins: %s", issue)
            await ctx.events.record(
                "inconsistent_state", phase=phase, unit_id=issue.unit_id,
                path=issue.path, detail=issue.detail,
            )

        descriptor.phase(phase).counts.inconsistencies += len(result.issues)
        recount(descriptor, phase)
        await ctx.commit(descriptor)

        logger.info(
            "Resume %s: %d complete, %d outstanding, %d inconsistencies",
            phase, len(result.complete), len(result.outstanding), len(result.issues),
        )
        return result
