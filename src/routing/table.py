# src/routing/table.py — v1
"""Routing table: capability tag -> artifact paths.

Derived from the per-phase artifact manifests, never persisted on its own.
Each unit's `requires` tags resolve to every artifact providing them, and
nothing else, so a unit never receives the full artifact corpus.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from stronghold.budget.estimator import InputKind, ResolvedInput
from stronghold.core.models import WorkUnit
from stronghold.core.tags import TagVocabulary
from stronghold.storage import artifact_index
from stronghold.storage.base_artifact_store import BaseArtifactStore
from stronghold.storage.models import ArtifactIndexEntry

logger = logging.getLogger(__name__)


class RoutingMiss(Exception):
    """A required tag matched no artifact. Recorded, never raised to the caller."""

    def __init__(self, unit_id: str, tag: str) -> None:
        self.unit_id = unit_id
        self.tag = tag
        super().__init__(f"No artifact provides '{tag}' required by {unit_id}")


@dataclass(frozen=True)
class RoutingEntry:
    tag: str
    paths: tuple[str, ...]


@dataclass(frozen=True)
class Resolution:
    """Inputs selected for one unit plus the tags nothing satisfied."""

    unit_id: str
    inputs: tuple[ResolvedInput, ...] = ()
    misses: tuple[RoutingMiss, ...] = field(default=())

    @property
    def missing_tags(self) -> tuple[str, ...]:
        return tuple(m.tag for m in self.misses)


class RoutingTable:
    """Exact-match routing over a closed tag vocabulary."""

    def __init__(
        self,
        entries: Iterable[ArtifactIndexEntry],
        vocabulary: TagVocabulary,
    ) -> None:
        self._vocabulary = vocabulary
        self._by_tag: dict[str, list[str]] = defaultdict(list)
        self._sizes: dict[str, int] = {}
        for entry in entries:
            known, unknown = vocabulary.partition(entry.provides)
            if unknown:
                logger.warning(
                    "Ignoring unregistered tags %s on %s", sorted(unknown), entry.path,
                )
            self._sizes[entry.path] = entry.size_bytes
            for tag in known:
                if entry.path not in self._by_tag[tag]:
                    self._by_tag[tag].append(entry.path)

    @classmethod
    async def build(
        cls,
        store: BaseArtifactStore,
        vocabulary: TagVocabulary,
        phases: list[str] | None = None,
    ) -> RoutingTable:
        """Rebuild from the artifact manifests without reading artifact contents."""
        entries = await artifact_index.load_entries(store, phases)
        table = cls(entries, vocabulary)
        logger.debug("Routing table rebuilt: %d tags, %d artifacts", len(table.tags), len(entries))
        return table

    @property
    def tags(self) -> list[str]:
        return sorted(t for t, paths in self._by_tag.items() if paths)

    def entry(self, tag: str) -> RoutingEntry:
        return RoutingEntry(tag=tag, paths=tuple(sorted(self._by_tag.get(tag, ()))))

    def paths_for(self, tag: str) -> tuple[str, ...]:
        return self.entry(tag).paths

    def resolve(self, unit: WorkUnit, reference_root: Path | None = None) -> Resolution:
        """Minimal input set for a unit.

        Every artifact providing a required tag is included; a tag with no
        provider becomes a RoutingMiss and the input is omitted. A unit never
        receives its own output as input. When the unit carries an
        input_subset (split sibling), only those inputs are kept.

        Raises:
            UnknownTagError: If the unit requires an unregistered tag.
        """
        requires = self._vocabulary.validate(unit.requires, context=f"unit {unit.id}")
        selected: dict[str, ResolvedInput] = {}
        misses: list[RoutingMiss] = []

        for tag in sorted(requires):
            paths = [p for p in self.paths_for(tag) if p != unit.output_path]
            if not paths:
                misses.append(RoutingMiss(unit.id, tag))
                continue
            for path in paths:
                selected.setdefault(
                    path, ResolvedInput(path=path, size_bytes=self._sizes.get(path, 0), tag=tag),
                )

        for ref in unit.references:
            selected.setdefault(ref, _reference_input(ref, reference_root))

        inputs = tuple(selected.values())
        if unit.input_subset is not None:
            subset = set(unit.input_subset)
            inputs = tuple(i for i in inputs if i.path in subset)

        return Resolution(unit_id=unit.id, inputs=inputs, misses=tuple(misses))


def _reference_input(ref: str, root: Path | None) -> ResolvedInput:
    path = Path(ref) if root is None else Path(root) / ref
    size = path.stat().st_size if path.is_file() else 0
    return ResolvedInput(path=ref, size_bytes=size, kind=InputKind.REFERENCE)
