# src/storage/artifact_index.py — v1
"""Per-phase artifact manifests.

Each phase namespace holds an _index.json that maps artifact paths to the
capability tags they provide. Routing reads these manifests instead of
guessing from filenames.
"""

from __future__ import annotations

import json
import logging
import re

from stronghold.config.phases import PHASE_ORDER
from stronghold.core.models import SEVERITY_RANK
from stronghold.storage import layout
from stronghold.storage.base_artifact_store import BaseArtifactStore
from stronghold.storage.models import ArtifactIndex, ArtifactIndexEntry

logger = logging.getLogger(__name__)


async def load_index(store: BaseArtifactStore, phase: str) -> ArtifactIndex:
    """Load a phase manifest, or an empty one if none was written yet."""
    path = layout.index_path(phase)
    if not await store.exists(path):
        return ArtifactIndex(phase=phase)
    data = json.loads(await store.read_text(path))
    return ArtifactIndex(**data)


async def save_index(store: BaseArtifactStore, index: ArtifactIndex) -> None:
    await store.write(layout.index_path(index.phase), index.model_dump_json(indent=2))


def _section_key(marker: str) -> tuple[int, str]:
    match = re.search(r":(\d+)/\d+ -->", marker)
    return (int(match.group(1)) if match else 0, marker)


def _merge(existing: ArtifactIndexEntry, new: ArtifactIndexEntry) -> ArtifactIndexEntry:
    """Fold a supplemental section's entry into the shared artifact's entry."""
    severity = existing.severity
    if new.severity and (
        severity is None or SEVERITY_RANK[new.severity] < SEVERITY_RANK[severity]
    ):
        severity = new.severity
    return existing.model_copy(
        update={
            "provides": sorted(set(existing.provides) | set(new.provides)),
            "target": existing.target or new.target,
            "targets": sorted(set(existing.targets) | set(new.targets)),
            "sections": sorted(set(existing.sections) | set(new.sections), key=_section_key),
            "size_bytes": max(existing.size_bytes, new.size_bytes),
            "severity": severity,
            "verdict": existing.verdict or new.verdict,
            "records_paths": existing.records_paths + [p for p in new.records_paths if p not in existing.records_paths],
            # The latest write knows whether earlier sections are still missing.
            "partial": new.partial,
        }
    )


async def register_artifact(store: BaseArtifactStore, entry: ArtifactIndexEntry) -> ArtifactIndexEntry:
    """Add or merge an entry into its phase manifest and persist it."""
    index = await load_index(store, entry.phase)
    existing = index.entries.get(entry.path)
    merged = _merge(existing, entry) if existing else entry
    index.entries[entry.path] = merged
    await save_index(store, index)
    logger.debug("Indexed %s provides=%s", entry.path, merged.provides)
    return merged


async def load_entries(
    store: BaseArtifactStore, phases: list[str] | None = None,
) -> list[ArtifactIndexEntry]:
    """All manifest entries for the given phases, in phase order."""
    entries: list[ArtifactIndexEntry] = []
    for phase in phases or PHASE_ORDER:
        index = await load_index(store, phase)
        entries.extend(sorted(index.entries.values(), key=lambda e: e.path))
    return entries
