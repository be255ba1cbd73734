# src/storage/reader.py — v2
"""Read run outputs for chaining, status and consultation.

Helpers to load findings, the scan snapshot and archived runs from the
history directory.
"""

from __future__ import annotations

import json
from pathlib import Path

from stronghold.config.settings import Settings
from stronghold.core.models import SEVERITY_RANK, Finding
from stronghold.storage import layout
from stronghold.storage.artifact_index import load_index
from stronghold.storage.base_artifact_store import BaseArtifactStore


async def load_findings(store: BaseArtifactStore, run_id: str = "") -> list[Finding]:
    """Investigate-phase results that carry a verdict, most severe first."""
    index = await load_index(store, "investigate")
    findings = [
        Finding(
            id=entry.unit_id,
            run_id=run_id,
            title=entry.title,
            target=entry.target or (entry.targets[0] if len(entry.targets) == 1 else None),
            severity=entry.severity,
            verdict=entry.verdict,
            artifact_path=entry.path,
        )
        for entry in index.entries.values()
        if entry.verdict is not None
    ]
    return sorted(findings, key=lambda f: (SEVERITY_RANK.get(f.severity or "info", 9), f.id))


async def load_json(store: BaseArtifactStore, path: str, default: object = None) -> object:
    """Load a JSON artifact, or default if it does not exist."""
    if not await store.exists(path):
        return default
    return json.loads(await store.read_text(path))


def list_history(project_dir: Path, settings: Settings) -> list[Path]:
    """Archived run directories, oldest first."""
    history = Path(project_dir) / settings.history_dir
    if not history.is_dir():
        return []
    return sorted(
        p for p in history.iterdir()
        if p.is_dir() and (p / layout.descriptor_path()).is_file()
    )


def latest_history(project_dir: Path, settings: Settings) -> Path | None:
    """Most recently archived run, or None."""
    entries = list_history(project_dir, settings)
    return entries[-1] if entries else None
