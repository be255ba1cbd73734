# src/storage/store_factory.py — v2
"""Factory: instantiate artifact stores for the current run and for archived runs."""

from __future__ import annotations

from pathlib import Path

from stronghold.config.settings import Settings
from stronghold.storage.base_artifact_store import BaseArtifactStore
from stronghold.storage.local_store import LocalArtifactStore


def create_store(project_dir: Path, settings: Settings) -> BaseArtifactStore:
    """Store rooted at the current run's audit directory."""
    return LocalArtifactStore(Path(project_dir) / settings.audit_dir)


def create_history_store(project_dir: Path, settings: Settings, entry_name: str) -> BaseArtifactStore:
    """Read access to an archived run under the history directory."""
    return LocalArtifactStore(Path(project_dir) / settings.history_dir / entry_name)
