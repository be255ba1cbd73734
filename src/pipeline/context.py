# src/pipeline/context.py — v1
"""Run context — the explicit value threaded through every phase call.

Holds settings, the artifact store, the tag vocabulary, the event trail and
the current RunDescriptor. There is no module-level run state: mutation is
a whole-descriptor swap through commit().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from stronghold.config.settings import Settings
from stronghold.core.tags import TagVocabulary
from stronghold.storage.base_artifact_store import BaseArtifactStore
from stronghold.storage.models import RunDescriptor
from stronghold.storage.run_manager import save_descriptor
from stronghold.tracking.events import EventTrail

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    settings: Settings
    project_dir: Path
    store: BaseArtifactStore
    descriptor: RunDescriptor
    vocabulary: TagVocabulary
    events: EventTrail

    @classmethod
    def create(
        cls,
        settings: Settings,
        project_dir: Path,
        store: BaseArtifactStore,
        descriptor: RunDescriptor,
    ) -> RunContext:
        """Build a context, with the tag vocabulary taken from the run's frozen config."""
        return cls(
            settings=settings,
            project_dir=Path(project_dir),
            store=store,
            descriptor=descriptor,
            vocabulary=TagVocabulary(descriptor.config.extra_tags),
            events=EventTrail(store, descriptor.run_id),
        )

    @property
    def run_id(self) -> str:
        return self.descriptor.run_id

    @property
    def config(self):
        return self.descriptor.config

    async def commit(self, descriptor: RunDescriptor) -> RunDescriptor:
        """Persist a new descriptor value and make it current."""
        self.descriptor = await save_descriptor(self.store, descriptor)
        return self.descriptor
