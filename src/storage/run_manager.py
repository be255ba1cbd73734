# src/storage/run_manager.py — v2
"""Run lifecycle management: create, chain, archive, persist the descriptor."""

from __future__ import annotations

import json
import logging
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path

from stronghold.config.settings import RunConfig, Settings
from stronghold.storage import layout
from stronghold.storage.base_artifact_store import BaseArtifactStore
from stronghold.storage.models import PriorRunRef, RunDescriptor, utcnow

logger = logging.getLogger(__name__)


def generate_run_id(timestamp: datetime | None = None) -> str:
    """Generate a run_id: yyyymmdd_hhmm_{uuid4_short}."""
    ts = timestamp or datetime.now(timezone.utc)
    short_uuid = uuid.uuid4().hex[:5]
    return f"{ts.strftime('%Y%m%d_%H%M')}_{short_uuid}"


async def load_descriptor(store: BaseArtifactStore) -> RunDescriptor | None:
    """Load STATE.json, or None if no run has been started."""
    path = layout.descriptor_path()
    if not await store.exists(path):
        return None
    data = json.loads(await store.read_text(path))
    return RunDescriptor(**data)


async def save_descriptor(store: BaseArtifactStore, descriptor: RunDescriptor) -> RunDescriptor:
    """Atomically rewrite the whole descriptor with a fresh updated_at."""
    stamped = descriptor.model_copy(update={"updated_at": utcnow()})
    await store.write(layout.descriptor_path(), stamped.model_dump_json(indent=2))
    return stamped


async def create_run(
    store: BaseArtifactStore,
    config: RunConfig,
    corpus_ref: str | None = None,
    prior: RunDescriptor | None = None,
    prior_archive: str | None = None,
) -> RunDescriptor:
    """Create and persist a fresh descriptor, chained to prior if given."""
    prior_ref = None
    sequence = 1
    if prior is not None:
        sequence = prior.sequence + 1
        prior_ref = PriorRunRef(
            run_id=prior.run_id,
            sequence=prior.sequence,
            archive=prior_archive or layout.history_entry_name(prior.sequence, prior.run_id),
            corpus_ref=prior.corpus_ref,
        )

    descriptor = RunDescriptor(
        run_id=generate_run_id(),
        sequence=sequence,
        corpus_ref=corpus_ref,
        prior_run=prior_ref,
        config=config,
    )
    descriptor = await save_descriptor(store, descriptor)
    logger.info(
        "Created run %s (sequence %d%s)",
        descriptor.run_id,
        descriptor.sequence,
        f", chained from {prior_ref.run_id}" if prior_ref else "",
    )
    return descriptor


def archive_run(project_dir: Path, settings: Settings, descriptor: RunDescriptor) -> str:
    """Move the current audit directory into the history directory.

    Returns:
        The history entry name the run was archived under.
    """
    audit = Path(project_dir) / settings.audit_dir
    history = Path(project_dir) / settings.history_dir
    history.mkdir(parents=True, exist_ok=True)

    name = layout.history_entry_name(descriptor.sequence, descriptor.run_id)
    target = history / name
    if target.exists():
        raise FileExistsError(f"History entry already exists: {target}")
    shutil.move(str(audit), str(target))
    logger.info("Archived run %s to %s", descriptor.run_id, target)
    return name
