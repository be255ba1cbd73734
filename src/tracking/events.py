# src/tracking/events.py — v1
"""Event trail — append-only JSON Lines record of notable engine decisions.

Each record lands in events.jsonl at the audit root: unit outcomes, routing
misses, splits, reconciliation fixes, delta dispositions, synthesis and
coverage follow-ups.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from stronghold.storage import layout
from stronghold.storage.base_artifact_store import BaseArtifactStore

logger = logging.getLogger(__name__)

EventType = Literal[
    "run_created",
    "run_archived",
    "phase_started",
    "phase_completed",
    "unit_completed",
    "unit_failed",
    "routing_miss",
    "unit_split",
    "inconsistent_state",
    "massive_rewrite",
    "resolved_by_removal",
    "dismissal_invalidated",
    "synthesis_triggered",
    "coverage_followup",
]


class EventRecord(BaseModel):
    """One line of the event trail."""

    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event: EventType
    run_id: str
    phase: str | None = None
    unit_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class EventTrail:
    """Appends EventRecords to the store and keeps the ones written this session."""

    def __init__(self, store: BaseArtifactStore, run_id: str) -> None:
        self._store = store
        self._run_id = run_id
        self._records: list[EventRecord] = []

    @property
    def run_id(self) -> str:
        return self._run_id

    async def record(
        self,
        event: EventType,
        phase: str | None = None,
        unit_id: str | None = None,
        **data: Any,
    ) -> EventRecord:
        """Append an event to events.jsonl."""
        entry = EventRecord(
            event=event, run_id=self._run_id, phase=phase, unit_id=unit_id, data=data,
        )
        await self._store.append(
            layout.events_path(), json.dumps(entry.model_dump(mode="json")) + "\n",
        )
        self._records.append(entry)
        return entry

    @property
    def records(self) -> list[EventRecord]:
        """Events recorded through this trail instance."""
        return list(self._records)

    def count(self, event: EventType) -> int:
        return sum(1 for r in self._records if r.event == event)


async def load_events(store: BaseArtifactStore) -> list[EventRecord]:
    """Read the full trail, skipping lines that fail to parse."""
    path = layout.events_path()
    if not await store.exists(path):
        return []
    events: list[EventRecord] = []
    for lineno, line in enumerate((await store.read_text(path)).splitlines(), 1):
        if not line.strip():
            continue
        try:
            events.append(EventRecord(**json.loads(line)))
        except (ValueError, TypeError) as exc:
            logger.warning("Skipping malformed event line %d: %s", lineno, exc)
    return events
