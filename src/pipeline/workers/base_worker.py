# src/pipeline/workers/base_worker.py — v1
"""Standard worker interface.

A worker turns one WorkRequest into a WorkResult. The engine owns writing
the artifact, indexing it and recording the outcome; workers only compute.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from stronghold.budget.estimator import ResolvedInput
from stronghold.core.models import WorkResult, WorkUnit

if TYPE_CHECKING:
    from stronghold.pipeline.context import RunContext


@dataclass(frozen=True)
class WorkRequest:
    """Everything a worker may look at for one unit."""

    unit: WorkUnit
    inputs: tuple[ResolvedInput, ...]
    missing_tags: tuple[str, ...]
    project_dir: Path
    audit_dir: Path
    knowledge_dir: Path | None = None
    options: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """JSON-serializable form handed to external workers."""
        return {
            "unit": self.unit.model_dump(mode="json"),
            "inputs": [
                {
                    "path": str(self.audit_dir / i.path) if i.kind.value == "artifact" else i.path,
                    "kind": i.kind.value,
                    "tag": i.tag,
                    "size_bytes": i.size_bytes,
                }
                for i in self.inputs
            ],
            "missing_tags": list(self.missing_tags),
            "project_dir": str(self.project_dir),
            "audit_dir": str(self.audit_dir),
            "knowledge_dir": str(self.knowledge_dir) if self.knowledge_dir else None,
            "options": self.options,
        }


class BaseWorker(ABC):
    """Standard interface for all unit workers."""

    def __init__(self, ctx: RunContext) -> None:
        self._ctx = ctx

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique worker identifier (e.g., 'snapshot', 'command')."""

    @abstractmethod
    async def run(self, request: WorkRequest) -> WorkResult:
        """Compute the result for one unit.

        Raises:
            WorkUnitFailure: If the unit cannot produce a result.
        """

    def validate_result(self, request: WorkRequest, result: WorkResult) -> list[str]:
        """Quality gate. Returns problems; any problem fails the attempt.

        Override for custom validation logic.
        """
        if not result.content.strip():
            return ["empty content"]
        return []
