# src/pipeline/phase_machine.py — v1
"""Phase state machine — pending -> in_progress -> complete.

Phase dependencies form a DAG (networkx); a phase may start only once all
of its transitive prerequisites are complete, and may complete only when
no unit is outstanding.
"""

from __future__ import annotations

import logging

import networkx as nx

from stronghold.config.phases import NEXT_COMMAND, PHASE_DEPENDENCIES
from stronghold.core.models import PhaseStatus
from stronghold.storage.models import RunDescriptor, utcnow

logger = logging.getLogger(__name__)


class PrerequisiteMissing(Exception):
    """A phase was invoked before its dependencies were complete."""

    def __init__(self, phase: str, missing: list[str]) -> None:
        self.phase = phase
        self.missing = missing
        super().__init__(
            f"Cannot start '{phase}': prerequisite phase(s) not complete: {', '.join(missing)}. "
            f"Run `stronghold {missing[0]}` first."
        )


class PhaseIncomplete(Exception):
    """A phase was marked complete while units were still outstanding."""

    def __init__(self, phase: str, outstanding: int) -> None:
        self.phase = phase
        self.outstanding = outstanding
        super().__init__(f"Phase '{phase}' has {outstanding} outstanding unit(s)")


def build_phase_graph(dependencies: dict[str, list[str]] | None = None) -> nx.DiGraph:
    """Edge dep -> phase for each declared dependency."""
    deps = dependencies if dependencies is not None else PHASE_DEPENDENCIES
    graph = nx.DiGraph()
    graph.add_nodes_from(deps)
    for phase, requires in deps.items():
        for dep in requires:
            if dep not in deps:
                raise ValueError(f"Phase '{phase}' depends on unknown phase '{dep}'")
            graph.add_edge(dep, phase)
    if not nx.is_directed_acyclic_graph(graph):
        raise ValueError(f"Phase dependencies contain a cycle: {nx.find_cycle(graph)}")
    return graph


class PhaseMachine:
    """Transition rules over a RunDescriptor. Returns new descriptor values."""

    def __init__(self, dependencies: dict[str, list[str]] | None = None) -> None:
        self._graph = build_phase_graph(dependencies)

    @property
    def order(self) -> list[str]:
        return list(nx.lexicographical_topological_sort(self._graph, key=self._rank))

    def _rank(self, phase: str) -> int:
        # Tie-break by declaration order so the order matches the pipeline.
        return list(self._graph.nodes).index(phase)

    def prerequisites(self, phase: str) -> list[str]:
        """All transitive prerequisites, in pipeline order."""
        if phase not in self._graph:
            raise ValueError(f"Unknown phase: {phase}")
        ancestors = nx.ancestors(self._graph, phase)
        return [p for p in self.order if p in ancestors]

    def missing_prerequisites(self, descriptor: RunDescriptor, phase: str) -> list[str]:
        return [p for p in self.prerequisites(phase) if not descriptor.is_complete(p)]

    def check_prerequisites(self, descriptor: RunDescriptor, phase: str) -> None:
        missing = self.missing_prerequisites(descriptor, phase)
        if missing:
            raise PrerequisiteMissing(phase, missing)

    def begin(self, descriptor: RunDescriptor, phase: str) -> RunDescriptor:
        """Move a phase to in_progress. A complete phase stays complete.

        Raises:
            PrerequisiteMissing: Before any change is made.
        """
        self.check_prerequisites(descriptor, phase)
        updated = descriptor.model_copy(deep=True)
        record = updated.phase(phase)
        if record.status == PhaseStatus.COMPLETE:
            return updated
        if record.status == PhaseStatus.PENDING:
            record.started_at = utcnow()
            logger.info("Phase %s started", phase)
        record.status = PhaseStatus.IN_PROGRESS
        return updated

    def complete(self, descriptor: RunDescriptor, phase: str, outstanding: int) -> RunDescriptor:
        """Mark a phase complete.

        Raises:
            PhaseIncomplete: If units are still outstanding.
        """
        if outstanding:
            raise PhaseIncomplete(phase, outstanding)
        updated = descriptor.model_copy(deep=True)
        record = updated.phase(phase)
        if record.status != PhaseStatus.COMPLETE:
            record.status = PhaseStatus.COMPLETE
            record.completed_at = utcnow()
            logger.info("Phase %s complete", phase)
        return updated

    def current_phase(self, descriptor: RunDescriptor) -> str | None:
        """First in-progress phase, else the last complete one."""
        for phase in self.order:
            if descriptor.phase_status(phase) == PhaseStatus.IN_PROGRESS:
                return phase
        complete = [p for p in self.order if descriptor.is_complete(p)]
        return complete[-1] if complete else None

    @staticmethod
    def next_command(phase: str) -> str | None:
        return NEXT_COMMAND.get(phase)
