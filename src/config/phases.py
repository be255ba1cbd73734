# src/config/phases.py — v1
"""Declarative phase, tier and worker configuration.

Phase order and dependencies, the follow-up command printed after each
phase, per-tier analysis profiles, and the default worker class paths.
"""

from __future__ import annotations

from dataclasses import dataclass

from stronghold.core.tags import CapabilityTag as Tag

# Phase name -> phases that must be Complete before it may start.
PHASE_DEPENDENCIES: dict[str, list[str]] = {
    "scan": [],
    "analyze": ["scan"],
    "strategize": ["analyze"],
    "investigate": ["strategize"],
    "report": ["investigate"],
    "verify": ["report"],
}

PHASE_ORDER: list[str] = [
    "scan", "analyze", "strategize", "investigate", "report", "verify",
]

# Command suggested once a phase is Complete.
NEXT_COMMAND: dict[str, str | None] = {
    "scan": "stronghold analyze",
    "analyze": "stronghold strategize",
    "strategize": "stronghold investigate",
    "investigate": "stronghold report",
    "report": "stronghold verify",
    "verify": None,
}


@dataclass(frozen=True)
class FocusArea:
    """One analyze-phase context area."""

    name: str
    tag: str
    title: str


FOCUS_AREAS: dict[str, FocusArea] = {
    area.name: area
    for area in [
        FocusArea("access-control", Tag.ACCESS_CONTROL.value, "Access control & authorization"),
        FocusArea("arithmetic", Tag.ARITHMETIC.value, "Arithmetic & precision"),
        FocusArea("state-machine", Tag.STATE_MACHINE.value, "State transitions & invariants"),
        FocusArea("external-calls", Tag.EXTERNAL_CALLS.value, "External calls & integrations"),
        FocusArea("token-flow", Tag.TOKEN_FLOW.value, "Token & value flow"),
        FocusArea("data-validation", Tag.DATA_VALIDATION.value, "Input & account validation"),
        FocusArea("oracle", Tag.ORACLE.value, "Oracles & external data"),
        FocusArea("upgrade-admin", Tag.UPGRADE_ADMIN.value, "Upgrade & admin paths"),
        FocusArea("timing-ordering", Tag.TIMING.value, "Timing & ordering"),
        FocusArea("error-handling", Tag.ERROR_HANDLING.value, "Error handling & panics"),
    ]
}


@dataclass(frozen=True)
class TierProfile:
    """How much work a tier schedules."""

    focus_areas: tuple[str, ...]
    max_hypotheses: int


TIER_PROFILES: dict[str, TierProfile] = {
    "quick": TierProfile(
        focus_areas=("access-control", "arithmetic", "external-calls", "token-flow"),
        max_hypotheses=20,
    ),
    "standard": TierProfile(
        focus_areas=(
            "access-control", "arithmetic", "state-machine", "external-calls",
            "token-flow", "data-validation", "oracle", "upgrade-admin",
        ),
        max_hypotheses=50,
    ),
    "deep": TierProfile(
        focus_areas=tuple(FOCUS_AREAS),
        max_hypotheses=120,
    ),
}

# Unit kind -> fully qualified worker class for the built-in engine workers.
# Every kind not listed here is handled by the configured external worker.
ENGINE_WORKERS: dict[str, str] = {
    "snapshot": "stronghold.pipeline.workers.scan_workers.SnapshotWorker",
    "delta": "stronghold.pipeline.workers.scan_workers.DeltaWorker",
}

# Default external worker per Settings.worker.
EXTERNAL_WORKERS: dict[str, str] = {
    "command": "stronghold.pipeline.workers.command_worker.CommandWorker",
}
