# src/logging/context.py — v2
"""Contextual logging support — attach run_id, phase, batch and unit to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Context variables for structured logging, set per phase execution.
_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "run_id", default=None
)
_phase: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "phase", default=None
)
_batch: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "batch", default=None
)
_unit: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "unit", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    run_id: str | None = None
    phase: str | None = None
    batch: str | None = None
    unit: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        run_id=_run_id.get(),
        phase=_phase.get(),
        batch=_batch.get(),
        unit=_unit.get(),
    )


def set_run_context(run_id: str, phase: str | None = None) -> None:
    """Set run-level context (called once per phase command)."""
    _run_id.set(run_id)
    _phase.set(phase)


def set_batch_context(batch: str | None) -> None:
    """Set the batch currently behind the barrier."""
    _batch.set(batch)


def set_unit_context(unit: str | None) -> None:
    """Set unit-level context. Each unit runs in its own task, so this never leaks across units."""
    _unit.set(unit)


def clear_context() -> None:
    """Reset all context variables."""
    _run_id.set(None)
    _phase.set(None)
    _batch.set(None)
    _unit.set(None)
