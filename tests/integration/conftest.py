# tests/integration/conftest.py — v1
"""Integration fixtures: an auditor-like scripted worker and a phase driver.

The scripted auditor answers every external unit kind the way a real worker
would: strategize returns hypothesis records, investigate-like kinds return
severity, verdict and targets. Phases run exactly as the CLI runs them, one
fresh context per command.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest

from stronghold.config.settings import Settings
from stronghold.core.models import WorkResult
from stronghold.pipeline.phase_runner import PhaseRunner, PhaseSummary, open_run, open_scan_run
from stronghold.pipeline.registry import WorkerRegistry
from stronghold.pipeline.workers.base_worker import WorkRequest

EXTERNAL_KINDS = (
    "context", "strategize", "investigate", "recheck", "verify-finding",
    "synthesized", "followup", "report", "reverify",
)

HYPOTHESES: list[dict[str, Any]] = [
    {"id": "signer", "title": "Missing signer check", "severity": "critical",
     "target": "programs/vault/src/lib.rs", "tags": ["access-control"]},
    {"id": "stale-price", "title": "Stale oracle price", "severity": "medium",
     "target": "programs/vault/src/oracle.rs", "tags": ["oracle"]},
    {"id": "rpc-url", "title": "Hardcoded RPC endpoint", "severity": "low",
     "target": "app/client.ts"},
]

VERDICTS = {"critical": "confirmed", "high": "confirmed", "medium": "potential", "low": "potential"}


def auditor(request: WorkRequest) -> WorkResult:
    unit = request.unit
    if unit.kind == "strategize":
        return WorkResult(content="# Strategies\n", records=HYPOTHESES)
    if unit.kind in ("investigate", "recheck", "verify-finding", "followup", "reverify"):
        severity = unit.severity_hint or "medium"
        return WorkResult(
            content=f"# {unit.title}\n",
            targets=[unit.target] if unit.target else [],
            severity=severity,
            verdict=VERDICTS.get(severity, "inconclusive"),
        )
    return WorkResult(content=f"# {unit.title}\n")


@pytest.fixture
def auditor_worker(worker_cls) -> Any:
    return worker_cls(respond=auditor)


@pytest.fixture
def make_auditor(worker_cls) -> Callable[..., Any]:
    """Auditor factory, for tests that script failures or extra reported targets."""

    def factory(extra_targets: tuple[str, ...] = (), **kwargs: Any) -> Any:
        def respond(request: WorkRequest) -> WorkResult:
            result = auditor(request)
            if extra_targets and result.targets:
                result = result.model_copy(update={"targets": [*extra_targets, *result.targets]})
            return result

        return worker_cls(respond=respond, **kwargs)

    return factory


async def run_phase(project_dir: Path, settings: Settings, phase: str, worker: Any, **scan_kw: Any) -> PhaseSummary:
    if phase == "scan":
        ctx, _ = await open_scan_run(project_dir, settings, **scan_kw)
    else:
        ctx = await open_run(project_dir, settings, phase)
    registry = WorkerRegistry(ctx)
    for kind in EXTERNAL_KINDS:
        registry.register(kind, worker)
    return await PhaseRunner(ctx, registry=registry).run(phase)


@pytest.fixture
def drive() -> Callable[..., Any]:
    return run_phase
