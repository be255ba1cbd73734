# tests/conftest.py — v2
"""Shared test fixtures for all unit and integration tests.

Provides settings without a .env file, a throwaway corpus, an artifact
store rooted in tmp_path, run contexts and a scripted in-process worker.
No external processes: workers are replaced by ScriptedWorker.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest

from stronghold.batch.models import WorkUnitFailure
from stronghold.config.settings import Settings
from stronghold.core.models import WorkResult, WorkUnit
from stronghold.pipeline.context import RunContext
from stronghold.pipeline.workers.base_worker import BaseWorker, WorkRequest
from stronghold.storage.local_store import LocalArtifactStore
from stronghold.storage.run_manager import create_run


# === FIXTURES: Configuration ===


@pytest.fixture
def settings() -> Settings:
    """Default settings, isolated from any .env in the working directory."""
    return Settings(_env_file=None)


# === FIXTURES: Corpus and store ===


def write_corpus(root: Path, files: dict[str, str]) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def corpus(tmp_path: Path) -> Path:
    """Small mixed-language project directory."""
    return write_corpus(tmp_path / "project", {
        "programs/vault/src/lib.rs": "\n".join(f"fn f{i}() {{}}" for i in range(40)) + "\n",
        "programs/vault/src/oracle.rs": "pub fn price() -> u64 { 42 }\n",
        "app/client.ts": "export const rpc = 'http://localhost';\n",
        "scripts/deploy.py": "print('deploy')\n",
        "README.md": "# not part of the corpus\n",
    })


@pytest.fixture
def store(corpus: Path, settings: Settings) -> LocalArtifactStore:
    return LocalArtifactStore(corpus / settings.audit_dir)


async def make_context(
    project_dir: Path,
    settings: Settings,
    corpus_ref: str | None = "digest",
    **descriptor_updates: Any,
) -> RunContext:
    """Create a run in project_dir/.audit and return its context."""
    store = LocalArtifactStore(Path(project_dir) / settings.audit_dir)
    descriptor = await create_run(store, settings.to_run_config(), corpus_ref=corpus_ref)
    if descriptor_updates:
        descriptor = descriptor.model_copy(update=descriptor_updates)
    ctx = RunContext.create(settings, project_dir, store, descriptor)
    await ctx.commit(descriptor)
    return ctx


def unit(uid: str, phase: str = "investigate", **kwargs: Any) -> WorkUnit:
    """WorkUnit with sensible defaults for tests."""
    defaults: dict[str, Any] = {
        "kind": "investigate",
        "output_path": f"{phase}/findings/{uid}.md" if phase == "investigate" else f"{phase}/{uid}.md",
        "tier": 1,
        "title": uid,
    }
    defaults.update(kwargs)
    return WorkUnit(id=uid, phase=phase, **defaults)


# === Scripted worker ===


class ScriptedWorker(BaseWorker):
    """In-process worker: records calls, fails on demand, answers via a callback."""

    def __init__(
        self,
        ctx: RunContext | None = None,
        respond: Callable[[WorkRequest], WorkResult] | None = None,
        fail: dict[str, int] | None = None,
    ) -> None:
        self._ctx = ctx  # type: ignore[assignment]
        self._respond = respond
        self._fail = dict(fail or {})
        self.calls: list[str] = []
        self.requests: list[WorkRequest] = []

    @property
    def name(self) -> str:
        return "scripted"

    async def run(self, request: WorkRequest) -> WorkResult:
        uid = request.unit.id
        self.calls.append(uid)
        self.requests.append(request)
        if self._fail.get(uid, 0) > 0:
            self._fail[uid] -= 1
            raise WorkUnitFailure(uid, "scripted failure")
        if self._respond is not None:
            return self._respond(request)
        return WorkResult(content=f"# {request.unit.title or uid}\n")


@pytest.fixture
def scripted_worker() -> ScriptedWorker:
    return ScriptedWorker()


# === Helper fixtures (test modules cannot import conftest under importlib mode) ===


@pytest.fixture
def make_ctx() -> Callable[..., Any]:
    return make_context


@pytest.fixture
def make_unit() -> Callable[..., WorkUnit]:
    return unit


@pytest.fixture
def worker_cls() -> type[ScriptedWorker]:
    return ScriptedWorker


@pytest.fixture
def write_files() -> Callable[[Path, dict[str, str]], Path]:
    return write_corpus
