# src/pipeline/registry.py — v2
"""Worker registry — dynamic loading of unit workers by kind.

Engine kinds (scan) map to built-in workers; every other kind goes to the
configured external worker (command, or a custom class path).
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from stronghold.config.phases import ENGINE_WORKERS, EXTERNAL_WORKERS
from stronghold.pipeline.workers.base_worker import BaseWorker

if TYPE_CHECKING:
    from stronghold.pipeline.context import RunContext

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Raised when worker loading or validation fails."""


class WorkerRegistry:
    """Resolve unit kinds to worker instances, created lazily and cached."""

    def __init__(self, ctx: RunContext) -> None:
        self._ctx = ctx
        self._workers: dict[str, BaseWorker] = {}

    def class_path_for(self, kind: str) -> str:
        if kind in ENGINE_WORKERS:
            return ENGINE_WORKERS[kind]
        settings = self._ctx.settings
        if settings.worker == "custom":
            return settings.worker_class
        return EXTERNAL_WORKERS[settings.worker]

    def register(self, kind: str, worker: BaseWorker) -> None:
        """Manually register a worker instance for one kind."""
        if kind in self._workers:
            logger.warning("Overwriting existing worker for kind: %s", kind)
        self._workers[kind] = worker

    def worker_for(self, kind: str) -> BaseWorker:
        worker = self._workers.get(kind)
        if worker is None:
            class_path = self.class_path_for(kind)
            cached = next(
                (w for w in self._workers.values() if _class_path(w) == class_path), None,
            )
            worker = cached or _load_worker(class_path, self._ctx)
            self._workers[kind] = worker
            logger.debug("Worker for kind %s: %s", kind, worker.name)
        return worker


def _class_path(worker: BaseWorker) -> str:
    cls = type(worker)
    return f"{cls.__module__}.{cls.__qualname__}"


def _load_worker(class_path: str, ctx: RunContext) -> BaseWorker:
    """Import and instantiate a worker from a dotted class path.

    Args:
        class_path: e.g. 'stronghold.pipeline.workers.command_worker.CommandWorker'
    """
    parts = class_path.rsplit(".", 1)
    if len(parts) != 2:
        raise RegistryError(f"Invalid class path: {class_path}")
    module_path, class_name = parts

    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise RegistryError(f"Cannot import module {module_path}: {exc}") from exc

    cls = getattr(module, class_name, None)
    if cls is None:
        raise RegistryError(f"Class {class_name} not found in {module_path}")

    if not isinstance(cls, type) or not issubclass(cls, BaseWorker):
        raise RegistryError(f"{class_path} is not a BaseWorker subclass")

    return cls(ctx)
