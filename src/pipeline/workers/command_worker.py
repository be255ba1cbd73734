# src/pipeline/workers/command_worker.py — v1
"""External command worker — one subprocess per unit.

The request is written to the command's stdin as JSON; the command prints a
WorkResult as JSON on stdout. A non-zero exit or unparsable output fails
the unit.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex

from pydantic import ValidationError

from stronghold.batch.models import WorkUnitFailure
from stronghold.config.settings import ConfigurationError
from stronghold.core.models import WorkResult
from stronghold.pipeline.workers.base_worker import BaseWorker, WorkRequest

logger = logging.getLogger(__name__)

_STDERR_TAIL = 500


class CommandWorker(BaseWorker):
    """Delegate units to STRONGHOLD_WORKER_COMMAND."""

    def __init__(self, ctx) -> None:
        super().__init__(ctx)
        self._argv = shlex.split(ctx.settings.worker_command)
        if not self._argv:
            raise ConfigurationError(
                "STRONGHOLD_WORKER_COMMAND is required for phases beyond scan"
            )

    @property
    def name(self) -> str:
        return "command"

    async def run(self, request: WorkRequest) -> WorkResult:
        unit = request.unit
        payload = json.dumps(request.to_payload()).encode("utf-8")
        proc = await asyncio.create_subprocess_exec(
            *self._argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(request.project_dir),
        )
        try:
            stdout, stderr = await proc.communicate(payload)
        except asyncio.CancelledError:
            # Timeout or shutdown: do not leave the worker process behind.
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace")[-_STDERR_TAIL:].strip()
            raise WorkUnitFailure(unit.id, f"worker exited with {proc.returncode}: {tail}")

        try:
            result = WorkResult.model_validate_json(stdout)
        except ValidationError as exc:
            raise WorkUnitFailure(unit.id, f"invalid worker output: {exc.error_count()} error(s)") from exc

        for warning in result.warnings:
            logger.warning("Worker warning for %s: %s", unit.id, warning)
        return result
