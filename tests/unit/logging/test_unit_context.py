# tests/unit/logging/test_unit_context.py — v1
"""Tests for logging/context.py — contextvars propagation."""

from __future__ import annotations

import asyncio

import pytest

from stronghold.logging.context import (
    LogContext,
    clear_context,
    get_context,
    set_batch_context,
    set_run_context,
    set_unit_context,
)


class TestContext:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_empty_by_default(self):
        assert get_context() == LogContext()
        assert get_context().as_dict() == {}

    def test_set_and_clear(self):
        set_run_context("r1", "scan")
        set_batch_context("batch-1")
        assert get_context().as_dict() == {"run_id": "r1", "phase": "scan", "batch": "batch-1"}
        clear_context()
        assert get_context().run_id is None

    @pytest.mark.asyncio
    async def test_unit_context_does_not_leak_across_tasks(self):
        set_run_context("r1", "investigate")
        seen: dict[str, str | None] = {}

        async def work(uid: str) -> None:
            set_unit_context(uid)
            await asyncio.sleep(0)
            seen[uid] = get_context().unit

        await asyncio.gather(work("A"), work("B"))

        assert seen == {"A": "A", "B": "B"}
        assert get_context().unit is None
        assert get_context().run_id == "r1"
