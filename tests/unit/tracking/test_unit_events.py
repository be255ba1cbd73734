# tests/unit/tracking/test_unit_events.py — v1
"""Tests for tracking/events.py — the JSON Lines event trail."""

from __future__ import annotations

import pytest

from stronghold.tracking.events import EventTrail, load_events


class TestEventTrail:
    @pytest.mark.asyncio
    async def test_record_appends_lines(self, store):
        trail = EventTrail(store, "run-1")
        await trail.record("phase_started", phase="scan")
        await trail.record("unit_failed", phase="investigate", unit_id="H-1", error="boom")

        lines = (await store.read_text("events.jsonl")).splitlines()
        assert len(lines) == 2
        assert trail.count("unit_failed") == 1
        assert trail.records[1].data == {"error": "boom"}

    @pytest.mark.asyncio
    async def test_load_round_trip(self, store):
        trail = EventTrail(store, "run-1")
        await trail.record("routing_miss", phase="report", unit_id="R", tags=["coverage"])
        events = await load_events(store)
        assert [e.event for e in events] == ["routing_miss"]
        assert events[0].run_id == "run-1"
        assert events[0].data["tags"] == ["coverage"]

    @pytest.mark.asyncio
    async def test_load_skips_malformed_lines(self, store):
        await EventTrail(store, "run-1").record("run_created")
        await store.append("events.jsonl", "{not json\n\n")
        await store.append("events.jsonl", '{"event": "no_such_event", "run_id": "x"}\n')
        assert [e.event for e in await load_events(store)] == ["run_created"]

    @pytest.mark.asyncio
    async def test_load_without_trail(self, store):
        assert await load_events(store) == []
