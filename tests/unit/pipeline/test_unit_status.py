# tests/unit/pipeline/test_unit_status.py — v1
"""Tests for pipeline/status.py — recommendations and the read-only dashboard."""

from __future__ import annotations

import pytest

from stronghold.core.models import PhaseStatus
from stronghold.pipeline.phase_machine import PhaseMachine
from stronghold.pipeline.status import build_status, recommend
from stronghold.storage.models import RunDescriptor


def descriptor(*complete: str, in_progress: str | None = None) -> RunDescriptor:
    d = RunDescriptor(run_id="r1")
    for p in complete:
        d.phase(p).status = PhaseStatus.COMPLETE
    if in_progress:
        d.phase(in_progress).status = PhaseStatus.IN_PROGRESS
    return d


class TestRecommend:
    def test_no_run(self):
        recs = recommend(None, PhaseMachine(), {}, False, 0, history_count=0)
        assert [r.text for r in recs] == ["Run `stronghold scan` to start an audit"]

    def test_history_without_current_run(self):
        recs = recommend(None, PhaseMachine(), {}, False, 0, history_count=2)
        assert "2 archived run(s)" in recs[0].reason

    def test_resume_in_progress_phase(self):
        d = descriptor("scan", in_progress="analyze")
        recs = recommend(d, PhaseMachine(), {}, False, 0, 0)
        assert recs[0].text == "Resume with `stronghold analyze`"
        assert recs[0].priority == "high"

    def test_next_command(self):
        recs = recommend(descriptor("scan"), PhaseMachine(), {}, False, 0, 0)
        assert recs[0].text == "Next: `stronghold analyze`"

    def test_critical_findings_first(self):
        d = descriptor("scan", "analyze", "strategize", "investigate", "report")
        recs = recommend(d, PhaseMachine(), {"critical": 1, "high": 2}, True, 3, 0)
        assert recs[0].priority == "critical"
        assert recs[0].text.startswith("1 CRITICAL + 2 HIGH")
        assert [r.priority for r in recs] == ["critical", "medium", "medium", "medium"]

    def test_audit_complete(self):
        d = descriptor("scan", "analyze", "strategize", "investigate", "report", "verify")
        recs = recommend(d, PhaseMachine(), {}, False, 0, 0)
        assert [(r.text, r.priority) for r in recs] == [("Audit complete", "info")]


class TestBuildStatus:
    @pytest.mark.asyncio
    async def test_no_audit(self, corpus, settings):
        view = await build_status(corpus, settings)
        assert view.descriptor is None
        text = view.render()
        assert "No audit in progress." in text
        assert "stronghold scan" in text
        assert not (corpus / settings.audit_dir).exists()

    @pytest.mark.asyncio
    async def test_detects_corpus_drift(self, corpus, settings, make_ctx):
        ctx = await make_ctx(corpus, settings, corpus_ref="stale-digest")
        descriptor = ctx.descriptor.model_copy(deep=True)
        descriptor.phase("scan").status = PhaseStatus.COMPLETE
        await ctx.commit(descriptor)

        view = await build_status(corpus, settings)

        assert view.corpus_changed
        assert view.current_phase == "scan"
        assert any("Corpus changed" in r.text for r in view.recommendations)
        assert f"Run {ctx.run_id}" in view.render()

    @pytest.mark.asyncio
    async def test_progress_of_in_progress_phase(self, corpus, settings, make_ctx):
        ctx = await make_ctx(corpus, settings, corpus_ref=None)
        descriptor = ctx.descriptor.model_copy(deep=True)
        descriptor.phase("scan").status = PhaseStatus.IN_PROGRESS
        descriptor.phase("scan").counts.batches_total = 3
        descriptor.phase("scan").counts.batches_completed = 1
        await ctx.commit(descriptor)

        view = await build_status(corpus, settings)

        assert view.progress == "1/3 batches"
        assert "Current phase: scan (1/3 batches)" in view.render()

    @pytest.mark.asyncio
    async def test_artifact_count_skips_engine_files(self, corpus, settings, make_ctx):
        ctx = await make_ctx(corpus, settings, corpus_ref=None)
        await ctx.store.create("analyze/architecture.md", "x")
        await ctx.store.write("analyze/_index.json", "{}")
        await ctx.store.write("analyze/architecture.records.json", "[]")

        view = await build_status(corpus, settings)

        assert view.artifact_count == 1
        assert "Artifacts: 1" in view.render()

    @pytest.mark.asyncio
    async def test_recent_events_tail(self, corpus, settings, make_ctx):
        ctx = await make_ctx(corpus, settings, corpus_ref=None)
        for i in range(7):
            await ctx.events.record("unit_completed", phase="analyze", unit_id=f"U{i}")

        view = await build_status(corpus, settings)

        assert [e.unit_id for e in view.recent_events][-5:] == ["U2", "U3", "U4", "U5", "U6"]
        assert "unit_completed U6" in view.render()
