# tests/unit/storage/test_unit_run_manager.py — v1
"""Tests for storage/run_manager.py — run creation, chaining and archiving."""

from __future__ import annotations

import re
from datetime import datetime, timezone

import pytest

from stronghold.core.models import PhaseStatus
from stronghold.storage.run_manager import (
    archive_run,
    create_run,
    generate_run_id,
    load_descriptor,
    save_descriptor,
)


class TestRunId:
    def test_format(self):
        rid = generate_run_id(datetime(2026, 3, 1, 9, 5, tzinfo=timezone.utc))
        assert re.fullmatch(r"20260301_0905_[0-9a-f]{5}", rid)

    def test_unique(self):
        assert len({generate_run_id() for _ in range(20)}) == 20


class TestDescriptor:
    @pytest.mark.asyncio
    async def test_none_before_first_run(self, store):
        assert await load_descriptor(store) is None

    @pytest.mark.asyncio
    async def test_create_persists_all_phases_pending(self, store, settings):
        d = await create_run(store, settings.to_run_config(), corpus_ref="abc")
        loaded = await load_descriptor(store)
        assert loaded.run_id == d.run_id
        assert loaded.sequence == 1
        assert loaded.corpus_ref == "abc"
        assert loaded.prior_run is None
        assert all(p.status == PhaseStatus.PENDING for p in loaded.phases.values())
        assert loaded.config == settings.to_run_config()

    @pytest.mark.asyncio
    async def test_save_stamps_updated_at(self, store, settings):
        d = await create_run(store, settings.to_run_config())
        saved = await save_descriptor(store, d)
        assert saved.updated_at >= d.updated_at
        assert (await load_descriptor(store)).updated_at == saved.updated_at

    @pytest.mark.asyncio
    async def test_chained_run(self, store, settings):
        prior = await create_run(store, settings.to_run_config(), corpus_ref="old")
        d = await create_run(store, settings.to_run_config(), corpus_ref="new", prior=prior)
        assert d.sequence == 2
        assert d.prior_run.run_id == prior.run_id
        assert d.prior_run.corpus_ref == "old"
        assert d.prior_run.archive == f"001_{prior.run_id}"


class TestArchive:
    @pytest.mark.asyncio
    async def test_moves_audit_dir(self, corpus, settings, store):
        d = await create_run(store, settings.to_run_config())
        await store.create("analyze/a.md", "x")

        name = archive_run(corpus, settings, d)

        assert name == f"001_{d.run_id}"
        assert not (corpus / settings.audit_dir).exists()
        assert (corpus / settings.history_dir / name / "analyze" / "a.md").is_file()

    @pytest.mark.asyncio
    async def test_refuses_to_overwrite(self, corpus, settings, store):
        d = await create_run(store, settings.to_run_config())
        (corpus / settings.history_dir / f"001_{d.run_id}").mkdir(parents=True)
        with pytest.raises(FileExistsError):
            archive_run(corpus, settings, d)
