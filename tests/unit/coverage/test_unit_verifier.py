# tests/unit/coverage/test_unit_verifier.py — v1
"""Tests for coverage/verifier.py — checklist evaluation and follow-up units."""

from __future__ import annotations

import json

import pytest

from stronghold.coverage.verifier import (
    ChecklistItem,
    CoverageVerifier,
    followup_id,
    load_checklist,
    render_coverage,
)
from stronghold.storage.models import ArtifactIndexEntry


def produced(*targets: str) -> ArtifactIndexEntry:
    return ArtifactIndexEntry(
        path=f"investigate/findings/{targets[0].replace('/', '_')}.md", unit_id="H", phase="investigate",
        provides=["findings"], targets=list(targets),
    )


@pytest.fixture
def checklist() -> list[ChecklistItem]:
    """Twelve items: nine covered below, gaps are two critical and one low."""
    items = [
        ChecklistItem(id=f"C-{i:02d}", severity="medium", targets=[f"programs/mod{i}/*.rs"])
        for i in range(9)
    ]
    items += [
        ChecklistItem(id="GAP-signer", title="Signer checks", severity="critical",
                      targets=["programs/vault/src/admin.rs"]),
        ChecklistItem(id="GAP-oracle", severity="critical", targets=["programs/oracle/*.rs"]),
        ChecklistItem(id="GAP-docs", severity="low", targets=["docs/*"]),
    ]
    return items


@pytest.fixture
def entries() -> list[ArtifactIndexEntry]:
    return [produced(f"programs/mod{i}/lib.rs") for i in range(8)] + [produced("C-08")]


class TestEvaluate:
    def test_gap_scenario(self, checklist, entries):
        verifier = CoverageVerifier(checklist)
        report = verifier.evaluate(entries)

        assert report.total == 12
        assert len(report.covered) == 9
        assert {i.id for i in report.actionable} == {"GAP-signer", "GAP-oracle"}
        assert [i.id for i in report.reported_only] == ["GAP-docs"]

        units = verifier.followup_units(report)
        assert len(units) == 2
        assert {u.id for u in units} == {"COV-GAP-signer", "COV-GAP-oracle"}
        assert all(u.phase == "investigate" and u.tier == 1 for u in units)
        signer = next(u for u in units if u.id == "COV-GAP-signer")
        assert signer.target == "programs/vault/src/admin.rs"
        assert signer.output_path == "investigate/findings/COV-GAP-signer.md"
        assert "findings" in signer.provides

    def test_item_id_counts_as_target(self, entries):
        item = ChecklistItem(id="C-08", targets=["nowhere/*"])
        assert CoverageVerifier([item]).evaluate(entries).covered == [item]

    def test_nothing_produced(self, checklist):
        report = CoverageVerifier(checklist).evaluate([])
        assert report.covered == []
        assert report.total == 12

    def test_items_ordered_by_severity(self, checklist):
        ids = [i.id for i in CoverageVerifier(checklist).items]
        assert ids[:2] == ["GAP-oracle", "GAP-signer"]
        assert ids[-1] == "GAP-docs"


class TestFollowupId:
    def test_unsafe_characters_replaced(self):
        assert followup_id(ChecklistItem(id="SWC 107/reentrancy")) == "COV-SWC-107-reentrancy"


class TestLoadChecklist:
    def test_list_and_wrapped_forms(self, tmp_path):
        flat = tmp_path / "flat.json"
        flat.write_text(json.dumps([{"id": "A"}, {"id": "B", "severity": "high"}]), encoding="utf-8")
        wrapped = tmp_path / "wrapped.json"
        wrapped.write_text(json.dumps({"items": [{"id": "A"}]}), encoding="utf-8")

        assert [i.id for i in load_checklist(flat)] == ["A", "B"]
        assert load_checklist(wrapped)[0].severity == "medium"

    def test_duplicate_ids_rejected(self, tmp_path):
        path = tmp_path / "dup.json"
        path.write_text(json.dumps([{"id": "A"}, {"id": "A"}]), encoding="utf-8")
        with pytest.raises(ValueError, match="Duplicate checklist ids"):
            load_checklist(path)


class TestRender:
    def test_gaps_table(self, checklist, entries):
        verifier = CoverageVerifier(checklist)
        report = verifier.evaluate(entries)
        text = render_coverage(report, followups=["COV-GAP-signer"])

        assert "Covered **9** of **12** checklist items (75%)." in text
        assert "| GAP-signer | critical | Signer checks | follow-up `COV-GAP-signer` |" in text
        assert "| GAP-oracle | critical |  | follow-up pending |" in text
        assert "| GAP-docs | low |  | reported only |" in text

    def test_empty_checklist(self):
        text = render_coverage(CoverageVerifier([]).evaluate([]))
        assert "(100%)" in text
        assert "## Gaps" not in text
