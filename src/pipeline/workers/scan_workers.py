# src/pipeline/workers/scan_workers.py — v1
"""Built-in scan workers: corpus snapshot and delta against the prior run."""

from __future__ import annotations

import logging
from pathlib import Path

from stronghold.core.models import DeltaClass, FindingDisposition, WorkResult
from stronghold.core.tags import CapabilityTag as Tag
from stronghold.delta.engine import DeltaEngine, DeltaReport
from stronghold.delta.snapshot import CorpusSnapshot, take_snapshot
from stronghold.pipeline.workers.base_worker import BaseWorker, WorkRequest
from stronghold.storage import layout, reader
from stronghold.storage.store_factory import create_history_store

logger = logging.getLogger(__name__)


class SnapshotWorker(BaseWorker):
    """Fingerprint the corpus into scan/snapshot.json and render its index."""

    @property
    def name(self) -> str:
        return "snapshot"

    async def run(self, request: WorkRequest) -> WorkResult:
        settings = self._ctx.settings
        snapshot = take_snapshot(
            request.project_dir,
            settings.corpus_extensions_list,
            settings.corpus_exclude_dirs_list,
            settings.corpus_max_file_bytes,
        )
        await self._ctx.store.write(layout.snapshot_path(), snapshot.model_dump_json(indent=2))
        return WorkResult(
            content=render_corpus_index(snapshot),
            provides=[Tag.CORPUS_INDEX.value],
            records=[
                {"path": f.path, "size_bytes": f.size_bytes, "lines": f.line_count}
                for f in snapshot.files.values()
            ],
        )


class DeltaWorker(BaseWorker):
    """Classify changes since the prior run and reclassify its findings."""

    @property
    def name(self) -> str:
        return "delta"

    async def run(self, request: WorkRequest) -> WorkResult:
        ctx = self._ctx
        prior = ctx.descriptor.prior_run
        current = CorpusSnapshot.model_validate_json(await ctx.store.read_text(layout.snapshot_path()))

        previous = CorpusSnapshot()
        findings = []
        if prior is not None:
            history = create_history_store(ctx.project_dir, ctx.settings, prior.archive)
            if await history.exists(layout.snapshot_path()):
                previous = CorpusSnapshot.model_validate_json(
                    await history.read_text(layout.snapshot_path())
                )
            else:
                logger.warning("Prior run %s has no snapshot; every file counts as added", prior.run_id)
            findings = await reader.load_findings(history, run_id=prior.run_id)

        config = ctx.config
        engine = DeltaEngine(config.rewrite_threshold, config.major_change_lines)
        report = engine.compare(previous, current, findings)
        await ctx.store.write(layout.delta_path(), report.model_dump_json(indent=2))

        if report.massive_rewrite:
            await ctx.events.record("massive_rewrite", phase="scan", ratio=report.ratio)
        for item in report.dispositions(FindingDisposition.RESOLVED_BY_REMOVAL):
            await ctx.events.record(
                "resolved_by_removal", phase="scan", unit_id=item.finding.id, target=item.finding.target,
            )
        for item in report.dispositions(FindingDisposition.INVALIDATED):
            await ctx.events.record(
                "dismissal_invalidated", phase="scan", unit_id=item.finding.id, target=item.finding.target,
            )

        return WorkResult(
            content=render_delta(report, prior.run_id if prior else None),
            provides=[Tag.DELTA_REPORT.value],
            targets=report.paths(DeltaClass.ADDED) + report.paths(DeltaClass.MODIFIED),
        )


def render_corpus_index(snapshot: CorpusSnapshot) -> str:
    by_dir: dict[str, list[str]] = {}
    for path in sorted(snapshot.files):
        by_dir.setdefault(str(Path(path).parent), []).append(path)
    lines = [
        "# Corpus Index",
        "",
        f"- Files: {snapshot.file_count}",
        f"- Bytes: {snapshot.total_bytes}",
        f"- Digest: `{snapshot.digest}`",
        "",
    ]
    for directory, paths in sorted(by_dir.items()):
        lines.append(f"## {directory}")
        lines.append("")
        for path in paths:
            sig = snapshot.files[path]
            lines.append(f"- `{path}` ({sig.line_count} lines)")
        lines.append("")
    return "\n".join(lines)


def render_delta(report: DeltaReport, prior_run_id: str | None) -> str:
    counts = report.counts
    lines = [
        "# Delta Report",
        "",
        f"Compared against run `{prior_run_id}`." if prior_run_id else "No prior run.",
        "",
        "| Added | Modified | Deleted | Unchanged | Change ratio |",
        "|---|---|---|---|---|",
        f"| {counts['added']} | {counts['modified']} | {counts['deleted']} | {counts['unchanged']} "
        f"| {report.ratio:.1%} |",
        "",
    ]
    if report.massive_rewrite:
        lines += [
            f"**Massive rewrite** (threshold {report.rewrite_threshold:.0%}): prior findings are "
            "carried forward as context only.",
            "",
        ]
    modified = [r for r in report.records if r.classification == DeltaClass.MODIFIED]
    if modified:
        lines += ["## Modified", ""]
        lines += [
            f"- `{r.path}`: {r.magnitude.value if r.magnitude else ''} ({r.changed_lines} lines)"
            for r in modified
        ]
        lines.append("")
    if report.findings:
        lines += ["## Prior findings", "", "| Finding | Target | Disposition |", "|---|---|---|"]
        lines += [
            f"| {f.finding.id} | {f.finding.target or '-'} | {f.disposition.value} |"
            for f in report.findings
        ]
        lines.append("")
    return "\n".join(lines)
