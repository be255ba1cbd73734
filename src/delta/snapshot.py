# src/delta/snapshot.py — v1
"""Corpus snapshots: per-file content hash, line count and per-line hashes.

Per-line hashes let the delta engine count changed lines between two runs
without keeping the prior corpus around.
"""

from __future__ import annotations

import difflib
import hashlib
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

LINE_HASH_LENGTH = 12


class FileSignature(BaseModel):
    """Fingerprint of one corpus file."""

    path: str
    sha256: str
    size_bytes: int = 0
    line_hashes: list[str] = Field(default_factory=list)

    @property
    def line_count(self) -> int:
        return len(self.line_hashes)


class CorpusSnapshot(BaseModel):
    """All fingerprints of a corpus at one point in time."""

    root: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    digest: str = ""
    files: dict[str, FileSignature] = Field(default_factory=dict)

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def total_bytes(self) -> int:
        return sum(f.size_bytes for f in self.files.values())


def hash_line(line: bytes) -> str:
    return hashlib.sha1(line.rstrip(b"\r\n")).hexdigest()[:LINE_HASH_LENGTH]


def fingerprint(path: str, data: bytes) -> FileSignature:
    return FileSignature(
        path=path,
        sha256=hashlib.sha256(data).hexdigest(),
        size_bytes=len(data),
        line_hashes=[hash_line(line) for line in data.splitlines()],
    )


def compute_digest(files: Iterable[FileSignature]) -> str:
    """Order-independent digest over (path, content hash) pairs."""
    h = hashlib.sha256()
    for sig in sorted(files, key=lambda f: f.path):
        h.update(sig.path.encode("utf-8"))
        h.update(b"\0")
        h.update(sig.sha256.encode("ascii"))
        h.update(b"\n")
    return h.hexdigest()


def discover_files(
    root: Path,
    extensions: list[str],
    exclude_dirs: list[str],
    max_file_bytes: int,
) -> list[Path]:
    """Corpus files under root, sorted, skipping excluded directories."""
    if not root.is_dir():
        raise ValueError(f"Corpus root is not a directory: {root}")

    excluded = set(exclude_dirs)
    allowed = {e.lower() for e in extensions}
    found: list[Path] = []
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        rel_parts = path.relative_to(root).parts[:-1]
        if any(part in excluded for part in rel_parts):
            continue
        if allowed and path.suffix.lower() not in allowed:
            continue
        if path.stat().st_size > max_file_bytes:
            logger.debug("Skipping oversized corpus file %s", path)
            continue
        found.append(path)
    return found


def take_snapshot(
    root: Path,
    extensions: list[str],
    exclude_dirs: list[str],
    max_file_bytes: int,
) -> CorpusSnapshot:
    """Fingerprint every corpus file under root."""
    root = Path(root)
    files: dict[str, FileSignature] = {}
    for path in discover_files(root, extensions, exclude_dirs, max_file_bytes):
        rel = path.relative_to(root).as_posix()
        files[rel] = fingerprint(rel, path.read_bytes())

    snapshot = CorpusSnapshot(
        root=str(root.resolve()),
        digest=compute_digest(files.values()),
        files=files,
    )
    logger.info(
        "Snapshot of %s: %d files, %d bytes, digest %s",
        root, snapshot.file_count, snapshot.total_bytes, snapshot.digest[:12],
    )
    return snapshot


def changed_lines(old: FileSignature, new: FileSignature) -> int:
    """Number of changed lines between two versions of a file.

    A replaced block counts as the larger of its two sides, so a rewrite of
    10 lines into 12 counts 12 and pure insertions or deletions count once.
    """
    if old.sha256 == new.sha256:
        return 0
    matcher = difflib.SequenceMatcher(None, old.line_hashes, new.line_hashes, autojunk=False)
    return sum(
        max(i2 - i1, j2 - j1)
        for tag, i1, i2, j1, j2 in matcher.get_opcodes()
        if tag != "equal"
    )
