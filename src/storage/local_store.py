# src/storage/local_store.py — v2
"""Local filesystem artifact store (default backend)."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from stronghold.storage.base_artifact_store import ArtifactExistsError, BaseArtifactStore


class LocalArtifactStore(BaseArtifactStore):
    """Store artifacts under a root directory on the local filesystem."""

    def __init__(self, base_path: str | Path) -> None:
        self._base = Path(base_path)

    @property
    def base_path(self) -> Path:
        return self._base

    def _resolve(self, path: str) -> Path:
        resolved = (self._base / path).resolve()
        base = self._base.resolve()
        if resolved != base and base not in resolved.parents:
            raise ValueError(f"Path escapes store root: {path!r}")
        return resolved

    def _write_temp(self, target: Path, content: bytes | str) -> Path:
        target.parent.mkdir(parents=True, exist_ok=True)
        data = content.encode("utf-8") if isinstance(content, str) else content
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=target.parent,
            prefix=f".{target.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp.write(data)
        return Path(tmp.name)

    async def write(self, path: str, content: bytes | str) -> None:
        target = self._resolve(path)
        tmp = self._write_temp(target, content)
        os.replace(tmp, target)

    async def create(self, path: str, content: bytes | str) -> None:
        target = self._resolve(path)
        if target.exists():
            raise ArtifactExistsError(path)
        tmp = self._write_temp(target, content)
        try:
            # link() fails if target appeared meanwhile, so creation is exclusive.
            os.link(tmp, target)
        except FileExistsError as exc:
            raise ArtifactExistsError(path) from exc
        finally:
            tmp.unlink(missing_ok=True)

    async def append(self, path: str, content: bytes | str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        data = content.encode("utf-8") if isinstance(content, str) else content
        with target.open("ab") as f:
            f.write(data)

    async def read(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()

    async def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    async def size(self, path: str) -> int:
        target = self._resolve(path)
        return target.stat().st_size if target.is_file() else 0

    async def list_files(self, prefix: str = "") -> list[str]:
        root = self._resolve(prefix) if prefix else self._base
        if not root.is_dir():
            return []
        base = self._base.resolve()
        return sorted(
            p.resolve().relative_to(base).as_posix()
            for p in root.rglob("*")
            if p.is_file() and not p.name.endswith(".tmp")
        )
