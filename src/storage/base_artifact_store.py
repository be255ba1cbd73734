# src/storage/base_artifact_store.py — v2
"""Abstract artifact store interface.

Paths are relative to the store root. Artifacts are write-once through
create(); append() exists only for the sanctioned split/merge case and for
append-only logs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class ArtifactExistsError(FileExistsError):
    """Raised when create() targets a path that already holds an artifact."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Artifact already exists: {path}")


class BaseArtifactStore(ABC):
    """Unified interface for artifact storage backends."""

    @abstractmethod
    async def write(self, path: str, content: bytes | str) -> None:
        """Atomically replace the content at path (descriptor, index files)."""

    @abstractmethod
    async def create(self, path: str, content: bytes | str) -> None:
        """Write-once creation. Raises ArtifactExistsError if path exists."""

    @abstractmethod
    async def append(self, path: str, content: bytes | str) -> None:
        """Append to path, creating it if missing."""

    @abstractmethod
    async def read(self, path: str) -> bytes:
        """Read content from the given path."""

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check if path exists."""

    @abstractmethod
    async def size(self, path: str) -> int:
        """Size in bytes, 0 if the path does not exist."""

    @abstractmethod
    async def list_files(self, prefix: str = "") -> list[str]:
        """List all file paths under prefix, recursively, sorted."""

    async def read_text(self, path: str) -> str:
        return (await self.read(path)).decode("utf-8")

    async def contains(self, path: str, marker: str) -> bool:
        """True if path exists and its content includes marker."""
        if not await self.exists(path):
            return False
        return marker in await self.read_text(path)
