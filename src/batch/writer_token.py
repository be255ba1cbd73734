# src/batch/writer_token.py — v1
"""Ordered write handoff for split siblings sharing one output path.

Siblings compute concurrently, but sibling i may only write after sibling
i-1 released the token. A sibling that failed still releases, so later
siblings are never blocked forever.
"""

from __future__ import annotations

import asyncio


class WriterToken:
    """Turn-based token for siblings 1..count of a split group."""

    def __init__(self, group: str, count: int) -> None:
        if count < 2:
            raise ValueError("A writer token needs at least two siblings")
        self.group = group
        self.count = count
        self._turns = [asyncio.Event() for _ in range(count)]
        self._turns[0].set()
        self._written: set[int] = set()
        self._released: set[int] = set()

    def _check(self, index: int) -> None:
        if not 1 <= index <= self.count:
            raise ValueError(f"Sibling index {index} out of range 1..{self.count}")

    async def acquire(self, index: int) -> None:
        """Wait until every earlier sibling has released."""
        self._check(index)
        await self._turns[index - 1].wait()

    def release(self, index: int, wrote: bool) -> None:
        """Hand the token to the next sibling."""
        self._check(index)
        if index in self._released:
            return
        self._released.add(index)
        if wrote:
            self._written.add(index)
        if index < self.count:
            self._turns[index].set()

    @property
    def written(self) -> frozenset[int]:
        return frozenset(self._written)

    @classmethod
    def resuming(cls, group: str, count: int, produced: set[int]) -> WriterToken:
        """Token for a retry where some siblings' sections already exist."""
        token = cls(group, count)
        for index in sorted(produced):
            token.release(index, wrote=True)
        return token
