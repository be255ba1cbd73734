# src/core/tags.py — v1
"""Closed capability-tag vocabulary for provides/requires routing.

Tags are matched by exact string equality only. Every tag used in a
WorkUnit or an artifact index entry must belong to the vocabulary, so a
misspelled tag fails at plan time instead of silently routing nothing.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterable

_TAG_PATTERN = re.compile(r"^[a-z][a-z0-9]*(?:-[a-z0-9]+)*$")


class UnknownTagError(ValueError):
    """Raised when a tag is not part of the registered vocabulary."""

    def __init__(self, tags: Iterable[str], context: str = "") -> None:
        self.tags = sorted(set(tags))
        where = f" in {context}" if context else ""
        super().__init__(f"Unknown capability tag(s){where}: {', '.join(self.tags)}")


class CapabilityTag(str, Enum):
    """Built-in capability tags."""

    # scan
    CORPUS_INDEX = "corpus-index"
    DELTA_REPORT = "delta-report"
    # analyze (one per focus area, plus the shared architecture view)
    ARCHITECTURE = "architecture"
    ACCESS_CONTROL = "access-control"
    ARITHMETIC = "arithmetic"
    STATE_MACHINE = "state-machine"
    EXTERNAL_CALLS = "external-calls"
    TOKEN_FLOW = "token-flow"
    DATA_VALIDATION = "data-validation"
    ORACLE = "oracle"
    UPGRADE_ADMIN = "upgrade-admin"
    TIMING = "timing-ordering"
    ERROR_HANDLING = "error-handling"
    # strategize
    STRATEGIES = "strategies"
    # investigate
    FINDINGS = "findings"
    COVERAGE = "coverage"
    # report / verify
    REPORT = "report"
    VERIFICATION = "verification"


class TagVocabulary:
    """Registered tag set: built-ins plus validated extras.

    Instances are explicit values carried by the run context; there is no
    module-level registry to mutate.
    """

    def __init__(self, extra: Iterable[str] = ()) -> None:
        self._tags: set[str] = {t.value for t in CapabilityTag}
        bad = [t for t in extra if not _TAG_PATTERN.match(t)]
        if bad:
            raise UnknownTagError(bad, context="extra tag registration (invalid syntax)")
        self._tags.update(extra)

    def __contains__(self, tag: object) -> bool:
        if isinstance(tag, CapabilityTag):
            return True
        return isinstance(tag, str) and tag in self._tags

    def __len__(self) -> int:
        return len(self._tags)

    @property
    def tags(self) -> frozenset[str]:
        return frozenset(self._tags)

    def validate(self, tags: Iterable[str], context: str = "") -> frozenset[str]:
        """Return tags as a frozenset of plain strings, or raise UnknownTagError."""
        normalized = frozenset(_as_str(t) for t in tags)
        unknown = [t for t in normalized if t not in self._tags]
        if unknown:
            raise UnknownTagError(unknown, context=context)
        return normalized

    def partition(self, tags: Iterable[str]) -> tuple[frozenset[str], frozenset[str]]:
        """Split tags into (known, unknown) without raising."""
        normalized = {_as_str(t) for t in tags}
        known = frozenset(t for t in normalized if t in self._tags)
        return known, frozenset(normalized - known)


def _as_str(tag: str | CapabilityTag) -> str:
    return tag.value if isinstance(tag, CapabilityTag) else str(tag)
