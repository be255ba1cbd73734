# src/storage/layout.py — v2
"""Audit directory structure definition.

All paths are POSIX-style and relative to the audit root (the artifact
store's base), so they are stable across machines and safe to persist in
the run descriptor. One namespace (sub-directory) per phase.
"""

from __future__ import annotations

from pathlib import PurePosixPath

# Audit-root files
DESCRIPTOR_FILE = "STATE.json"
EVENTS_FILE = "events.jsonl"

# Per-phase manifest of provides tags
INDEX_FILE = "_index.json"
RECORDS_SUFFIX = ".records.json"

# Sub-directories
FINDINGS_DIR = "findings"


def descriptor_path() -> str:
    return DESCRIPTOR_FILE


def events_path() -> str:
    return EVENTS_FILE


def phase_dir(phase: str) -> str:
    return phase


def index_path(phase: str) -> str:
    return f"{phase_dir(phase)}/{INDEX_FILE}"


def records_path(artifact_path: str, section: int | None = None) -> str:
    """Sidecar holding a worker's structured records for an artifact (or one section of it)."""
    p = PurePosixPath(artifact_path)
    stem = p.stem if section is None else f"{p.stem}.{section}"
    return str(p.with_name(stem + RECORDS_SUFFIX))


def is_engine_file(path: str) -> bool:
    """Index, records sidecars and descriptor files are not unit artifacts."""
    name = PurePosixPath(path).name
    return (
        name in (INDEX_FILE, DESCRIPTOR_FILE, EVENTS_FILE)
        or name.endswith(RECORDS_SUFFIX)
    )


# --- scan ---

def snapshot_path() -> str:
    return "scan/snapshot.json"


def corpus_index_path() -> str:
    return "scan/CORPUS_INDEX.md"


def delta_path() -> str:
    return "scan/delta.json"


def delta_summary_path() -> str:
    return "scan/DELTA.md"


# --- analyze / strategize ---

def context_path(area: str) -> str:
    return f"analyze/{area}.md"


def strategies_path() -> str:
    return "strategize/STRATEGIES.md"


# --- investigate ---

def finding_path(unit_id: str) -> str:
    return f"investigate/{FINDINGS_DIR}/{unit_id}.md"


def synthesized_path() -> str:
    return "investigate/synthesized.json"


def followups_path() -> str:
    return "investigate/followups.json"


def coverage_path() -> str:
    return "investigate/COVERAGE.md"


# --- report / verify ---

def report_path() -> str:
    return "report/FINAL_REPORT.md"


def verification_unit_path(unit_id: str) -> str:
    return f"verify/{unit_id}.md"


def verification_report_path() -> str:
    return "verify/VERIFICATION.md"


# --- history ---

def history_entry_name(sequence: int, run_id: str) -> str:
    """Directory name of an archived run under the history directory."""
    return f"{sequence:03d}_{run_id}"


def verify_plan_path() -> str:
    return "verify/plan.json"
