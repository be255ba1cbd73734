# src/main.py — v2
"""CLI entry point — one command per phase, plus status and findings.

Usage:
    stronghold scan [--new-run]
    stronghold analyze | strategize | investigate | report | verify
    stronghold status
    stronghold findings [--severity S] [--target T] [--previous]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from stronghold.config.phases import PHASE_ORDER
from stronghold.config.settings import ConfigurationError, Settings, load_settings
from stronghold.core.models import SEVERITY_RANK, PhaseStatus
from stronghold.core.tags import TagVocabulary, UnknownTagError
from stronghold.logging.logger import setup_logging
from stronghold.pipeline.phase_machine import PrerequisiteMissing
from stronghold.pipeline.registry import RegistryError
from stronghold.version import __version__

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    setup_logging("DEBUG" if args.verbose else "INFO")

    if not hasattr(args, "func"):
        parser.print_help()
        return EXIT_FAILED

    try:
        settings = _load_settings(args)
    except (ConfigurationError, ValidationError, UnknownTagError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_CONFIG

    try:
        return asyncio.run(args.func(args, settings))
    except PrerequisiteMissing as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILED
    except (ConfigurationError, RegistryError, UnknownTagError) as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_CONFIG
    except KeyboardInterrupt:
        logger.info("Interrupted by user; re-run the same command to resume")
        return EXIT_INTERRUPTED
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return EXIT_FAILED


def run() -> None:
    """Console-script entry point."""
    sys.exit(main())


def _load_settings(args: argparse.Namespace) -> Settings:
    env_file = args.project_dir / ".env"
    overrides: dict[str, object] = {"_env_file": env_file if env_file.is_file() else None}
    if getattr(args, "tier", None):
        overrides["tier"] = args.tier
    settings = load_settings(**overrides)
    # Extra tags are validated before any run state exists.
    TagVocabulary(settings.extra_tags_list)
    setup_logging(
        "DEBUG" if args.verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
    return settings


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="stronghold",
        description=f"Stronghold v{__version__}: resumable multi-phase audit orchestrator",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "-C", "--project-dir", type=Path, default=Path("."),
        help="Project (corpus) directory (default: current directory)",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- scan ---
    p_scan = subparsers.add_parser(
        "scan", help="Snapshot the corpus and start (or chain) a run",
    )
    p_scan.add_argument(
        "--new-run", action="store_true",
        help="Archive the current run and start a chained one even if the corpus is unchanged",
    )
    p_scan.add_argument(
        "--tier", choices=["quick", "standard", "deep"], default=None,
        help="Audit tier for a new run (default: from settings)",
    )
    p_scan.set_defaults(func=_cmd_scan)

    # --- analyze .. verify ---
    helps = {
        "analyze": "Build architecture and focus-area context",
        "strategize": "Derive attack strategies and hypotheses",
        "investigate": "Investigate hypotheses in tiered batches",
        "report": "Write the final report",
        "verify": "Re-verify findings whose targets changed since the run",
    }
    for phase in PHASE_ORDER[1:]:
        p_phase = subparsers.add_parser(phase, help=helps[phase])
        p_phase.set_defaults(func=_cmd_phase, phase=phase)

    # --- status ---
    p_status = subparsers.add_parser(
        "status", help="Show the phase dashboard and recommendations (read-only)",
    )
    p_status.set_defaults(func=_cmd_status)

    # --- findings ---
    p_findings = subparsers.add_parser(
        "findings", help="List investigate findings",
    )
    p_findings.add_argument(
        "--severity", choices=list(SEVERITY_RANK), default=None,
        help="Only findings of this severity",
    )
    p_findings.add_argument(
        "--target", default=None,
        help="Only findings whose target contains this text",
    )
    p_findings.add_argument(
        "--previous", action="store_true",
        help="Read the most recently archived run instead of the current one",
    )
    p_findings.set_defaults(func=_cmd_findings)

    return parser


async def _cmd_scan(args: argparse.Namespace, settings: Settings) -> int:
    """Snapshot the corpus; archive and chain when it changed."""
    from stronghold.pipeline.phase_runner import PhaseRunner, open_scan_run

    ctx, fresh = await open_scan_run(args.project_dir, settings, new_run=args.new_run)
    if not fresh:
        logger.info("Corpus unchanged since run %s; scan already complete", ctx.run_id)
    summary = await PhaseRunner(ctx).run("scan")
    print(summary.render())
    return EXIT_OK if summary.status == PhaseStatus.COMPLETE else EXIT_FAILED


async def _cmd_phase(args: argparse.Namespace, settings: Settings) -> int:
    """Run or resume one phase of the current run."""
    from stronghold.pipeline.phase_runner import PhaseRunner, open_run

    ctx = await open_run(args.project_dir, settings, args.phase)
    summary = await PhaseRunner(ctx).run(args.phase)
    print(summary.render())
    return EXIT_OK if summary.status == PhaseStatus.COMPLETE else EXIT_FAILED


async def _cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    """Print the read-only dashboard."""
    from stronghold.pipeline.status import build_status

    view = await build_status(args.project_dir, settings)
    print(view.render())
    return EXIT_OK


async def _cmd_findings(args: argparse.Namespace, settings: Settings) -> int:
    """List findings of the current or previous run."""
    from stronghold.storage import reader
    from stronghold.storage.run_manager import load_descriptor
    from stronghold.storage.store_factory import create_history_store, create_store

    if args.previous:
        entry = reader.latest_history(args.project_dir, settings)
        if entry is None:
            print("No archived runs.")
            return EXIT_FAILED
        store = create_history_store(args.project_dir, settings, entry.name)
    else:
        store = create_store(args.project_dir, settings)

    descriptor = await load_descriptor(store)
    if descriptor is None:
        print("No audit found. Run `stronghold scan` to start one.")
        return EXIT_FAILED

    findings = await reader.load_findings(store, descriptor.run_id)
    if args.severity:
        findings = [f for f in findings if f.severity == args.severity]
    if args.target:
        needle = args.target.lower()
        findings = [f for f in findings if f.target and needle in f.target.lower()]

    print(f"Run {descriptor.run_id} (#{descriptor.sequence}): {len(findings)} finding(s)")
    for f in findings:
        print(
            f"  {f.id:<28} {f.severity or '-':<9} {f.verdict or '-':<13} "
            f"{f.target or '-'}  {f.title}".rstrip()
        )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
