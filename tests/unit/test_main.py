# tests/unit/test_main.py — v1
"""Tests for main.py — CLI entry point."""

from __future__ import annotations

from pathlib import Path

import pytest

from stronghold.main import EXIT_CONFIG, EXIT_FAILED, EXIT_OK, _build_parser, main


# ---------------------------------------------------------------------------
# Parser tests
# ---------------------------------------------------------------------------

class TestBuildParser:
    def test_version_flag(self):
        with pytest.raises(SystemExit) as exc_info:
            _build_parser().parse_args(["--version"])
        assert exc_info.value.code == 0

    def test_scan_subcommand(self):
        args = _build_parser().parse_args(["-C", "/repo", "scan", "--new-run", "--tier", "deep"])
        assert args.command == "scan"
        assert args.project_dir == Path("/repo")
        assert args.new_run is True
        assert args.tier == "deep"

    @pytest.mark.parametrize("phase", ["analyze", "strategize", "investigate", "report", "verify"])
    def test_phase_subcommands(self, phase):
        args = _build_parser().parse_args([phase])
        assert args.phase == phase
        assert args.project_dir == Path(".")

    def test_findings_filters(self):
        args = _build_parser().parse_args(["findings", "--severity", "high", "--target", "vault", "--previous"])
        assert (args.severity, args.target, args.previous) == ("high", "vault", True)

    def test_unknown_severity_rejected(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["findings", "--severity", "urgent"])


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

class TestMain:
    def test_no_command_prints_help(self, capsys):
        assert main([]) == EXIT_FAILED
        assert "usage" in capsys.readouterr().out

    def test_status_without_run(self, corpus, capsys):
        assert main(["-C", str(corpus), "status"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "No audit in progress." in out
        assert not (corpus / ".audit").exists()

    def test_phase_before_scan_is_prerequisite_error(self, corpus, capsys):
        assert main(["-C", str(corpus), "analyze"]) == EXIT_FAILED
        assert "stronghold scan" in capsys.readouterr().err

    def test_scan_then_analyze_without_worker(self, corpus, capsys):
        assert main(["-C", str(corpus), "scan"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "Phase 'scan'" in out
        assert "Next: stronghold analyze" in out

        assert main(["-C", str(corpus), "analyze"]) == EXIT_CONFIG
        assert (corpus / ".audit" / "STATE.json").is_file()

    def test_skip_ahead_is_refused(self, corpus, capsys):
        main(["-C", str(corpus), "scan"])
        assert main(["-C", str(corpus), "report"]) == EXIT_FAILED
        assert "analyze" in capsys.readouterr().err

    def test_invalid_env_file(self, corpus):
        (corpus / ".env").write_text("STRONGHOLD_REWRITE_THRESHOLD=2\n", encoding="utf-8")
        assert main(["-C", str(corpus), "status"]) == EXIT_CONFIG

    def test_invalid_extra_tag(self, corpus):
        (corpus / ".env").write_text("STRONGHOLD_EXTRA_TAGS=Not A Tag\n", encoding="utf-8")
        assert main(["-C", str(corpus), "status"]) == EXIT_CONFIG

    def test_findings_without_run(self, corpus, capsys):
        assert main(["-C", str(corpus), "findings"]) == EXIT_FAILED
        assert "No audit found" in capsys.readouterr().out

    def test_findings_previous_without_history(self, corpus, capsys):
        assert main(["-C", str(corpus), "findings", "--previous"]) == EXIT_FAILED
        assert "No archived runs." in capsys.readouterr().out
