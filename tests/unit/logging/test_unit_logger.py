# tests/unit/logging/test_unit_logger.py — v1
"""Tests for logging/logger.py — formatters and setup."""

from __future__ import annotations

import json
import logging

from stronghold.logging.context import clear_context, set_batch_context, set_run_context, set_unit_context
from stronghold.logging.logger import JsonFormatter, TextFormatter, setup_logging


def make_record(msg: str = "Hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="stronghold.test", level=logging.INFO, pathname="", lineno=0,
        msg=msg, args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_format_basic(self):
        parsed = json.loads(JsonFormatter().format(make_record()))
        assert parsed["level"] == "INFO"
        assert parsed["message"] == "Hello"
        assert "timestamp" in parsed
        assert "context" not in parsed

    def test_format_with_context(self):
        set_run_context("run1", "investigate")
        set_unit_context("H-3")
        parsed = json.loads(JsonFormatter().format(make_record()))
        assert parsed["context"] == {"run_id": "run1", "phase": "investigate", "unit": "H-3"}

    def test_extra_data(self):
        parsed = json.loads(JsonFormatter().format(make_record(data={"batch": 2})))
        assert parsed["data"] == {"batch": 2}


class TestTextFormatter:
    def teardown_method(self):
        clear_context()

    def test_format_basic(self):
        output = TextFormatter().format(make_record("Hello text"))
        assert "Hello text" in output
        assert "INFO" in output

    def test_context_markers(self):
        set_run_context("run1", "analyze")
        set_batch_context("batch-2")
        output = TextFormatter().format(make_record())
        assert "<analyze>" in output
        assert "[batch-2]" in output


class TestSetupLogging:
    def test_setup_json(self):
        setup_logging(level="DEBUG", log_format="json")
        root = logging.getLogger("stronghold")
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, JsonFormatter)

    def test_setup_text_replaces_handlers(self):
        setup_logging(level="INFO", log_format="text")
        setup_logging(level="INFO", log_format="text")
        root = logging.getLogger("stronghold")
        assert root.level == logging.INFO
        assert len(root.handlers) == 1

    def test_file_handler_is_json(self, tmp_path):
        setup_logging(log_file=str(tmp_path / "logs" / "run.log"))
        root = logging.getLogger("stronghold")
        assert len(root.handlers) == 2
        assert isinstance(root.handlers[1].formatter, JsonFormatter)
        root.handlers.clear()
