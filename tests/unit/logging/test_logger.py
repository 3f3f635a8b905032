# tests/unit/logging/test_logger.py — v1
"""Tests for logging/logger.py — formatters and setup."""

from __future__ import annotations

import json
import logging

from pulsecollect.logging.context import clear_context, set_run_context, set_source_context
from pulsecollect.logging.handlers import ContextFilter
from pulsecollect.logging.logger import (
    ROOT_LOGGER,
    JsonFormatter,
    TextFormatter,
    record_context,
    setup_logging,
)


def _record(msg: str = "Hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test", level=logging.INFO, pathname="", lineno=0,
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
        parsed = json.loads(JsonFormatter().format(_record()))
        assert parsed["level"] == "INFO"
        assert parsed["message"] == "Hello"
        assert "timestamp" in parsed
        assert "context" not in parsed

    def test_format_with_context(self):
        set_run_context("run1", step="continue")
        set_source_context("x")
        parsed = json.loads(JsonFormatter().format(_record("page")))
        assert parsed["context"] == {"run_id": "run1", "source": "x", "step": "continue"}

    def test_format_with_data(self):
        parsed = json.loads(JsonFormatter().format(_record(data={"collected": 5})))
        assert parsed["data"] == {"collected": 5}


class TestTextFormatter:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_format_basic(self):
        output = TextFormatter().format(_record("Hello text"))
        assert "Hello text" in output
        assert "INFO" in output

    def test_format_with_context(self):
        set_run_context("run1", step="start")
        set_source_context("tiktok")
        output = TextFormatter().format(_record())
        assert "[run1]" in output
        assert "<tiktok>" in output
        assert "(start)" in output


class TestSetupLogging:
    def test_setup_json(self):
        setup_logging(level="DEBUG", log_format="json")
        root = logging.getLogger(ROOT_LOGGER)
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)

    def test_setup_text_replaces_handlers(self):
        setup_logging(level="INFO", log_format="json")
        setup_logging(level="INFO", log_format="text")
        root = logging.getLogger(ROOT_LOGGER)
        assert root.level == logging.INFO
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, TextFormatter)

    def test_setup_with_file(self, tmp_path):
        log_file = tmp_path / "logs" / "run.log"
        setup_logging(level="INFO", log_format="json", log_file=str(log_file))
        root = logging.getLogger(ROOT_LOGGER)
        assert len(root.handlers) == 2
        for handler in root.handlers:
            handler.close()
        root.handlers.clear()

    def test_client_libraries_quieted_unless_debug(self):
        setup_logging(level="INFO", log_format="text")
        assert logging.getLogger("httpx").level == logging.WARNING
        setup_logging(level="DEBUG", log_format="text")
        assert logging.getLogger("httpx").level == logging.DEBUG


class TestRecordContext:
    def teardown_method(self):
        clear_context()

    def test_stamped_record_wins_over_live_context(self):
        set_run_context("live", step="start")
        record = _record(run_id="stamped", source="-", step="continue")
        assert record_context(record) == {"run_id": "stamped", "step": "continue"}

    def test_filter_then_format(self):
        set_run_context("r2", step="retry")
        record = _record()
        ContextFilter().filter(record)
        clear_context()
        assert "[r2]" in TextFormatter().format(record)
        assert json.loads(JsonFormatter().format(record))["context"] == {
            "run_id": "r2", "step": "retry",
        }
