# src/logging/logger.py — v1
"""Logger setup for the ``pulsecollect`` logger tree.

Two formatters: JSON lines for hosted runs (one object per record, run
context under ``context``) and a compact text form for the terminal.
Both read run_id/source/step from the record when ContextFilter stamped
it, otherwise from the live context variables.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from pulsecollect.logging.context import get_context
from pulsecollect.logging.handlers import ContextFilter, create_rotating_handler

ROOT_LOGGER = "pulsecollect"

# Client libraries that log every request at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "botocore", "urllib3")

_CONTEXT_FIELDS = ("run_id", "source", "step")


def record_context(record: logging.LogRecord) -> dict[str, str]:
    """Run context for a record, skipping unset fields."""
    if hasattr(record, "run_id"):
        values = {f: getattr(record, f, "-") for f in _CONTEXT_FIELDS}
        return {k: v for k, v in values.items() if v and v != "-"}
    return get_context().as_dict()


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = record_context(record)
        if context:
            entry["context"] = context
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """``2024-05-01 12:00:00 [INFO    ] name [run] <source> (step) - message``"""

    def format(self, record: logging.LogRecord) -> str:
        context = record_context(record)
        stamp = datetime.fromtimestamp(record.created, timezone.utc)
        parts = [stamp.strftime("%Y-%m-%d %H:%M:%S"), f"[{record.levelname:8s}]", record.name]
        if "run_id" in context:
            parts.append(f"[{context['run_id']}]")
        if "source" in context:
            parts.append(f"<{context['source']}>")
        if "step" in context:
            parts.append(f"({context['step']})")
        parts.append(f"- {record.getMessage()}")
        text = " ".join(parts)
        if record.exc_info and record.exc_info[1] is not None:
            text += "\n" + self.formatException(record.exc_info)
        return text


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | None = None,
    rotation: str = "10MB",
    retention: int = 30,
) -> None:
    """Configure the ``pulsecollect`` logger; safe to call more than once.

    Console output goes to stderr since stdout carries command results.
    Client library loggers are held at WARNING unless ``level`` is DEBUG.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(numeric)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter = JsonFormatter() if log_format == "json" else TextFormatter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(ContextFilter())
    root.addHandler(console)

    if log_file:
        file_handler = create_rotating_handler(log_file, rotation=rotation, retention=retention)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    library_level = logging.DEBUG if numeric <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
