# src/logging/handlers.py — v1
"""Log handlers and filters used by setup_logging.

- rotating file output sized by LOG_ROTATION ("10MB", "512KB", "2048")
- ContextFilter copies run_id/source/step onto each record, so any
  formatter (including third-party ones) can use %(run_id)s and friends
"""

from __future__ import annotations

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pulsecollect.logging.context import get_context

_SIZE_RE = re.compile(r"^(\d+)\s*(B|KB|MB|GB)?$", re.IGNORECASE)
_UNITS = {"B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}


def parse_size(value: str) -> int:
    """Bytes for a LOG_ROTATION value; a bare number means bytes."""
    match = _SIZE_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid size format: {value!r}. Use e.g. '10MB'.")
    size = int(match.group(1)) * _UNITS[(match.group(2) or "B").upper()]
    if size <= 0:
        raise ValueError(f"Log rotation size must be positive: {value!r}")
    return size


class ContextFilter(logging.Filter):
    """Stamp the current run context on every record. Never drops records."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_context()
        record.run_id = ctx.run_id or "-"
        record.source = ctx.source or "-"
        record.step = ctx.step or "-"
        return True


def create_rotating_handler(
    log_file: str | Path,
    rotation: str = "10MB",
    retention: int = 30,
) -> RotatingFileHandler:
    """File handler rolling over at ``rotation`` and keeping ``retention`` backups."""
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=str(path),
        maxBytes=parse_size(rotation),
        backupCount=retention,
        encoding="utf-8",
    )
    handler.addFilter(ContextFilter())
    return handler
