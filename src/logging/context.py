# src/logging/context.py — v1
"""Contextual logging support: attach run_id, source and step to log records."""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

# Context variables for structured logging, set per orchestrator invocation.
_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "run_id", default=None
)
_source: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "source", default=None
)
_step: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "step", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    run_id: str | None = None
    source: str | None = None
    step: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        run_id=_run_id.get(),
        source=_source.get(),
        step=_step.get(),
    )


def set_run_context(run_id: str, step: str | None = None) -> None:
    """Set run-level context (called once per invocation)."""
    _run_id.set(run_id)
    _step.set(step)


def set_source_context(source: str | None) -> None:
    """Set the source currently being collected."""
    _source.set(source)


@contextmanager
def run_context(run_id: str, step: str | None = None) -> Iterator[None]:
    """Scope run-level context to a block, restoring the previous values."""
    run_token = _run_id.set(run_id)
    step_token = _step.set(step)
    try:
        yield
    finally:
        _step.reset(step_token)
        _run_id.reset(run_token)


def clear_context() -> None:
    """Reset all context variables."""
    _run_id.set(None)
    _source.set(None)
    _step.set(None)
