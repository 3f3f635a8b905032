# src/core/errors.py — v1
"""Domain exceptions shared across orchestrator, stores and collectors."""

from __future__ import annotations


class PulseCollectError(Exception):
    """Base class for all domain errors."""


class RunNotFoundError(PulseCollectError):
    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class RunAlreadyExistsError(PulseCollectError):
    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Run already exists: {run_id}")


class InvalidTransitionError(PulseCollectError):
    """Raised when a status change is not an edge of the run state machine."""

    def __init__(self, run_id: str, current: str, requested: str) -> None:
        self.run_id = run_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Run {run_id}: cannot move from {current} to {requested}"
        )


class NoUsableSourceError(PulseCollectError):
    """No stage collector is configured or authorized."""


class CheckpointConflictError(PulseCollectError):
    """A save was attempted against a stale RunState version."""

    def __init__(self, run_id: str, expected: int, found: int) -> None:
        self.run_id = run_id
        self.expected = expected
        self.found = found
        super().__init__(
            f"Checkpoint conflict for {run_id}: expected version {expected}, found {found}"
        )


class CollectorError(PulseCollectError):
    """Raised by a stage collector for a non-transient source failure."""

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(f"{source}: {message}")


class AuthorizationError(CollectorError):
    """Credential rejected or expired. Never retried by default."""


class PlannerError(PulseCollectError):
    """Planner could not produce a plan (callers fall back to heuristics)."""


class TransientError(PulseCollectError):
    """A failure expected to clear on retry (throttling, upstream hiccup)."""
