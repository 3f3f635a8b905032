# src/scheduling/base_scheduler.py — v1
"""Abstract continuation scheduler.

Arms one-shot delayed callbacks that re-enter the orchestrator. At most one
callback is armed per run: scheduling again replaces the previous one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

ContinuationEntry = Callable[[str, str], Awaitable[Any]]


class BaseContinuationScheduler(ABC):
    """Unified interface for continuation timer backends."""

    def __init__(self) -> None:
        self._entry: ContinuationEntry | None = None

    def register(self, entry: ContinuationEntry) -> None:
        """Set the callable invoked as ``entry(run_id, token)`` when a timer fires."""
        self._entry = entry

    @abstractmethod
    def schedule_continuation(self, run_id: str, token: str) -> None:
        """Arm a callback for ``run_id``, cancelling any existing one."""

    @abstractmethod
    def cancel(self, run_id: str) -> bool:
        """Disarm the callback for ``run_id``. Returns True if one was armed."""

    @abstractmethod
    def armed_runs(self) -> dict[str, str]:
        """Map of run_id to the token of its armed callback."""

    def cleanup(self) -> int:
        """Disarm every callback. Returns how many were cancelled."""
        cancelled = 0
        for run_id in list(self.armed_runs()):
            if self.cancel(run_id):
                cancelled += 1
        return cancelled
