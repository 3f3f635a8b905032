# src/scheduling/recording_scheduler.py — v1
"""Timer-less scheduler that only records armed continuations.

Used by the one-shot CLI (an external timer such as cron re-invokes
``pulsecollect continue``) and by tests, which fire continuations by hand.
"""

from __future__ import annotations

from typing import Any

from pulsecollect.scheduling.base_scheduler import BaseContinuationScheduler


class RecordingScheduler(BaseContinuationScheduler):
    """In-memory continuation registry without timers."""

    def __init__(self) -> None:
        super().__init__()
        self._armed: dict[str, str] = {}
        self.history: list[tuple[str, str]] = []
        self.cancelled: list[str] = []

    def schedule_continuation(self, run_id: str, token: str) -> None:
        self._armed[run_id] = token
        self.history.append((run_id, token))

    def cancel(self, run_id: str) -> bool:
        if self._armed.pop(run_id, None) is None:
            return False
        self.cancelled.append(run_id)
        return True

    def armed_runs(self) -> dict[str, str]:
        return dict(self._armed)

    async def fire(self, run_id: str) -> Any:
        """Invoke the entry point as the armed timer would have."""
        token = self._armed.pop(run_id)
        if self._entry is None:
            raise RuntimeError("No continuation entry point registered")
        return await self._entry(run_id, token)
