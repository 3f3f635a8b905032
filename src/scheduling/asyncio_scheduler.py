# src/scheduling/asyncio_scheduler.py — v1
"""Event-loop timer backend for in-process hosts.

Each armed continuation is a ``loop.call_later`` handle. When it fires the
registered entry point runs as a task; tasks are tracked so callers can
wait for in-flight continuations to drain.
"""

from __future__ import annotations

import asyncio
import logging

from pulsecollect.scheduling.base_scheduler import BaseContinuationScheduler

logger = logging.getLogger(__name__)


class AsyncioContinuationScheduler(BaseContinuationScheduler):
    """Arms continuations on the running asyncio loop."""

    def __init__(self, delay_s: float = 2.0) -> None:
        super().__init__()
        self._delay_s = delay_s
        self._handles: dict[str, tuple[asyncio.TimerHandle, str]] = {}
        self._tasks: set[asyncio.Task] = set()

    def schedule_continuation(self, run_id: str, token: str) -> None:
        if self._entry is None:
            raise RuntimeError("No continuation entry point registered")
        self.cancel(run_id)
        loop = asyncio.get_running_loop()
        handle = loop.call_later(self._delay_s, self._fire, run_id, token)
        self._handles[run_id] = (handle, token)
        logger.debug("Continuation armed for %s in %.1fs", run_id, self._delay_s)

    def cancel(self, run_id: str) -> bool:
        armed = self._handles.pop(run_id, None)
        if armed is None:
            return False
        armed[0].cancel()
        logger.debug("Continuation cancelled for %s", run_id)
        return True

    def armed_runs(self) -> dict[str, str]:
        return {run_id: token for run_id, (_, token) in self._handles.items()}

    async def wait_idle(self) -> None:
        """Wait until no timer is armed and no continuation task is running."""
        while self._handles or self._tasks:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(min(self._delay_s, 0.5) or 0.01)

    def _fire(self, run_id: str, token: str) -> None:
        armed = self._handles.get(run_id)
        if armed is not None and armed[1] == token:
            del self._handles[run_id]
        if self._entry is None:
            logger.error("Continuation for %s fired with no entry point", run_id)
            return
        task = asyncio.ensure_future(self._entry(run_id, token))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Continuation task failed: %s", error, exc_info=error)
