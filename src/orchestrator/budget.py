# src/orchestrator/budget.py — v1
"""Cooperative time budget for one orchestrator invocation.

budget = HOST_EXECUTION_LIMIT_S - SAFETY_MARGIN_S

The budget is only checked between pages; a single collect call is never
interrupted.
"""

from __future__ import annotations

import time
from typing import Callable

# Minimum headroom required before starting an expansion pass.
EXPANSION_HEADROOM_S = 30.0


class TimeBudget:
    """Wall-clock budget measured from construction."""

    def __init__(self, total_s: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._total_s = total_s
        self._clock = clock
        self._start = clock()

    @property
    def total_s(self) -> float:
        return self._total_s

    @property
    def elapsed_s(self) -> float:
        return self._clock() - self._start

    @property
    def remaining_s(self) -> float:
        return max(0.0, self._total_s - self.elapsed_s)

    def exhausted(self) -> bool:
        return self.elapsed_s >= self._total_s

    def has_at_least(self, seconds: float) -> bool:
        return self.remaining_s > seconds
