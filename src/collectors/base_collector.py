# src/collectors/base_collector.py — v1
"""Abstract stage collector interface.

A collector wraps one data source. It is stateless with respect to run
progress: cursors, counts and dedup ledgers live in the checkpoint and are
passed in by the stage runner.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable

from pulsecollect.core.models import Artifact, CollectBatch, Plan
from pulsecollect.transport.retry import default_should_retry


class BaseStageCollector(ABC):
    """Unified interface for per-source collectors."""

    name: str = ""
    columns: list[str] = []

    @abstractmethod
    def usable(self) -> bool:
        """True if credentials are present and the source can be called."""

    @abstractmethod
    async def collect(
        self, plan: Plan, cursor: str | None, max_items: int
    ) -> CollectBatch:
        """Fetch one page. ``max_items`` is a page-size hint."""

    @abstractmethod
    def expand(self, plan: Plan, collected: int, target: int) -> Plan:
        """Return a broadened copy of the plan for another pass."""

    @abstractmethod
    def item_id(self, item: dict[str, Any]) -> str:
        """Stable platform id used for dedup."""

    @abstractmethod
    def normalize(
        self, item: dict[str, Any], artifact_url: str, memo: str
    ) -> dict[str, Any]:
        """Map a raw item onto this source's column schema."""

    def artifacts(self, item: dict[str, Any]) -> list[Artifact]:
        """Item-level artifacts to archive. Default: none."""
        return []

    def retry_predicate(self) -> Callable[[BaseException, int], Any]:
        """Retry classification for this source's calls."""
        return default_should_retry

    async def aclose(self) -> None:
        """Release HTTP resources."""
