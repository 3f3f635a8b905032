# src/sinks/base_sink.py — v1
"""Abstract output sink interface.

A sink holds one tabular section per source for a run. Rows are appended
in batches and never rewritten.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel


class SinkInfo(BaseModel):
    """Identifiers of a created sink."""

    sink_id: str
    location: str


class BaseOutputSink(ABC):
    """Unified interface for tabular output backends."""

    @abstractmethod
    async def create_sink(self, run_id: str) -> SinkInfo:
        """Create (or reopen) the sink for a run, with headers per source."""

    @abstractmethod
    async def append_rows(
        self, sink_id: str, source: str, rows: list[dict[str, Any]]
    ) -> int:
        """Append normalized records in one batch. Returns rows written."""

    @abstractmethod
    async def finalize(self, sink_id: str) -> None:
        """Mark the sink complete."""
