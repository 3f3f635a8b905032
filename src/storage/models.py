# src/storage/models.py — v1
"""Storage domain models: ContainerInfo, RunManifest."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ContainerInfo(BaseModel):
    """Identifiers of a run's artifact containers."""

    container_id: str
    url: str
    source_containers: dict[str, str] = Field(default_factory=dict)


class SourceManifest(BaseModel):
    collected: int
    target: int
    expansions: int = 0
    duplicates_skipped: int = 0
    exhausted: bool = False


class RunManifest(BaseModel):
    """End-of-run record written to manifests/{run_id}_manifest.json."""

    run_id: str
    instruction: str
    status: str
    created_at: datetime
    completed_at: datetime
    sink_location: str | None = None
    container_url: str | None = None
    total_collected: int = 0
    warning: str | None = None
    message: str | None = None
    plan: dict[str, Any] = Field(default_factory=dict)
    sources: dict[str, SourceManifest] = Field(default_factory=dict)
