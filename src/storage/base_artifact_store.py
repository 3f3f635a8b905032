# src/storage/base_artifact_store.py — v1
"""Abstract artifact store interface (containers + per-item artifacts)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from pulsecollect.storage.models import ContainerInfo, RunManifest


class BaseArtifactStore(ABC):
    """Unified interface for item artifact archives."""

    @abstractmethod
    async def create_container(
        self,
        run_id: str,
        created_at: datetime,
        parent_id: str | None = None,
        sources: list[str] | None = None,
    ) -> ContainerInfo:
        """Create the run container and one sub-container per source."""

    @abstractmethod
    async def write_artifact(
        self, container_id: str, item_id: str, name: str, payload: str
    ) -> str:
        """Store one artifact for an item. Returns its reference URL."""

    @abstractmethod
    async def write_manifest(self, manifest: RunManifest) -> str:
        """Store the end-of-run manifest. Returns its reference URL."""
