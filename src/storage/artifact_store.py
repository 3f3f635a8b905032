# src/storage/artifact_store.py — v1
"""Artifact store backed by any BaseOutputWriter (local or S3)."""

from __future__ import annotations

import logging
from datetime import datetime

from pulsecollect.storage import layout
from pulsecollect.storage.base_artifact_store import BaseArtifactStore
from pulsecollect.storage.base_output_writer import BaseOutputWriter
from pulsecollect.storage.models import ContainerInfo, RunManifest

logger = logging.getLogger(__name__)


class WriterArtifactStore(BaseArtifactStore):
    """Lay out run containers and item artifacts on a writer backend."""

    def __init__(self, writer: BaseOutputWriter) -> None:
        self._writer = writer

    async def create_container(
        self,
        run_id: str,
        created_at: datetime,
        parent_id: str | None = None,
        sources: list[str] | None = None,
    ) -> ContainerInfo:
        run_prefix = layout.run_container(run_id, created_at, parent_id)
        await self._writer.ensure_dir(run_prefix)

        source_containers: dict[str, str] = {}
        for source in sources or []:
            container = layout.source_container(run_prefix, source)
            await self._writer.ensure_dir(container)
            source_containers[source] = container

        logger.info("Artifact container created: %s", run_prefix)
        return ContainerInfo(
            container_id=run_prefix,
            url=self._writer.url_for(run_prefix),
            source_containers=source_containers,
        )

    async def write_artifact(
        self, container_id: str, item_id: str, name: str, payload: str
    ) -> str:
        path = layout.item_artifact(container_id, item_id, name)
        await self._writer.write(path, payload)
        return self._writer.url_for(path)

    async def write_manifest(self, manifest: RunManifest) -> str:
        path = layout.manifest_path(manifest.run_id)
        await self._writer.write(path, manifest.model_dump_json(indent=2))
        return self._writer.url_for(path)
