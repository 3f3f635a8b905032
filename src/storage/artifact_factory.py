# src/storage/artifact_factory.py — v1
"""Factory: instantiate the artifact writer and store from configuration."""

from __future__ import annotations

from pulsecollect.config.settings import Settings
from pulsecollect.storage.artifact_store import WriterArtifactStore
from pulsecollect.storage.base_artifact_store import BaseArtifactStore
from pulsecollect.storage.base_output_writer import BaseOutputWriter
from pulsecollect.storage.local_writer import LocalWriter


def create_writer(settings: Settings) -> BaseOutputWriter:
    """Create the artifact writer based on ARTIFACT_BACKEND.

    Raises:
        ValueError: If the backend is not supported.
    """
    if settings.artifact_backend == "local":
        return LocalWriter(base_path=settings.artifact_root)

    if settings.artifact_backend == "s3":
        from pulsecollect.storage.s3_writer import S3Writer
        if not settings.artifact_s3_bucket:
            raise ValueError(
                "ARTIFACT_S3_BUCKET must be set when ARTIFACT_BACKEND=s3"
            )
        return S3Writer(
            bucket=settings.artifact_s3_bucket,
            prefix=settings.artifact_s3_prefix,
            region=settings.artifact_s3_region or None,
        )

    raise ValueError(f"Unsupported artifact backend: {settings.artifact_backend!r}")


def create_artifact_store(settings: Settings) -> BaseArtifactStore:
    return WriterArtifactStore(create_writer(settings))
