# tests/unit/storage/test_artifact_store.py — v1
"""Tests for LocalWriter, WriterArtifactStore and the artifact factory."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from pulsecollect.storage.artifact_factory import create_artifact_store, create_writer
from pulsecollect.storage.artifact_store import WriterArtifactStore
from pulsecollect.storage.base_output_writer import BaseOutputWriter
from pulsecollect.storage.local_writer import LocalWriter
from pulsecollect.storage.models import RunManifest, SourceManifest

CREATED = datetime(2026, 2, 16, tzinfo=timezone.utc)


class TestLocalWriter:
    @pytest.mark.asyncio
    async def test_write_read_exists(self, tmp_path):
        writer = LocalWriter(tmp_path)
        await writer.write("a/b/c.txt", "hello")
        await writer.write("a/b/d.bin", b"\x00\x01")
        assert await writer.read("a/b/c.txt") == b"hello"
        assert await writer.exists("a/b/d.bin")
        assert not await writer.exists("a/missing")
        assert await writer.list_dir("a/b") == ["c.txt", "d.bin"]
        assert await writer.list_dir("nowhere") == []

    @pytest.mark.asyncio
    async def test_overwrite_leaves_no_partial_files(self, tmp_path):
        writer = LocalWriter(tmp_path)
        await writer.write("runs/r1/raw.json", "{}")
        await writer.write("runs/r1/raw.json", '{"v": 2}')
        assert await writer.read("runs/r1/raw.json") == b'{"v": 2}'
        assert [p.name for p in (tmp_path / "runs" / "r1").iterdir()] == ["raw.json"]

    @pytest.mark.asyncio
    async def test_listing_hides_interrupted_writes(self, tmp_path):
        writer = LocalWriter(tmp_path)
        await writer.write("runs/r1/watch.html", "<html></html>")
        (tmp_path / "runs" / "r1" / ".raw.json.abc.partial").write_text("{")
        assert await writer.list_dir("runs/r1") == ["watch.html"]

    def test_url_is_file_uri(self, tmp_path):
        writer = LocalWriter(tmp_path)
        assert writer.url_for("x/y.json").startswith("file://")
        assert writer.url_for("x/y.json").endswith("/x/y.json")

    def test_abstract_base(self):
        with pytest.raises(TypeError):
            BaseOutputWriter()  # type: ignore[abstract]


class TestWriterArtifactStore:
    @pytest.mark.asyncio
    async def test_create_container_with_sources(self, tmp_path):
        store = WriterArtifactStore(LocalWriter(tmp_path))
        info = await store.create_container("r1", CREATED, sources=["instagram", "x"])
        assert info.container_id == "runs/2026/02/r1"
        assert info.source_containers == {
            "instagram": "runs/2026/02/r1/instagram",
            "x": "runs/2026/02/r1/x",
        }
        assert (tmp_path / "runs/2026/02/r1/x").is_dir()

    @pytest.mark.asyncio
    async def test_parent_container(self, tmp_path):
        store = WriterArtifactStore(LocalWriter(tmp_path))
        info = await store.create_container("r1", CREATED, parent_id="shared", sources=["x"])
        assert info.container_id == "shared/r1"
        assert info.source_containers["x"] == "shared/r1/x"

    @pytest.mark.asyncio
    async def test_write_artifact_returns_url(self, tmp_path):
        store = WriterArtifactStore(LocalWriter(tmp_path))
        url = await store.write_artifact("runs/2026/02/r1/x", "123", "raw.json", '{"id": "123"}')
        path = tmp_path / "runs/2026/02/r1/x/123/raw.json"
        assert path.read_text(encoding="utf-8") == '{"id": "123"}'
        assert url == path.resolve().as_uri()

    @pytest.mark.asyncio
    async def test_write_manifest(self, tmp_path):
        store = WriterArtifactStore(LocalWriter(tmp_path))
        manifest = RunManifest(
            run_id="r1",
            instruction="coffee posts",
            status="COMPLETED",
            created_at=CREATED,
            completed_at=CREATED,
            total_collected=3,
            sources={"x": SourceManifest(collected=3, target=5, exhausted=True)},
        )
        await store.write_manifest(manifest)
        data = json.loads((tmp_path / "manifests/r1_manifest.json").read_text(encoding="utf-8"))
        assert data["total_collected"] == 3
        assert data["sources"]["x"]["exhausted"] is True


class TestArtifactFactory:
    def test_local_default(self, settings):
        assert isinstance(create_writer(settings), LocalWriter)
        assert isinstance(create_artifact_store(settings), WriterArtifactStore)

    def test_s3_requires_bucket(self, settings):
        settings.artifact_backend = "s3"
        settings.artifact_s3_bucket = ""
        with pytest.raises(ValueError, match="ARTIFACT_S3_BUCKET"):
            create_writer(settings)
