# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides settings bound to temp directories, a scripted stage collector,
in-memory sink and artifact store, a fake clock and an orchestrator
factory. No network access: all I/O is local or mocked.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest

from pulsecollect.checkpoint.json_store import JsonCheckpointStore
from pulsecollect.collectors.base_collector import BaseStageCollector
from pulsecollect.config.settings import Settings, load_settings
from pulsecollect.core.models import Artifact, CollectBatch, Plan
from pulsecollect.llm.models import LLMResponse
from pulsecollect.orchestrator.workflow import WorkflowOrchestrator
from pulsecollect.planning.base_planner import BasePlanner
from pulsecollect.scheduling.recording_scheduler import RecordingScheduler
from pulsecollect.sinks.base_sink import BaseOutputSink, SinkInfo
from pulsecollect.storage.base_artifact_store import BaseArtifactStore
from pulsecollect.storage.models import ContainerInfo, RunManifest


# === TEST DOUBLES ===


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedCollector(BaseStageCollector):
    """Collector serving pre-scripted pages of ids.

    ``passes[n]`` is the list of pages served after ``n`` expansions; the
    last pass repeats if the plan has been expanded further. The cursor is
    the index of the next page.
    """

    def __init__(
        self,
        name: str,
        passes: list[list[list[str]]],
        available: bool = True,
        errors: list[BaseException] | None = None,
        on_collect: Callable[[int], None] | None = None,
        artifacts: bool = True,
    ) -> None:
        self.name = name
        self.columns = ["platform_post_id", "drive_url", "memo"]
        self._passes = passes
        self._available = available
        self._errors = list(errors or [])
        self._on_collect = on_collect
        self._with_artifacts = artifacts
        self.calls: list[tuple[int, str | None]] = []
        self.expansions = 0

    def usable(self) -> bool:
        return self._available

    async def collect(self, plan: Plan, cursor: str | None, max_items: int) -> CollectBatch:
        expansion = plan.query_strategy.get(self.name, {}).get("pass", 0)
        self.calls.append((expansion, cursor))
        if self._on_collect is not None:
            self._on_collect(len(self.calls))
        if self._errors:
            raise self._errors.pop(0)

        pages = self._passes[min(expansion, len(self._passes) - 1)]
        index = int(cursor) if cursor else 0
        if index >= len(pages):
            return CollectBatch()
        items = [{"id": item_id, "text": f"post {item_id}"} for item_id in pages[index]]
        has_more = index + 1 < len(pages)
        return CollectBatch(
            items=items,
            next_cursor=str(index + 1) if has_more else None,
            has_more=has_more,
        )

    def expand(self, plan: Plan, collected: int, target: int) -> Plan:
        self.expansions += 1
        expanded = plan.model_copy(deep=True)
        strategy = expanded.strategy_for(self.name)
        strategy["pass"] = strategy.get("pass", 0) + 1
        return expanded

    def item_id(self, item: dict[str, Any]) -> str:
        return str(item["id"])

    def normalize(self, item: dict[str, Any], artifact_url: str, memo: str) -> dict[str, Any]:
        return {"platform_post_id": item["id"], "drive_url": artifact_url, "memo": memo}

    def artifacts(self, item: dict[str, Any]) -> list[Artifact]:
        if not self._with_artifacts:
            return []
        return [
            Artifact(name="raw.json", payload=str(item)),
            Artifact(name="watch.html", payload="<html></html>", is_primary=True),
        ]


class MemorySink(BaseOutputSink):
    """Sink keeping rows in memory and recording every append call."""

    def __init__(self) -> None:
        self.rows: dict[str, list[dict[str, Any]]] = {}
        self.appends: list[tuple[str, int]] = []
        self.created: list[str] = []
        self.finalized: list[str] = []

    async def create_sink(self, run_id: str) -> SinkInfo:
        self.created.append(run_id)
        return SinkInfo(sink_id=run_id, location=f"memory://{run_id}")

    async def append_rows(self, sink_id: str, source: str, rows: list[dict[str, Any]]) -> int:
        self.rows.setdefault(source, []).extend(rows)
        self.appends.append((source, len(rows)))
        return len(rows)

    async def finalize(self, sink_id: str) -> None:
        self.finalized.append(sink_id)

    def ids(self, source: str) -> list[str]:
        return [r["platform_post_id"] for r in self.rows.get(source, [])]


class MemoryArtifactStore(BaseArtifactStore):
    """Artifact store in a dict; ``fail_names`` makes matching writes fail."""

    def __init__(self, fail_names: set[str] | None = None) -> None:
        self.artifacts: dict[str, str] = {}
        self.manifests: list[RunManifest] = []
        self.containers: list[str] = []
        self.fail_names = fail_names or set()

    async def create_container(
        self,
        run_id: str,
        created_at: datetime,
        parent_id: str | None = None,
        sources: list[str] | None = None,
    ) -> ContainerInfo:
        root = f"{parent_id or 'runs'}/{run_id}"
        self.containers.append(root)
        return ContainerInfo(
            container_id=root,
            url=f"memory://{root}",
            source_containers={s: f"{root}/{s}" for s in sources or []},
        )

    async def write_artifact(self, container_id: str, item_id: str, name: str, payload: str) -> str:
        if name in self.fail_names:
            raise OSError(f"disk full writing {name}")
        key = f"{container_id}/{item_id}/{name}"
        self.artifacts[key] = payload
        return f"memory://{key}"

    async def write_manifest(self, manifest: RunManifest) -> str:
        self.manifests.append(manifest)
        return f"memory://manifests/{manifest.run_id}"


class StaticPlanner(BasePlanner):
    def __init__(self, plan: Plan) -> None:
        self._plan = plan
        self.calls = 0

    async def plan(self, instruction: str) -> Plan:
        self.calls += 1
        return self._plan.model_copy(deep=True)


async def _no_sleep(_: float) -> None:
    return None


# === FIXTURES: Settings and doubles ===


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Mock-mode settings with all state under tmp_path and instant retries."""
    return load_settings(
        _env_file=None,
        use_mocks=True,
        checkpoint_root=tmp_path / "runs",
        sink_root=tmp_path / "output",
        artifact_root=tmp_path / "artifacts",
        batch_size=5,
        max_retries=2,
        retry_base_delay_s=0.0,
        retry_max_delay_s=0.0,
        retry_jitter_s=0.0,
        rate_limit_sleep_s=0.0,
        max_expansions=1,
        max_pages_per_stage=20,
        host_execution_limit_s=360.0,
        safety_margin_s=60.0,
        source_order="instagram,x,tiktok",
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def memory_artifacts() -> MemoryArtifactStore:
    return MemoryArtifactStore()


@pytest.fixture
def scripted_collector() -> type[ScriptedCollector]:
    """The ScriptedCollector class, for tests that build their own pages."""
    return ScriptedCollector


@pytest.fixture
def sample_plan() -> Plan:
    return Plan(
        target_platforms=["instagram", "x", "tiktok"],
        target_counts={"instagram": 5, "x": 5, "tiktok": 5},
        keywords=["coffee", "latte"],
        hashtags=["coffee"],
        content_category="coffee",
        query_strategy={"x": {"queryType": "Latest"}},
    )


@pytest.fixture
def no_sleep():
    return _no_sleep


@pytest.fixture
def mock_llm_client() -> AsyncMock:
    """AsyncMock implementing BaseLLMClient.complete returning a JSON plan."""
    client = AsyncMock()
    client.provider_name = "mock"
    client.complete.return_value = LLMResponse(
        content='{"targetPlatforms": ["x"], "targetCounts": {"x": 5}, "keywords": ["ai"]}',
        input_tokens=100,
        output_tokens=40,
        model="mock-model",
        provider="mock",
        latency_ms=5,
    )
    return client


@pytest.fixture
def make_orchestrator(settings, fake_clock, memory_sink, memory_artifacts, tmp_path, sample_plan):
    """Factory building a WorkflowOrchestrator around the in-memory doubles.

    Returns (orchestrator, scheduler); the store is a real JsonCheckpointStore.
    """

    def _make(
        collectors: dict[str, BaseStageCollector],
        plan: Plan | None = None,
        store: Any = None,
        run_settings: Settings | None = None,
        planner: BasePlanner | None = None,
    ) -> tuple[WorkflowOrchestrator, RecordingScheduler]:
        scheduler = RecordingScheduler()
        orchestrator = WorkflowOrchestrator(
            settings=run_settings or settings,
            store=store or JsonCheckpointStore(tmp_path / "runs"),
            planner=planner or StaticPlanner(plan or sample_plan),
            collectors=collectors,
            sink=memory_sink,
            artifact_store=memory_artifacts,
            scheduler=scheduler,
            clock=fake_clock,
            sleep=_no_sleep,
        )
        return orchestrator, scheduler

    return _make
