# tests/integration/test_end_to_end_mock_run.py — v1
"""End-to-end mock-mode runs on the real file backends.

JSON checkpoints, CSV sink and local artifact files under tmp_path; the
continuation timer is fired by hand, one host invocation per fire.
"""

from __future__ import annotations

import json

import pytest

from pulsecollect.api.facade import build_orchestrator
from pulsecollect.checkpoint.json_store import JsonCheckpointStore
from pulsecollect.collectors.registry import build_collectors
from pulsecollect.orchestrator.workflow import WorkflowOrchestrator
from pulsecollect.planning.fallback import FallbackPlanner
from pulsecollect.scheduling.recording_scheduler import RecordingScheduler
from pulsecollect.sinks.csv_sink import CsvOutputSink
from pulsecollect.storage.artifact_factory import create_artifact_store

pytestmark = pytest.mark.integration

INSTRUCTION = "Collect 25 posts about #coffee from instagram, twitter and tiktok"


class TickingClock:
    """Clock that moves forward a fixed step on every read."""

    def __init__(self, step: float) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


def _assert_sink_matches_progress(sink: CsvOutputSink, run_id: str, summary) -> None:
    for source, progress in summary.progress.items():
        rows = sink.read_rows(run_id, source)
        ids = [r["platform_post_id"] for r in rows]
        assert len(ids) == progress.collected
        assert len(set(ids)) == len(ids)


class TestMockRun:
    @pytest.mark.asyncio
    async def test_single_invocation(self, settings):
        scheduler = RecordingScheduler()
        orchestrator = build_orchestrator(settings, scheduler=scheduler)

        started = await orchestrator.start_run(INSTRUCTION)
        assert started.plan.target_counts == {"instagram": 25, "x": 25, "tiktok": 25}

        summary = await scheduler.fire(started.run_id)
        await orchestrator.aclose()

        assert summary.status == "COMPLETED"
        assert summary.last_message == "Completed: Instagram 25/25, X 25/25, TikTok 25/25"

        sink = CsvOutputSink(settings.sink_root)
        _assert_sink_matches_progress(sink, started.run_id, summary)
        index = json.loads((settings.sink_root / started.run_id / "index.json").read_text())
        assert index["row_counts"] == {"instagram": 25, "x": 25, "tiktok": 25}

        first = sink.read_rows(started.run_id, "x")[0]
        assert first["drive_url"].startswith("file://")
        assert "mock data" in first["memo"]

        manifests = list((settings.artifact_root / "manifests").glob("*_manifest.json"))
        assert [m.name for m in manifests] == [f"{started.run_id}_manifest.json"]
        assert json.loads(manifests[0].read_text())["total_collected"] == 75

    @pytest.mark.asyncio
    async def test_many_invocations(self, settings):
        scheduler = RecordingScheduler()
        sink = CsvOutputSink(settings.sink_root)
        store = JsonCheckpointStore(settings.checkpoint_root)
        orchestrator = WorkflowOrchestrator(
            settings=settings,
            store=store,
            planner=FallbackPlanner(settings.max_posts_per_platform_default),
            collectors=build_collectors(settings),
            sink=sink,
            artifact_store=create_artifact_store(settings),
            scheduler=scheduler,
            clock=TickingClock(step=100.0),
        )
        run_id = (await orchestrator.start_run(INSTRUCTION)).run_id

        invocations = 0
        collected: list[int] = []
        summary = None
        while run_id in scheduler.armed_runs():
            summary = await scheduler.fire(run_id)
            invocations += 1
            collected.append(sum(p.collected for p in summary.progress.values()))
            assert invocations < 50

        assert invocations > 1
        assert collected == sorted(collected)
        assert summary.status == "COMPLETED"
        assert collected[-1] == 75
        _assert_sink_matches_progress(sink, run_id, summary)

        state = await store.load(run_id)
        assert state.continuation_token is None
        assert await store.find_pending() == []

    @pytest.mark.asyncio
    async def test_fresh_process_resumes_from_store(self, settings):
        scheduler = RecordingScheduler()
        orchestrator = build_orchestrator(settings, scheduler=scheduler)
        run_id = (await orchestrator.start_run(INSTRUCTION)).run_id
        await orchestrator.aclose()

        # A new process knows nothing but the checkpoint store.
        resumed = build_orchestrator(settings, scheduler=RecordingScheduler())
        summary = await resumed.continue_run()
        await resumed.aclose()

        assert summary.run_id == run_id
        assert summary.status == "COMPLETED"
