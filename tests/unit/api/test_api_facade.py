# tests/unit/api/test_api_facade.py — v1
"""Tests for api/facade.py — wiring from settings."""

from __future__ import annotations

import pytest

from pulsecollect.api.facade import (
    build_orchestrator,
    build_planner,
    config_status,
    health_check,
)
from pulsecollect.checkpoint.json_store import JsonCheckpointStore
from pulsecollect.collectors.mock_collector import MockCollector
from pulsecollect.orchestrator.workflow import WorkflowOrchestrator
from pulsecollect.planning.fallback import FallbackPlanner
from pulsecollect.planning.llm_planner import LLMPlanner
from pulsecollect.scheduling.recording_scheduler import RecordingScheduler


class TestBuildPlanner:
    def test_mock_mode_uses_fallback(self, settings):
        assert isinstance(build_planner(settings), FallbackPlanner)

    def test_real_mode_uses_llm(self, settings):
        real = settings.model_copy(update={"use_mocks": False, "openai_api_key": "sk-test"})
        planner = build_planner(real)
        assert isinstance(planner, LLMPlanner)


class TestBuildOrchestrator:
    def test_mock_mode_wiring(self, settings):
        orchestrator = build_orchestrator(settings)
        assert isinstance(orchestrator, WorkflowOrchestrator)
        assert isinstance(orchestrator.store, JsonCheckpointStore)
        assert isinstance(orchestrator.scheduler, RecordingScheduler)
        availability = orchestrator.availability()
        assert availability.usable == {"instagram": True, "x": True, "tiktok": True}
        assert availability.mock_mode

    def test_injected_collectors(self, settings):
        orchestrator = build_orchestrator(settings, collectors={"x": MockCollector("x")})
        assert list(orchestrator.availability().usable) == ["x"]


class TestConfigStatus:
    def test_reports_hints_for_unconfigured(self, settings):
        configured = settings.model_copy(update={"x_api_key": "key", "source_order": "x,tiktok"})
        status = config_status(configured)

        assert status["mock_mode"] is True
        assert status["sources"]["x"] == {"configured": True, "enabled": True}
        assert status["sources"]["instagram"]["enabled"] is False
        assert status["sources"]["instagram"]["hint"] == "set META_ACCESS_TOKEN and IG_USER_ID"
        assert status["sources"]["tiktok"]["hint"].startswith("set TIKTOK_CLIENT_KEY")


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_mock_mode_healthy(self, settings):
        report = await health_check(settings)
        assert report["healthy"] is True
        assert report["checkpoint"] == {"ok": True, "error": None}
        assert report["usable_sources"] == ["instagram", "x", "tiktok"]
