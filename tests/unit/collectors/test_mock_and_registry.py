# tests/unit/collectors/test_mock_and_registry.py — v1
"""Tests for collectors/mock_collector.py and collectors/registry.py."""

from __future__ import annotations

import pytest

from pulsecollect.collectors.instagram_collector import InstagramCollector
from pulsecollect.collectors.mock_collector import MockCollector
from pulsecollect.collectors.registry import build_collectors, snapshot_availability
from pulsecollect.collectors.tiktok_collector import TikTokCollector
from pulsecollect.collectors.x_collector import XCollector
from pulsecollect.sinks.columns import COLUMNS_BY_SOURCE


class TestMockCollector:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("source", ["instagram", "x", "tiktok"])
    async def test_pages_and_normalizes(self, source, sample_plan):
        collector = MockCollector(source, available=12, page_size=5)
        first = await collector.collect(sample_plan, None, 50)
        assert len(first.items) == 5
        assert first.next_cursor == "5"
        last = await collector.collect(sample_plan, "10", 50)
        assert len(last.items) == 2
        assert not last.has_more

        row = collector.normalize(first.items[0], "url", "")
        assert set(row) == set(COLUMNS_BY_SOURCE[source])
        assert row["memo"] == "mock data"

    @pytest.mark.asyncio
    async def test_page_size_hint_respected(self, sample_plan):
        batch = await MockCollector("x", page_size=10).collect(sample_plan, None, 3)
        assert len(batch.items) == 3

    def test_unknown_source(self):
        with pytest.raises(ValueError):
            MockCollector("myspace")

    def test_expand_counts_passes(self, sample_plan):
        collector = MockCollector("x")
        expanded = collector.expand(collector.expand(sample_plan, 0, 5), 0, 5)
        assert expanded.query_strategy["x"]["mockExpansions"] == 2


class TestRegistry:
    def test_mock_mode_builds_mocks_in_order(self, settings):
        collectors = build_collectors(settings)
        assert list(collectors) == ["instagram", "x", "tiktok"]
        assert all(isinstance(c, MockCollector) for c in collectors.values())

    def test_real_collectors(self, settings):
        settings.use_mocks = False
        settings.x_api_key = "k"
        collectors = build_collectors(settings)
        assert isinstance(collectors["x"], XCollector)
        assert isinstance(collectors["instagram"], InstagramCollector)
        assert isinstance(collectors["tiktok"], TikTokCollector)

        availability = snapshot_availability(collectors, settings.source_configuration())
        assert availability.usable == {"instagram": False, "x": True, "tiktok": False}
        assert availability.configured["x"] is True

    def test_failing_usable_counts_as_unusable(self, scripted_collector):
        def _raise() -> bool:
            raise RuntimeError("boom")

        broken = scripted_collector("x", [[[]]])
        broken.usable = _raise
        availability = snapshot_availability({"x": broken})
        assert availability.usable == {"x": False}
        assert not availability.any_usable
