# src/collectors/registry.py — v1
"""Collector construction and source availability snapshots."""

from __future__ import annotations

import logging

from pulsecollect.collectors.base_collector import BaseStageCollector
from pulsecollect.config.settings import Settings
from pulsecollect.core.models import SourceAvailability

logger = logging.getLogger(__name__)


def build_collectors(settings: Settings) -> dict[str, BaseStageCollector]:
    """Instantiate one collector per source in SOURCE_ORDER.

    Mock mode replaces every source with a MockCollector.
    """
    collectors: dict[str, BaseStageCollector] = {}
    for source in settings.source_order_list:
        collectors[source] = _build_one(source, settings)
    return collectors


def _build_one(source: str, settings: Settings) -> BaseStageCollector:
    if settings.use_mocks:
        from pulsecollect.collectors.mock_collector import MockCollector
        return MockCollector(source)

    if source == "x":
        from pulsecollect.collectors.x_collector import XCollector
        return XCollector(
            api_key=settings.x_api_key,
            base_url=settings.x_api_base_url,
            timeout=settings.http_timeout_s,
            rate_limit_sleep_s=settings.rate_limit_sleep_s,
        )

    if source == "instagram":
        from pulsecollect.collectors.instagram_collector import InstagramCollector
        return InstagramCollector(
            access_token=settings.meta_access_token,
            ig_user_id=settings.ig_user_id,
            api_version=settings.meta_graph_api_version,
            timeout=settings.http_timeout_s,
            rate_limit_sleep_s=settings.rate_limit_sleep_s,
        )

    if source == "tiktok":
        from pulsecollect.collectors.tiktok_collector import TikTokCollector
        return TikTokCollector(
            client_key=settings.tiktok_client_key,
            client_secret=settings.tiktok_client_secret,
            base_url=settings.tiktok_api_base_url,
            timeout=settings.http_timeout_s,
        )

    raise ValueError(f"Unsupported source: {source!r}")


def snapshot_availability(
    collectors: dict[str, BaseStageCollector],
    configured: dict[str, bool] | None = None,
    mock_mode: bool = False,
) -> SourceAvailability:
    """Evaluate usable() once per collector."""
    usable: dict[str, bool] = {}
    for name, collector in collectors.items():
        try:
            usable[name] = collector.usable()
        except Exception as e:
            logger.warning("Availability check failed for %s: %s", name, e)
            usable[name] = False
    return SourceAvailability(
        usable=usable,
        configured=dict(configured or {}),
        mock_mode=mock_mode,
    )
