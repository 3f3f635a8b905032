# src/collectors/mock_collector.py — v1
"""Deterministic offline collector used when USE_MOCKS=true.

Produces provider-shaped items for any source and reuses that source's real
normalizer, so mock runs exercise the same row schemas end to end.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Callable

from pulsecollect.collectors.artifacts import raw_json_artifact, watch_artifact
from pulsecollect.collectors.base_collector import BaseStageCollector
from pulsecollect.collectors.instagram_collector import normalize_instagram_media
from pulsecollect.collectors.tiktok_collector import normalize_tiktok_video
from pulsecollect.collectors.x_collector import normalize_tweet
from pulsecollect.core.models import Artifact, CollectBatch, Plan, utcnow
from pulsecollect.sinks.columns import COLUMNS_BY_SOURCE

logger = logging.getLogger(__name__)


def _topic(plan: Plan, i: int) -> tuple[str, str]:
    keywords = plan.keywords or ["trend", "viral", "popular"]
    hashtags = plan.hashtags or ["fyp", "trending"]
    return keywords[i % len(keywords)], hashtags[i % len(hashtags)]


def _mock_tweet(plan: Plan, i: int) -> dict[str, Any]:
    keyword, hashtag = _topic(plan, i)
    created = utcnow() - timedelta(hours=i)
    return {
        "id": f"mock_x_{i}",
        "url": f"https://x.com/mock_user_{i % 10}/status/mock_x_{i}",
        "text": f"Mock post about {keyword} #{hashtag}",
        "createdAt": created.strftime("%a %b %d %H:%M:%S +0000 %Y"),
        "lang": "en",
        "likeCount": i * 7,
        "retweetCount": i,
        "replyCount": i % 5,
        "quoteCount": 0,
        "viewCount": i * 100,
        "bookmarkCount": 0,
        "isReply": False,
        "conversationId": f"mock_x_{i}",
        "author": {"userName": f"mock_user_{i % 10}", "followers": 1000 + i},
        "entities": {"hashtags": [{"text": hashtag}]},
    }


def _mock_instagram(plan: Plan, i: int) -> dict[str, Any]:
    keyword, hashtag = _topic(plan, i)
    shortcode = f"MOCK{i:06d}"
    return {
        "id": f"mock_ig_{i}",
        "username": f"mock_iguser_{i % 10}",
        "timestamp": (utcnow() - timedelta(hours=i)).strftime("%Y-%m-%dT%H:%M:%S+0000"),
        "caption": f"Mock Instagram post about {keyword} #{hashtag}",
        "permalink": f"https://www.instagram.com/p/{shortcode}/",
        "like_count": i * 11,
        "comments_count": i % 13,
        "media_type": "VIDEO" if i % 3 else "IMAGE",
        "shortcode": shortcode,
        "media_product_type": "REELS" if i % 2 else "FEED",
        "is_comment_enabled": True,
        "is_shared_to_feed": True,
    }


def _mock_tiktok(plan: Plan, i: int) -> dict[str, Any]:
    keyword, hashtag = _topic(plan, i)
    return {
        "id": f"mock_tt_{i}",
        "username": f"mock_creator_{i % 10}",
        "create_time": int((utcnow() - timedelta(hours=i)).timestamp()),
        "video_description": f"Mock TikTok video about {keyword} #{hashtag}",
        "region_code": plan.region_code or "US",
        "music_id": f"music_{i}",
        "like_count": i * 13,
        "comment_count": i % 17,
        "share_count": i % 7,
        "view_count": i * 1000,
        "favorites_count": i * 3,
        "video_duration": 10 + i % 50,
        "hashtag_names": [hashtag],
        "hashtag_info_list": [{"hashtag_name": hashtag}],
    }


_FACTORIES: dict[str, Callable[[Plan, int], dict[str, Any]]] = {
    "x": _mock_tweet,
    "instagram": _mock_instagram,
    "tiktok": _mock_tiktok,
}

_NORMALIZERS: dict[str, Callable[[dict[str, Any], str, str], dict[str, Any]]] = {
    "x": normalize_tweet,
    "instagram": normalize_instagram_media,
    "tiktok": normalize_tiktok_video,
}


class MockCollector(BaseStageCollector):
    """Serve ``available`` deterministic items in pages of ``page_size``."""

    def __init__(self, source: str, available: int = 100, page_size: int = 10) -> None:
        if source not in _FACTORIES:
            raise ValueError(f"No mock data for source: {source!r}")
        self.name = source
        self.columns = COLUMNS_BY_SOURCE[source]
        self._available = available
        self._page_size = page_size

    def usable(self) -> bool:
        return True

    async def collect(
        self, plan: Plan, cursor: str | None, max_items: int
    ) -> CollectBatch:
        offset = int(cursor) if cursor else 0
        end = min(offset + min(self._page_size, max_items), self._available)
        items = [_FACTORIES[self.name](plan, i) for i in range(offset, end)]
        has_more = end < self._available
        return CollectBatch(
            items=items, next_cursor=str(end) if has_more else None, has_more=has_more
        )

    def expand(self, plan: Plan, collected: int, target: int) -> Plan:
        expanded = plan.model_copy(deep=True)
        strategy = expanded.strategy_for(self.name)
        strategy["mockExpansions"] = strategy.get("mockExpansions", 0) + 1
        return expanded

    def item_id(self, item: dict[str, Any]) -> str:
        return str(item["id"])

    def normalize(
        self, item: dict[str, Any], artifact_url: str, memo: str
    ) -> dict[str, Any]:
        notes = "; ".join(n for n in ("mock data", memo) if n)
        return _NORMALIZERS[self.name](item, artifact_url, notes)

    def artifacts(self, item: dict[str, Any]) -> list[Artifact]:
        url = item.get("url") or item.get("permalink") or f"https://example.com/{item['id']}"
        return [raw_json_artifact(item), watch_artifact(url, f"{self.name} (mock)")]
