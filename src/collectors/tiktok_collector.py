# src/collectors/tiktok_collector.py — v1
"""TikTok collector over the Research API.

POST {base}/research/video/query/?fields=... with a query-condition body.
Paging uses the (cursor, search_id) pair, serialized into one cursor string.
The client-credentials token is cached and refreshed once when rejected.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pulsecollect.collectors.artifacts import raw_json_artifact, watch_artifact
from pulsecollect.collectors.base_collector import BaseStageCollector
from pulsecollect.core.errors import AuthorizationError
from pulsecollect.core.models import Artifact, CollectBatch, Plan, utcnow
from pulsecollect.sinks.columns import TIKTOK_COLUMNS
from pulsecollect.transport.http_client import JsonHttpClient
from pulsecollect.transport.retry import token_refresh_should_retry

logger = logging.getLogger(__name__)

RESEARCH_FIELDS = ",".join([
    "id",
    "create_time",
    "username",
    "region_code",
    "video_description",
    "music_id",
    "like_count",
    "comment_count",
    "share_count",
    "view_count",
    "effect_ids",
    "hashtag_names",
    "playlist_id",
    "voice_to_text",
    "is_stem_verified",
    "video_duration",
    "hashtag_info_list",
    "sticker_info_list",
    "effect_info_list",
    "video_mention_list",
    "video_label",
    "favorites_count",
])

MAX_COUNT = 100
DEFAULT_WINDOW = timedelta(days=7)
EXPANDED_WINDOW = timedelta(days=30)
TOKEN_REFRESH_MARGIN_S = 300


def format_tiktok_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y%m%d")


def build_query_conditions(plan: Plan, now: datetime | None = None) -> dict[str, Any]:
    """Translate a plan into Research API query conditions."""
    conditions: list[dict[str, Any]] = []
    if plan.keywords:
        conditions.append(
            {"operation": "IN", "field_name": "keyword", "field_values": plan.keywords}
        )
    if plan.hashtags:
        conditions.append({
            "operation": "IN",
            "field_name": "hashtag_name",
            "field_values": [h.lstrip("#") for h in plan.hashtags],
        })
    if plan.region_code:
        conditions.append(
            {"operation": "EQ", "field_name": "region_code", "field_values": [plan.region_code]}
        )
    if not conditions and plan.content_category:
        conditions.append({
            "operation": "IN",
            "field_name": "keyword",
            "field_values": [plan.content_category],
        })

    end = plan.time_window.end_date or now or utcnow()
    start = plan.time_window.start_date or (end - DEFAULT_WINDOW)
    conditions.append(
        {"operation": "GTE", "field_name": "create_date", "field_values": [format_tiktok_date(start)]}
    )
    conditions.append(
        {"operation": "LTE", "field_name": "create_date", "field_values": [format_tiktok_date(end)]}
    )
    return {"and": conditions}


def normalize_tiktok_video(video: dict[str, Any], artifact_url: str, memo: str) -> dict[str, Any]:
    create_time = video.get("create_time")
    posted_at = (
        datetime.fromtimestamp(int(create_time), tz=timezone.utc).isoformat()
        if create_time else ""
    )
    return {
        "platform_post_id": str(video.get("id") or video.get("video_id") or ""),
        "create_username": video.get("username") or (video.get("author") or {}).get("username", ""),
        "posted_at": posted_at,
        "caption_or_description": video.get("video_description") or video.get("desc", ""),
        "region_code": video.get("region_code", ""),
        "music_id": str(video.get("music_id") or ""),
        "hashtag_names": video.get("hashtag_names") or [],
        "effect_ids": video.get("effect_ids") or [],
        "favorites_count": video.get("favorites_count", video.get("favourite_count")),
        "video_duration": video.get("video_duration") or video.get("duration"),
        "is_stem_verified": video.get("is_stem_verified"),
        "voice_to_text": video.get("voice_to_text", ""),
        "view": video.get("view_count"),
        "like": video.get("like_count"),
        "comments": video.get("comment_count"),
        "share_count": video.get("share_count"),
        "playlist_id": video.get("playlist_id", ""),
        "hashtag_info_list": video.get("hashtag_info_list") or [],
        "sticker_info_list": video.get("sticker_info_list") or [],
        "effect_info_list": video.get("effect_info_list") or [],
        "video_mention_list": video.get("video_mention_list") or [],
        "video_label": video.get("video_label", ""),
        "video_tag": video.get("video_tag", ""),
        "drive_url": artifact_url,
        "memo": memo,
    }


class TikTokCollector(BaseStageCollector):
    """Collect TikTok videos via the Research API."""

    name = "tiktok"
    columns = TIKTOK_COLUMNS

    def __init__(
        self,
        client_key: str,
        client_secret: str,
        base_url: str = "https://open.tiktokapis.com/v2",
        http: JsonHttpClient | None = None,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client_key = client_key
        self._client_secret = client_secret
        self._http = http or JsonHttpClient(base_url=base_url, timeout=timeout)
        self._clock = clock
        self._token: str | None = None
        self._token_expires_at = 0.0

    def usable(self) -> bool:
        return bool(self._client_key and self._client_secret)

    async def collect(
        self, plan: Plan, cursor: str | None, max_items: int
    ) -> CollectBatch:
        token = await self._access_token()
        body: dict[str, Any] = {
            "query": build_query_conditions(plan),
            "max_count": max(1, min(max_items, MAX_COUNT)),
        }
        if plan.query_strategy.get("tiktok", {}).get("isRandom"):
            body["is_random"] = True
        if cursor:
            state = json.loads(cursor)
            body["cursor"] = state.get("cursor")
            if state.get("search_id"):
                body["search_id"] = state["search_id"]

        response = await self._http.post_json(
            "research/video/query/",
            body,
            params={"fields": RESEARCH_FIELDS},
            headers={"Authorization": f"Bearer {token}"},
        )
        error = response.get("error") or {}
        if error.get("code") not in (None, "", "ok"):
            code = str(error.get("code"))
            if "token" in code:
                self._token = None
                raise AuthorizationError("tiktok", f"invalid_token: {error.get('message', code)}")
            raise RuntimeError(f"TikTok Research API error: {error.get('message', code)}")

        data = response.get("data") or {}
        has_more = bool(data.get("has_more"))
        next_cursor = None
        if has_more:
            next_cursor = json.dumps(
                {"cursor": data.get("cursor"), "search_id": data.get("search_id")}
            )
        return CollectBatch(
            items=data.get("videos") or [], next_cursor=next_cursor, has_more=has_more
        )

    def expand(self, plan: Plan, collected: int, target: int) -> Plan:
        """Widen the window to the last 30 days, drop the region, randomize."""
        expanded = plan.model_copy(deep=True)
        expanded.time_window.start_date = utcnow() - EXPANDED_WINDOW
        expanded.time_window.end_date = None
        expanded.region_code = ""
        expanded.strategy_for("tiktok")["isRandom"] = True
        logger.info("TikTok expansion: %d/%d collected, window widened to 30 days", collected, target)
        return expanded

    def item_id(self, item: dict[str, Any]) -> str:
        return str(item.get("id") or item.get("video_id"))

    def normalize(
        self, item: dict[str, Any], artifact_url: str, memo: str
    ) -> dict[str, Any]:
        return normalize_tiktok_video(item, artifact_url, memo)

    def artifacts(self, item: dict[str, Any]) -> list[Artifact]:
        username = item.get("username", "")
        video_id = self.item_id(item)
        watch_url = f"https://www.tiktok.com/@{username}/video/{video_id}"
        return [raw_json_artifact(item), watch_artifact(watch_url, "TikTok", username)]

    def retry_predicate(self) -> Callable[[BaseException, int], Any]:
        return token_refresh_should_retry(self.refresh_token)

    async def refresh_token(self) -> str:
        """Fetch a fresh client-credentials token."""
        body = await self._http.post_form(
            "oauth/token/",
            {
                "client_key": self._client_key,
                "client_secret": self._client_secret,
                "grant_type": "client_credentials",
            },
        )
        token = body.get("access_token")
        if not token:
            raise AuthorizationError(
                "tiktok", f"token request failed: {body.get('error_description') or body}"
            )
        self._token = token
        self._token_expires_at = self._clock() + float(body.get("expires_in", 7200))
        logger.info("TikTok access token refreshed")
        return token

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _access_token(self) -> str:
        if self._token and self._token_expires_at - self._clock() > TOKEN_REFRESH_MARGIN_S:
            return self._token
        return await self.refresh_token()
