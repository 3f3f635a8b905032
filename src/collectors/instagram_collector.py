# src/collectors/instagram_collector.py — v1
"""Instagram collector over the Meta Graph API.

Hashtag strategy: ig_hashtag_search resolves each hashtag to an id, then
``{hashtag_id}/recent_media`` (or ``top_media`` after expansion) is paged.
Without hashtags the account's own media (``{ig_user_id}/media``) is used.

The cursor walks the hashtag list: ``"{index}|{after}"``.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Callable

from pulsecollect.collectors.artifacts import raw_json_artifact, watch_artifact
from pulsecollect.collectors.base_collector import BaseStageCollector
from pulsecollect.core.models import Artifact, CollectBatch, Plan
from pulsecollect.sinks.columns import INSTAGRAM_COLUMNS
from pulsecollect.transport.http_client import JsonHttpClient
from pulsecollect.transport.retry import rate_limited_should_retry

logger = logging.getLogger(__name__)

# Hashtag edges do not return media_url, thumbnail_url or username.
HASHTAG_MEDIA_FIELDS = ",".join([
    "id",
    "caption",
    "media_type",
    "permalink",
    "timestamp",
    "like_count",
    "comments_count",
])

OWN_MEDIA_FIELDS = ",".join([
    "id",
    "username",
    "timestamp",
    "caption",
    "permalink",
    "like_count",
    "comments_count",
    "media_type",
    "media_url",
    "thumbnail_url",
    "shortcode",
    "media_product_type",
    "is_comment_enabled",
    "is_shared_to_feed",
    "children{id,media_type,media_url,thumbnail_url}",
])

GRAPH_PAGE_LIMIT = 50

_SHORTCODE_RE = re.compile(r"/(?:p|reel)/([^/]+)")
_USERNAME_RE = re.compile(r"instagram\.com/([^/]+)/(?:p|reel)/")


def hashtags_to_search(plan: Plan) -> list[str]:
    strategy = plan.query_strategy.get("instagram", {})
    tags = strategy.get("hashtagsToSearch") or plan.hashtags or plan.keywords[:3]
    return [t.lstrip("#") for t in tags if t]


def encode_cursor(index: int, after: str | None = None) -> str:
    return f"{index}|{after or ''}"


def decode_cursor(cursor: str | None) -> tuple[int, str | None]:
    if not cursor:
        return 0, None
    index, _, after = cursor.partition("|")
    return int(index), after or None


def extract_shortcode(permalink: str) -> str:
    match = _SHORTCODE_RE.search(permalink or "")
    return match.group(1) if match else ""


def extract_username(permalink: str) -> str:
    match = _USERNAME_RE.search(permalink or "")
    if match and match.group(1) != "www":
        return match.group(1)
    return ""


def _iso(value: str) -> str:
    if not value:
        return ""
    try:
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z").isoformat()
    except ValueError:
        return value


def normalize_instagram_media(
    media: dict[str, Any], artifact_url: str, memo: str
) -> dict[str, Any]:
    permalink = media.get("permalink", "")
    copyright_info = media.get("copyright_check_information") or {}
    return {
        "platform_post_id": str(media.get("id", "")),
        "create_username": (
            media.get("username")
            or (media.get("owner") or {}).get("username")
            or extract_username(permalink)
        ),
        "posted_at": _iso(media.get("timestamp", "")),
        "caption_or_description": media.get("caption", ""),
        "post_url": permalink,
        "like_count": media.get("like_count"),
        "comments_count": media.get("comments_count"),
        "media_type": media.get("media_type", ""),
        "media_url": media.get("media_url", ""),
        "thumbnail_url": media.get("thumbnail_url", ""),
        "shortcode": media.get("shortcode") or extract_shortcode(permalink),
        "media_product_type": media.get("media_product_type", ""),
        "is_comment_enabled": media.get("is_comment_enabled"),
        "is_shared_to_feed": media.get("is_shared_to_feed"),
        "children": (media.get("children") or {}).get("data", []),
        "edges_comments": (media.get("comments") or {}).get("data", []),
        "edges_insights": (media.get("insights") or {}).get("data", []),
        "edges_collaborators": media.get("collaborators") or [],
        "boost_ads_list": media.get("boost_ads_list") or [],
        "boost_eligibility_info": media.get("boost_eligibility_info", ""),
        "copyright_check_information_status": copyright_info.get("status", ""),
        "drive_url": artifact_url,
        "memo": memo,
    }


class InstagramCollector(BaseStageCollector):
    """Collect Instagram media via hashtag search or the own-account feed."""

    name = "instagram"
    columns = INSTAGRAM_COLUMNS

    def __init__(
        self,
        access_token: str,
        ig_user_id: str,
        api_version: str = "v18.0",
        http: JsonHttpClient | None = None,
        timeout: float = 30.0,
        rate_limit_sleep_s: float = 5.0,
    ) -> None:
        self._access_token = access_token
        self._ig_user_id = ig_user_id
        self._http = http or JsonHttpClient(
            base_url=f"https://graph.facebook.com/{api_version}",
            timeout=timeout,
        )
        self._rate_limit_sleep_s = rate_limit_sleep_s
        self._hashtag_ids: dict[str, str | None] = {}

    def usable(self) -> bool:
        return bool(self._access_token and self._ig_user_id)

    async def collect(
        self, plan: Plan, cursor: str | None, max_items: int
    ) -> CollectBatch:
        tags = hashtags_to_search(plan)
        limit = max(1, min(max_items, GRAPH_PAGE_LIMIT))
        if not tags:
            return await self._collect_own_media(cursor, limit)

        index, after = decode_cursor(cursor)
        if index >= len(tags):
            return CollectBatch()

        hashtag = tags[index]
        has_next_tag = index + 1 < len(tags)
        hashtag_id = await self._resolve_hashtag(hashtag)
        if hashtag_id is None:
            logger.info("Instagram hashtag not found: %s", hashtag)
            return CollectBatch(
                next_cursor=encode_cursor(index + 1) if has_next_tag else None,
                has_more=has_next_tag,
            )

        edge = plan.query_strategy.get("instagram", {}).get("mediaEdge", "recent_media")
        params: dict[str, Any] = {
            "user_id": self._ig_user_id,
            "fields": HASHTAG_MEDIA_FIELDS,
            "limit": limit,
        }
        if edge == "recent_media":
            params["after"] = after
        body = await self._call(f"{hashtag_id}/{edge}", params)

        items = [dict(m, _hashtag=hashtag) for m in body.get("data") or []]
        paging = body.get("paging") or {}
        next_after = (paging.get("cursors") or {}).get("after")
        if edge == "recent_media" and paging.get("next") and next_after:
            return CollectBatch(
                items=items, next_cursor=encode_cursor(index, next_after), has_more=True
            )
        return CollectBatch(
            items=items,
            next_cursor=encode_cursor(index + 1) if has_next_tag else None,
            has_more=has_next_tag,
        )

    def expand(self, plan: Plan, collected: int, target: int) -> Plan:
        """Search keywords as extra hashtags and switch to the top-media edge."""
        expanded = plan.model_copy(deep=True)
        existing = [h.lstrip("#") for h in expanded.hashtags]
        extra = [k for k in expanded.keywords if k not in existing]
        strategy = expanded.strategy_for("instagram")
        strategy["hashtagsToSearch"] = existing + extra
        strategy["mediaEdge"] = "top_media"
        logger.info(
            "Instagram expansion: %d/%d collected, searching %d hashtag(s) via top media",
            collected, target, len(strategy["hashtagsToSearch"]),
        )
        return expanded

    def item_id(self, item: dict[str, Any]) -> str:
        return str(item["id"])

    def normalize(
        self, item: dict[str, Any], artifact_url: str, memo: str
    ) -> dict[str, Any]:
        notes = []
        if item.get("_hashtag"):
            notes.append(f"hashtag: {item['_hashtag']}")
        else:
            notes.append("collected from own account (not hashtag search)")
        if memo:
            notes.append(memo)
        raw = {k: v for k, v in item.items() if not k.startswith("_")}
        return normalize_instagram_media(raw, artifact_url, "; ".join(notes))

    def artifacts(self, item: dict[str, Any]) -> list[Artifact]:
        raw = {k: v for k, v in item.items() if not k.startswith("_")}
        permalink = raw.get("permalink") or ""
        if not permalink:
            shortcode = raw.get("shortcode") or extract_shortcode(permalink)
            permalink = f"https://www.instagram.com/p/{shortcode}/"
        username = raw.get("username") or extract_username(permalink)
        return [raw_json_artifact(raw), watch_artifact(permalink, "Instagram", username)]

    def retry_predicate(self) -> Callable[[BaseException, int], Any]:
        return rate_limited_should_retry(self._rate_limit_sleep_s)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _collect_own_media(self, cursor: str | None, limit: int) -> CollectBatch:
        _, after = decode_cursor(cursor)
        body = await self._call(
            f"{self._ig_user_id}/media",
            {"fields": OWN_MEDIA_FIELDS, "limit": limit, "after": after},
        )
        paging = body.get("paging") or {}
        next_after = (paging.get("cursors") or {}).get("after")
        has_more = bool(paging.get("next")) and next_after is not None
        return CollectBatch(
            items=body.get("data") or [],
            next_cursor=encode_cursor(0, next_after) if has_more else None,
            has_more=has_more,
        )

    async def _resolve_hashtag(self, hashtag: str) -> str | None:
        if hashtag not in self._hashtag_ids:
            body = await self._call(
                "ig_hashtag_search", {"user_id": self._ig_user_id, "q": hashtag}
            )
            data = body.get("data") or []
            self._hashtag_ids[hashtag] = str(data[0]["id"]) if data else None
        return self._hashtag_ids[hashtag]

    async def _call(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        return await self._http.get_json(
            endpoint, params={**params, "access_token": self._access_token}
        )
