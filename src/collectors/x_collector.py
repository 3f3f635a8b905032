# src/collectors/x_collector.py — v1
"""X (Twitter) collector over the twitterapi.io advanced search endpoint.

GET {base}/advanced_search?query=...&queryType=Latest|Top&cursor=...
Header: X-API-Key. Response: tweets, has_next_page, next_cursor.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pulsecollect.collectors.artifacts import raw_json_artifact, watch_artifact
from pulsecollect.collectors.base_collector import BaseStageCollector
from pulsecollect.core.errors import CollectorError
from pulsecollect.core.models import Artifact, CollectBatch, Plan, utcnow
from pulsecollect.sinks.columns import X_COLUMNS
from pulsecollect.transport.http_client import JsonHttpClient
from pulsecollect.transport.retry import rate_limited_should_retry

logger = logging.getLogger(__name__)

EXPANSION_WINDOW = timedelta(days=14)


def format_x_date(value: datetime) -> str:
    """Format as yyyy-MM-dd_HH:mm:ss_UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d_%H:%M:%S") + "_UTC"


def build_x_query(plan: Plan) -> str:
    """Translate a plan into X advanced-search syntax.

    Raises:
        CollectorError: If the plan carries no search criteria at all.
    """
    strategy = plan.query_strategy.get("x", {})
    if strategy.get("customQuery"):
        return strategy["customQuery"]

    parts: list[str] = []
    if plan.keywords:
        parts.append("(" + " OR ".join(f'"{k}"' for k in plan.keywords) + ")")
    if plan.hashtags:
        parts.append("(" + " OR ".join(f"#{h.lstrip('#')}" for h in plan.hashtags) + ")")

    from_users = strategy.get("fromUsers") or []
    if from_users:
        parts.append("(" + " OR ".join(f"from:{u.lstrip('@')}" for u in from_users) + ")")

    if plan.time_window.start_date:
        parts.append(f"since:{format_x_date(plan.time_window.start_date)}")
    if plan.time_window.end_date:
        parts.append(f"until:{format_x_date(plan.time_window.end_date)}")
    if strategy.get("language"):
        parts.append(f"lang:{strategy['language']}")

    if not parts:
        if plan.content_category:
            parts.append(f'"{plan.content_category}"')
        else:
            raise CollectorError("x", "No search criteria specified for X")

    if strategy.get("includeRetweets") is not True:
        parts.append("-is:retweet")

    return " ".join(parts)


def _parse_created_at(value: str) -> str:
    """twitterapi.io dates look like 'Tue Dec 10 07:00:30 +0000 2024'."""
    if not value:
        return ""
    try:
        return datetime.strptime(value, "%a %b %d %H:%M:%S %z %Y").isoformat()
    except ValueError:
        return value


def normalize_tweet(tweet: dict[str, Any], artifact_url: str, memo: str) -> dict[str, Any]:
    author = tweet.get("author") or {}
    entities = tweet.get("entities") or {}
    tweet_id = str(tweet.get("id", ""))
    username = author.get("userName", "")
    return {
        "platform_post_id": tweet_id,
        "create_username": username,
        "posted_at": _parse_created_at(tweet.get("createdAt", "")),
        "caption_or_description": tweet.get("text", ""),
        "post_url": tweet.get("url") or f"https://x.com/i/status/{tweet_id}",
        "like_count": tweet.get("likeCount"),
        "retweet_count": tweet.get("retweetCount"),
        "reply_count": tweet.get("replyCount"),
        "quote_count": tweet.get("quoteCount"),
        "view_count": tweet.get("viewCount"),
        "bookmark_count": tweet.get("bookmarkCount"),
        "lang": tweet.get("lang", ""),
        "is_reply": tweet.get("isReply"),
        "conversation_id": tweet.get("conversationId", ""),
        "hashtags": [h.get("text", "") for h in entities.get("hashtags") or []],
        "mentions": [m.get("screen_name", "") for m in entities.get("user_mentions") or []],
        "urls": [u.get("expanded_url", "") for u in entities.get("urls") or []],
        "author_followers": author.get("followers"),
        "drive_url": artifact_url,
        "memo": memo,
    }


class XCollector(BaseStageCollector):
    """Collect tweets via twitterapi.io advanced search."""

    name = "x"
    columns = X_COLUMNS

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.twitterapi.io/twitter/tweet",
        http: JsonHttpClient | None = None,
        timeout: float = 30.0,
        rate_limit_sleep_s: float = 5.0,
    ) -> None:
        self._api_key = api_key
        self._http = http or JsonHttpClient(base_url=base_url, timeout=timeout)
        self._rate_limit_sleep_s = rate_limit_sleep_s

    def usable(self) -> bool:
        return bool(self._api_key)

    async def collect(
        self, plan: Plan, cursor: str | None, max_items: int
    ) -> CollectBatch:
        query = build_x_query(plan)
        query_type = plan.query_strategy.get("x", {}).get("queryType", "Latest")
        logger.debug("X search: %s (%s, cursor=%s)", query, query_type, cursor)

        body = await self._http.get_json(
            "advanced_search",
            params={"query": query, "queryType": query_type, "cursor": cursor},
            headers={"X-API-Key": self._api_key},
        )
        tweets = body.get("tweets") or []
        next_cursor = body.get("next_cursor") or None
        has_more = bool(body.get("has_next_page")) and next_cursor is not None
        return CollectBatch(items=tweets, next_cursor=next_cursor, has_more=has_more)

    def expand(self, plan: Plan, collected: int, target: int) -> Plan:
        """Move the start of the window 14 days back and switch to Top."""
        expanded = plan.model_copy(deep=True)
        start = expanded.time_window.start_date or utcnow()
        expanded.time_window.start_date = start - EXPANSION_WINDOW
        expanded.strategy_for("x")["queryType"] = "Top"
        logger.info(
            "X expansion: %d/%d collected, window now starts %s",
            collected, target, expanded.time_window.start_date.isoformat(),
        )
        return expanded

    def item_id(self, item: dict[str, Any]) -> str:
        return str(item["id"])

    def normalize(
        self, item: dict[str, Any], artifact_url: str, memo: str
    ) -> dict[str, Any]:
        return normalize_tweet(item, artifact_url, memo)

    def artifacts(self, item: dict[str, Any]) -> list[Artifact]:
        tweet_id = self.item_id(item)
        watch_url = item.get("url") or f"https://x.com/i/status/{tweet_id}"
        username = (item.get("author") or {}).get("userName", "")
        return [raw_json_artifact(item), watch_artifact(watch_url, "X", username)]

    def retry_predicate(self) -> Callable[[BaseException, int], Any]:
        return rate_limited_should_retry(self._rate_limit_sleep_s)

    async def aclose(self) -> None:
        await self._http.aclose()
