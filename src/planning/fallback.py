# src/planning/fallback.py — v1
"""Heuristic planner used in mock mode and whenever the LLM planner fails.

Rules:
- hashtags from ``#word``, creator handles from ``@word``
- keywords: lowercase words longer than 3 chars minus stopwords, max 5
- count from "N ... posts|tweets|reels|videos", else the default
- platforms from mentions; none (or all) mentioned means instagram + x
"""

from __future__ import annotations

import re

from pulsecollect.core.models import Plan, TimeWindow
from pulsecollect.planning.base_planner import BasePlanner

STOPWORDS: frozenset[str] = frozenset({
    "find", "collect", "get", "posts", "videos", "tweets", "about", "from",
    "with", "only", "twitter", "instagram", "tiktok", "fetch", "reels",
})

MAX_KEYWORDS = 5

_HASHTAG_RE = re.compile(r"#(\w+)")
_HANDLE_RE = re.compile(r"@(\w+)")
_COUNT_RE = re.compile(r"(\d+)\s*(?:\w+\s+)*?(posts?|tweets?|reels?|videos?)", re.IGNORECASE)


def extract_keywords(instruction: str) -> list[str]:
    cleaned = re.sub(r"[^\w\s]", " ", instruction.lower())
    words = [w for w in cleaned.split() if len(w) > 3 and w not in STOPWORDS]
    seen: list[str] = []
    for w in words:
        if w not in seen and not w.isdigit():
            seen.append(w)
    return seen


def detect_platforms(instruction: str, handles: list[str]) -> list[str]:
    lower = f" {instruction.lower()} "
    instagram = "instagram" in lower or " ig " in lower or "reels" in lower
    x = "twitter" in lower or "tweet" in lower or bool(handles) or " x " in lower
    tiktok = "tiktok" in lower or "tik tok" in lower

    if not (instagram or x or tiktok):
        return ["instagram", "x"]
    platforms = []
    if instagram:
        platforms.append("instagram")
    if x:
        platforms.append("x")
    if tiktok:
        platforms.append("tiktok")
    return platforms


def fallback_plan(instruction: str, default_count: int) -> Plan:
    hashtags = _HASHTAG_RE.findall(instruction)
    handles = _HANDLE_RE.findall(instruction)
    words = extract_keywords(instruction)

    match = _COUNT_RE.search(instruction)
    count = int(match.group(1)) if match else default_count
    if count <= 0:
        count = default_count

    platforms = detect_platforms(instruction, handles)
    targets = {source: (count if source in platforms else 0) for source in ("instagram", "x", "tiktok")}

    return Plan(
        target_platforms=platforms,
        target_counts=targets,
        keywords=words[:MAX_KEYWORDS],
        hashtags=hashtags,
        creator_handles=handles,
        time_window=TimeWindow(),
        region_code="",
        content_category=words[0] if words else "general",
        query_strategy={
            "instagram": {
                "primaryStrategy": "hashtag" if hashtags else "mixed",
                "hashtagsToSearch": hashtags or words[:3],
            },
            "x": {
                "queryType": "Latest",
                "fromUsers": handles,
                "includeRetweets": False,
            },
            "tiktok": {"isRandom": False},
        },
    )


class FallbackPlanner(BasePlanner):
    """Planner that only applies the heuristics (mock mode)."""

    def __init__(self, default_count: int = 30) -> None:
        self._default_count = default_count

    async def plan(self, instruction: str) -> Plan:
        return fallback_plan(instruction, self._default_count)
