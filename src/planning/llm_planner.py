# src/planning/llm_planner.py — v1
"""LLM-backed planner with heuristic fallback.

The model is asked for a PlanDraft (camelCase JSON). The draft is then
post-processed into a Plan: platforms filtered to known sources, missing
counts defaulted, multi-word keywords split, per-source strategies filled.
Any failure (transport, refusal, malformed JSON) falls back to
``fallback_plan``; planning itself never fails a run.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pulsecollect.config.settings import KNOWN_SOURCES
from pulsecollect.core.errors import PlannerError
from pulsecollect.core.models import Plan, TimeWindow
from pulsecollect.llm.base_client import BaseLLMClient
from pulsecollect.llm.models import Message
from pulsecollect.planning.base_planner import BasePlanner
from pulsecollect.planning.fallback import fallback_plan

logger = logging.getLogger(__name__)

DEFAULT_PLATFORMS = ["instagram", "x"]

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

SYSTEM_PROMPT = """You are a data collection planning assistant for a tool that collects \
social media posts from Instagram, X (Twitter) and TikTok.

Parse the user's instruction into a structured collection plan.

Rules:
1. Platforms: include only the platforms the user asked for. "tweets", "Twitter" or "X" \
means x; "Instagram", "IG", "reels" means instagram; "TikTok" means tiktok. If no platform \
is mentioned, use instagram and x.
2. Counts: if the user gives a number ("5 tweets", "fetch 20"), use exactly that number for \
the requested platforms. Use 0 for platforms not requested. Use {default_count} only when no \
count is given.
3. Extract keywords, hashtags (without #) and creator handles (without @).
4. Identify any time window ("last 7 days", "this month") as ISO 8601 dates.
5. For X, queryType is "Latest" for recent posts or "Top" for popular ones.

Current date: {today}"""

USER_PROMPT = """Create a collection plan for this instruction:

"{instruction}"

Return a structured JSON plan."""


class TimeWindowDraft(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    start_date: str | None = Field(default=None, alias="startDate")
    end_date: str | None = Field(default=None, alias="endDate")
    description: str = "recent"


class PlanDraft(BaseModel):
    """Schema the model is asked to fill (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    target_platforms: list[str] = Field(default_factory=list, alias="targetPlatforms")
    target_counts: dict[str, int | None] = Field(default_factory=dict, alias="targetCounts")
    keywords: list[str] = Field(default_factory=list)
    hashtags: list[str] = Field(default_factory=list)
    creator_handles: list[str] = Field(default_factory=list, alias="creatorHandles")
    time_window: TimeWindowDraft = Field(default_factory=TimeWindowDraft, alias="timeWindow")
    region_code: str = Field(default="", alias="regionCode")
    content_category: str = Field(default="general", alias="contentCategory")
    query_strategy: dict[str, dict[str, Any]] = Field(default_factory=dict, alias="queryStrategy")

    @field_validator("region_code", "content_category", mode="before")
    @classmethod
    def none_to_default(cls, v: Any) -> Any:  # noqa: N805
        return v if v is not None else ""


def parse_plan_json(content: str) -> PlanDraft:
    """Parse model output into a PlanDraft.

    Raises:
        PlannerError: If no JSON object can be parsed or validated.
    """
    match = _JSON_OBJECT_RE.search(content or "")
    if match is None:
        raise PlannerError("LLM response contains no JSON object")
    try:
        return PlanDraft.model_validate(json.loads(match.group(0)))
    except (json.JSONDecodeError, ValidationError) as e:
        raise PlannerError(f"LLM plan is malformed: {e}") from e


def _split_keywords(keywords: list[str]) -> list[str]:
    result: list[str] = []
    for k in keywords:
        if " " in k.strip():
            result.extend(w for w in k.split() if len(w) > 2)
        elif k.strip():
            result.append(k.strip())
    return result


def _parse_window(draft: TimeWindowDraft) -> TimeWindow:
    window = TimeWindow(description=draft.description or "recent")
    for attr in ("start_date", "end_date"):
        raw = getattr(draft, attr)
        if not raw or raw == "null":
            continue
        try:
            parsed = TimeWindow.model_validate({attr: raw})
        except ValidationError:
            logger.debug("Ignoring unparseable %s: %r", attr, raw)
            continue
        setattr(window, attr, getattr(parsed, attr))
    return window


def draft_to_plan(draft: PlanDraft, default_count: int) -> Plan:
    """Post-process a raw draft into an executable Plan."""
    platforms = [p for p in draft.target_platforms if p in KNOWN_SOURCES]
    if not platforms:
        platforms = list(DEFAULT_PLATFORMS)

    counts: dict[str, int] = {}
    for source in KNOWN_SOURCES:
        requested = draft.target_counts.get(source) or 0
        if source in platforms:
            counts[source] = requested if requested > 0 else default_count
        else:
            counts[source] = 0

    keywords = _split_keywords(draft.keywords)
    hashtags = [h.lstrip("#") for h in draft.hashtags if h]
    handles = [h.lstrip("@") for h in draft.creator_handles if h]

    strategy = {k: dict(v) for k, v in draft.query_strategy.items() if isinstance(v, dict)}
    instagram = strategy.setdefault("instagram", {})
    if not instagram.get("hashtagsToSearch"):
        instagram["hashtagsToSearch"] = hashtags or keywords[:5]
    instagram.setdefault("primaryStrategy", "hashtag")

    x = strategy.setdefault("x", {})
    x.setdefault("queryType", "Latest")
    if handles:
        x["fromUsers"] = handles

    return Plan(
        target_platforms=platforms,
        target_counts=counts,
        keywords=keywords,
        hashtags=hashtags,
        creator_handles=handles,
        time_window=_parse_window(draft.time_window),
        region_code=draft.region_code,
        content_category=draft.content_category or "general",
        query_strategy=strategy,
    )


class LLMPlanner(BasePlanner):
    """Plan with an LLM; fall back to heuristics on any failure."""

    def __init__(
        self,
        client: BaseLLMClient,
        default_count: int = 30,
        temperature: float = 0.2,
        max_tokens: int = 2048,
    ) -> None:
        self._client = client
        self._default_count = default_count
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def plan(self, instruction: str) -> Plan:
        try:
            draft = await self._request_draft(instruction)
        except Exception as e:
            logger.warning("LLM planning failed, using heuristic plan: %s", e)
            return fallback_plan(instruction, self._default_count)

        plan = draft_to_plan(draft, self._default_count)
        logger.info(
            "LLM plan: platforms=%s counts=%s",
            plan.target_platforms, plan.target_counts,
        )
        return plan

    async def _request_draft(self, instruction: str) -> PlanDraft:
        system = SYSTEM_PROMPT.format(
            default_count=self._default_count, today=date.today().isoformat()
        )
        response = await self._client.complete(
            messages=[Message(role="user", content=USER_PROMPT.format(instruction=instruction))],
            system=system,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            response_format=PlanDraft,
        )
        return parse_plan_json(response.content)
