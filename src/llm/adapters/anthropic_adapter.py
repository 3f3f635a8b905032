# src/llm/adapters/anthropic_adapter.py — v1
"""Anthropic adapter implementing BaseLLMClient.

Structured output is obtained through a forced tool call whose input
schema is the requested pydantic model; the tool input is returned as the
JSON content.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from pydantic import BaseModel

from pulsecollect.llm.base_client import BaseLLMClient
from pulsecollect.llm.models import LLMResponse, Message

logger = logging.getLogger(__name__)

PLAN_TOOL = "structured_output"


class AnthropicAdapter(BaseLLMClient):
    """Adapter for Anthropic Claude models."""

    def __init__(
        self,
        model: str = "claude-sonnet-4-20250514",
        api_key: str | None = None,
        timeout: float = 60.0,
        max_retries: int = 2,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout = timeout
        self._max_retries = max_retries
        self.__client = None  # Lazy initialization

    @property
    def _client(self):
        """SDK client, created on first API call."""
        if self.__client is None:
            import anthropic

            self.__client = anthropic.AsyncAnthropic(
                api_key=self._api_key or "",
                timeout=self._timeout,
                max_retries=self._max_retries,
            )
        return self.__client

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.2,
        response_format: type[BaseModel] | None = None,
    ) -> LLMResponse:
        request: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }
        if system:
            request["system"] = system
        if response_format is not None:
            request["tools"] = [{
                "name": PLAN_TOOL,
                "description": f"Return a {response_format.__name__} object",
                "input_schema": response_format.model_json_schema(),
            }]
            request["tool_choice"] = {"type": "tool", "name": PLAN_TOOL}

        started = time.monotonic()
        response = await self._client.messages.create(**request)
        content = _content_of(response, structured=response_format is not None)
        if response_format is not None and not content:
            logger.warning("Anthropic response had no %s tool call", PLAN_TOOL)

        return LLMResponse(
            content=content,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=response.model,
            provider=self.provider_name,
            latency_ms=int((time.monotonic() - started) * 1000),
            raw_response=response,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"


def _content_of(response: Any, structured: bool) -> str:
    """Tool input as JSON for structured calls, else the first text block."""
    blocks = list(response.content)
    if structured:
        for block in blocks:
            if getattr(block, "type", None) == "tool_use":
                return json.dumps(block.input)
    for block in blocks:
        if getattr(block, "type", None) == "text":
            return block.text
    return ""
