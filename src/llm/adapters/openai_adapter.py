# src/llm/adapters/openai_adapter.py — v1
"""OpenAI adapter implementing BaseLLMClient.

Structured output uses the ``json_schema`` response format. The SDK client
is created on first use with the application's timeout and retry limits.
"""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel

from pulsecollect.llm.base_client import BaseLLMClient
from pulsecollect.llm.models import LLMResponse, Message


class OpenAIAdapter(BaseLLMClient):
    """OpenAI chat completions adapter."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: str = "",
        timeout: float = 60.0,
        max_retries: int = 2,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._max_retries = max_retries
        self._sdk: Any = None

    def _client(self) -> Any:
        if self._sdk is None:
            import openai

            self._sdk = openai.AsyncOpenAI(
                api_key=self._api_key, timeout=self._timeout, max_retries=self._max_retries,
            )
        return self._sdk

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.2,
        response_format: type[BaseModel] | None = None,
    ) -> LLMResponse:
        chat = [{"role": "system", "content": system}] if system else []
        chat.extend({"role": m.role, "content": m.content} for m in messages)

        request: dict[str, Any] = {
            "model": self._model,
            "messages": chat,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if response_format is not None:
            request["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": response_format.__name__,
                    "schema": response_format.model_json_schema(),
                },
            }

        started = time.monotonic()
        completion = await self._client().chat.completions.create(**request)
        usage = completion.usage
        return LLMResponse(
            content=completion.choices[0].message.content or "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            model=self._model,
            provider=self.provider_name,
            latency_ms=int((time.monotonic() - started) * 1000),
            raw_response=completion,
        )

    @property
    def provider_name(self) -> str:
        return "openai"
