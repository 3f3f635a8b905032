# src/transport/http_client.py — v1
"""Thin JSON-over-HTTP client shared by the reference collectors.

Wraps httpx.AsyncClient. Non-2xx responses raise HttpStatusError carrying
the status code so the retry predicates can classify them; the message is
taken from the provider's error payload when one is present.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from pulsecollect.transport.retry import HttpStatusError

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Best-effort extraction of a provider error message."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error.get("code") or error)
        if isinstance(error, str):
            return body.get("error_description") or error
        if body.get("message"):
            return str(body["message"])
    return str(body)[:200]


class JsonHttpClient:
    """Async JSON client with status-aware errors."""

    def __init__(
        self,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers or {},
            timeout=timeout,
            transport=transport,
        )

    async def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        clean = {k: v for k, v in (params or {}).items() if v not in (None, "")}
        response = await self._client.get(url, params=clean, headers=headers)
        return self._decode(response)

    async def post_json(
        self,
        url: str,
        payload: dict[str, Any],
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        response = await self._client.post(url, json=payload, params=params, headers=headers)
        return self._decode(response)

    async def post_form(
        self,
        url: str,
        data: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        response = await self._client.post(url, data=data, headers=headers)
        return self._decode(response)

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        if response.status_code >= 400:
            message = _error_message(response)
            logger.debug("HTTP %d from %s: %s", response.status_code, response.url, message)
            raise HttpStatusError(response.status_code, message, str(response.url))
        try:
            return response.json()
        except ValueError as e:
            raise HttpStatusError(
                response.status_code, f"invalid JSON body: {e}", str(response.url)
            ) from e
