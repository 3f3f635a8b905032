# src/api/models.py — v1
"""API-level models: the JSON response envelope and status mapping."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

API_VERSION = "v1"

ApiStatus = Literal["queued", "running", "completed", "failed"]

ErrorCode = Literal[
    "UNAUTHORIZED",
    "INVALID_JSON",
    "MISSING_PARAMETER",
    "START_FAILED",
    "NOT_FOUND",
    "UNKNOWN_ACTION",
]

_API_STATUS: dict[str, ApiStatus] = {
    "CREATED": "queued",
    "PLANNING": "queued",
    "COLLECTING": "running",
    "FINALIZING": "running",
    "COMPLETED": "completed",
    "FAILED": "failed",
}


def to_api_status(status: str) -> ApiStatus:
    return _API_STATUS.get(status, "running")


class ApiError(BaseModel):
    code: ErrorCode
    message: str


class ApiResponse(BaseModel):
    """Envelope returned for every API action."""

    ok: bool
    api_version: str = API_VERSION
    data: dict[str, Any] = Field(default_factory=dict)
    error: ApiError | None = None

    @classmethod
    def success(cls, **data: Any) -> ApiResponse:
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, code: ErrorCode, message: str, **data: Any) -> ApiResponse:
        return cls(ok=False, data=data, error=ApiError(code=code, message=message))
