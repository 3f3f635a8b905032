# src/api/handler.py — v1
"""Framework-free JSON API for automation clients.

Actions:
    start   instruction, external_run_id, [target_container_id]
    status  run_id

Every call returns an ApiResponse; errors never propagate as exceptions.
"""

from __future__ import annotations

import hmac
import json
import logging
from typing import Any

from pydantic import ValidationError

from pulsecollect.api.models import ApiResponse, to_api_status
from pulsecollect.core.errors import RunNotFoundError
from pulsecollect.core.models import RunOptions
from pulsecollect.orchestrator.workflow import WorkflowOrchestrator

logger = logging.getLogger(__name__)

VALID_ACTIONS = ("start", "status")


def parse_body(body: str | bytes | None) -> dict[str, Any]:
    """Decode a JSON request body. Raises ValueError if it is not an object."""
    if not body:
        return {}
    data = json.loads(body)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def _authorized(expected: str, provided: Any) -> bool:
    if not expected:
        logger.warning("No API secret configured; accepting unauthenticated request")
        return True
    if not isinstance(provided, str) or not provided:
        return False
    return hmac.compare_digest(expected, provided)


async def route_api_request(
    orchestrator: WorkflowOrchestrator,
    action: str | None,
    params: dict[str, Any] | None = None,
    body: str | bytes | None = None,
    secret: str = "",
) -> ApiResponse:
    """Dispatch one API call.

    Args:
        orchestrator: Orchestrator serving the request.
        action: Requested action (case-insensitive).
        params: Query parameters; ``secret`` is read from here.
        body: Optional JSON body; its keys override ``params`` for start.
        secret: Configured API secret (empty = no auth).
    """
    params = dict(params or {})
    name = (action or "").lower()

    if name not in VALID_ACTIONS:
        return ApiResponse.failure(
            "UNKNOWN_ACTION",
            f"Unknown action: {action}. Valid actions: {', '.join(VALID_ACTIONS)}",
        )

    if not _authorized(secret, params.get("secret")):
        return ApiResponse.failure("UNAUTHORIZED", "Invalid or missing API secret")

    if name == "start":
        try:
            params.update(parse_body(body))
        except ValueError:
            return ApiResponse.failure("INVALID_JSON", "Failed to parse request body as JSON")
        return await _handle_start(orchestrator, params)
    return await _handle_status(orchestrator, params)


async def _handle_start(
    orchestrator: WorkflowOrchestrator, params: dict[str, Any]
) -> ApiResponse:
    for required in ("instruction", "external_run_id"):
        if not params.get(required):
            return ApiResponse.failure(
                "MISSING_PARAMETER", f'Required parameter "{required}" is missing'
            )

    external_run_id = str(params["external_run_id"])
    try:
        options = RunOptions(
            external_run_id=external_run_id,
            target_container_id=params.get("target_container_id") or None,
            origin="api",
        )
    except ValidationError as e:
        message = "; ".join(err["msg"] for err in e.errors())
        logger.warning("API start rejected for %r: %s", external_run_id, message)
        return ApiResponse.failure("START_FAILED", message, run_id=external_run_id)

    try:
        result = await orchestrator.start_run(str(params["instruction"]), options)
    except Exception as e:
        logger.error("API start failed for %s: %s", external_run_id, e)
        return ApiResponse.failure("START_FAILED", str(e), run_id=external_run_id)

    return ApiResponse.success(
        run_id=result.run_id,
        status=to_api_status(result.status),
        sink_location=result.sink_location,
        container_url=result.root_container_url,
        message="Run started successfully",
    )


async def _handle_status(
    orchestrator: WorkflowOrchestrator, params: dict[str, Any]
) -> ApiResponse:
    run_id = params.get("run_id")
    if not run_id:
        return ApiResponse.failure("MISSING_PARAMETER", 'Required parameter "run_id" is missing')

    try:
        summary = await orchestrator.get_run_status(str(run_id))
    except RunNotFoundError:
        return ApiResponse.failure("NOT_FOUND", f"Run not found: {run_id}", run_id=run_id)

    return ApiResponse.success(
        run_id=summary.run_id,
        status=to_api_status(summary.status),
        internal_status=summary.status,
        current_source=summary.current_source,
        progress={name: p.model_dump() for name, p in summary.progress.items()},
        message=summary.last_message,
        error=summary.last_error,
        warning=summary.warning,
        sink_location=summary.sink_location,
        created_at=summary.created_at.isoformat(),
        updated_at=summary.updated_at.isoformat(),
    )
