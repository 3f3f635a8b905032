# src/checkpoint/redis_store.py — v1
"""Redis-based checkpoint store (CHECKPOINT_BACKEND=redis).

Requires 'redis' package: pip install redis.
Suitable when several hosts invoke the orchestrator against shared state.
The version guard uses WATCH/MULTI optimistic transactions.
"""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from pulsecollect.checkpoint.base_checkpoint_store import BaseCheckpointStore
from pulsecollect.core.errors import (
    CheckpointConflictError,
    RunAlreadyExistsError,
    RunNotFoundError,
)
from pulsecollect.core.models import RunOptions, RunState, utcnow

logger = logging.getLogger(__name__)

_KEY_PREFIX = "pulsecollect:run:"
_INDEX_KEY = "pulsecollect:run:__index__"


class RedisCheckpointStore(BaseCheckpointStore):
    """Redis-backed checkpoint store for multi-host deployments."""

    def __init__(self, redis_url: str, client: object | None = None) -> None:
        try:
            import redis
        except ImportError as e:
            raise ImportError(
                "redis package required: pip install redis"
            ) from e

        self._watch_error = redis.WatchError
        self._client = client or redis.Redis.from_url(redis_url, decode_responses=True)

    async def create(
        self,
        run_id: str,
        instruction: str,
        options: RunOptions | None = None,
    ) -> RunState:
        state = RunState(
            run_id=run_id,
            instruction=instruction,
            options=options or RunOptions(),
        )
        created = self._client.set(self._key(run_id), state.model_dump_json(), nx=True)
        if not created:
            raise RunAlreadyExistsError(run_id)
        self._client.sadd(_INDEX_KEY, run_id)
        return state

    async def load(self, run_id: str) -> RunState | None:
        data = self._client.get(self._key(run_id))
        if data is None:
            return None
        try:
            return RunState(**json.loads(data))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Failed to deserialize checkpoint %s: %s", run_id, e)
            return None

    async def save(self, state: RunState) -> RunState:
        key = self._key(state.run_id)
        expected = state.version
        candidate = state.model_copy(deep=True)
        candidate.version = expected + 1
        candidate.updated_at = utcnow()

        with self._client.pipeline() as pipe:
            try:
                pipe.watch(key)
                current = pipe.get(key)
                if current is None:
                    raise RunNotFoundError(state.run_id)
                found = json.loads(current).get("version", 0)
                if found != expected:
                    raise CheckpointConflictError(state.run_id, expected, found)
                pipe.multi()
                pipe.set(key, candidate.model_dump_json())
                pipe.execute()
            except self._watch_error as e:
                raise CheckpointConflictError(state.run_id, expected, -1) from e

        state.version = candidate.version
        state.updated_at = candidate.updated_at
        return state

    async def delete(self, run_id: str) -> bool:
        removed = self._client.delete(self._key(run_id))
        self._client.srem(_INDEX_KEY, run_id)
        return bool(removed)

    async def list_run_ids(self) -> list[str]:
        return sorted(self._client.smembers(_INDEX_KEY), reverse=True)

    def close(self) -> None:
        """Close the Redis connection."""
        self._client.close()

    @staticmethod
    def _key(run_id: str) -> str:
        return f"{_KEY_PREFIX}{run_id}"
