# src/checkpoint/checkpoint_factory.py — v1
"""Factory for checkpoint store instantiation."""

from __future__ import annotations

from pulsecollect.checkpoint.base_checkpoint_store import BaseCheckpointStore
from pulsecollect.config.settings import Settings


def create_checkpoint_store(settings: Settings | None = None) -> BaseCheckpointStore:
    """Instantiate the configured checkpoint backend.

    Args:
        settings: Application settings. Defaults to JSON backend.

    Returns:
        Configured BaseCheckpointStore implementation.
    """
    backend = "json" if settings is None else settings.checkpoint_backend
    root = "~/.pulsecollect/runs" if settings is None else str(settings.checkpoint_root)

    if backend == "json":
        from pulsecollect.checkpoint.json_store import JsonCheckpointStore
        return JsonCheckpointStore(root=root)

    if backend == "sqlite":
        from pulsecollect.checkpoint.sqlite_store import SqliteCheckpointStore
        return SqliteCheckpointStore(db_path=f"{root}/pulsecollect_runs.db")

    if backend == "redis":
        from pulsecollect.checkpoint.redis_store import RedisCheckpointStore
        if settings is None or not settings.checkpoint_redis_url:
            raise ValueError(
                "CHECKPOINT_REDIS_URL must be set when CHECKPOINT_BACKEND=redis"
            )
        return RedisCheckpointStore(redis_url=settings.checkpoint_redis_url)

    raise ValueError(f"Unsupported checkpoint backend: {backend!r}")
