# src/checkpoint/json_store.py — v1
"""JSON file-based checkpoint store (default CHECKPOINT_BACKEND=json).

One ``{run_id}.json`` file per run under CHECKPOINT_ROOT. Writes go to a
temporary sibling file and are moved into place with os.replace, so a crash
mid-write leaves the previous checkpoint intact.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from pulsecollect.checkpoint.base_checkpoint_store import BaseCheckpointStore
from pulsecollect.core.errors import (
    CheckpointConflictError,
    RunAlreadyExistsError,
    RunNotFoundError,
)
from pulsecollect.core.models import RunOptions, RunState, utcnow

logger = logging.getLogger(__name__)


class JsonCheckpointStore(BaseCheckpointStore):
    """File-based checkpoint store using JSON files."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)
        # Serializes read-compare-write within this process.
        self._lock = asyncio.Lock()

    async def create(
        self,
        run_id: str,
        instruction: str,
        options: RunOptions | None = None,
    ) -> RunState:
        async with self._lock:
            path = self._state_path(run_id)
            if path.exists():
                raise RunAlreadyExistsError(run_id)
            state = RunState(
                run_id=run_id,
                instruction=instruction,
                options=options or RunOptions(),
            )
            self._write_atomic(path, state)
            return state

    async def load(self, run_id: str) -> RunState | None:
        return self._read(self._state_path(run_id))

    async def save(self, state: RunState) -> RunState:
        async with self._lock:
            path = self._state_path(state.run_id)
            stored = self._read(path)
            if stored is None:
                raise RunNotFoundError(state.run_id)
            if stored.version != state.version:
                raise CheckpointConflictError(state.run_id, state.version, stored.version)

            candidate = state.model_copy(deep=True)
            candidate.version = state.version + 1
            candidate.updated_at = utcnow()
            self._write_atomic(path, candidate)

            state.version = candidate.version
            state.updated_at = candidate.updated_at
            return state

    async def delete(self, run_id: str) -> bool:
        path = self._state_path(run_id)
        if path.exists():
            path.unlink()
            return True
        return False

    async def list_run_ids(self) -> list[str]:
        if not self._root.is_dir():
            return []
        return sorted((p.stem for p in self._root.glob("*.json")), reverse=True)

    def _read(self, path: Path) -> RunState | None:
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return RunState(**data)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Failed to read checkpoint %s: %s", path.name, e)
            return None

    def _write_atomic(self, path: Path, state: RunState) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=str(self._root), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(state.model_dump_json(indent=2))
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _state_path(self, run_id: str) -> Path:
        safe_id = run_id.replace("/", "_").replace("\\", "_")
        return self._root / f"{safe_id}.json"
