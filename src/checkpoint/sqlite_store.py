# src/checkpoint/sqlite_store.py — v1
"""SQLite-based checkpoint store (CHECKPOINT_BACKEND=sqlite).

Uses stdlib sqlite3. The version guard is a single conditional UPDATE, so
concurrent writers from separate processes cannot both win.
"""

from __future__ import annotations

import json
import logging
import sqlite3
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

_SCHEMA = """
CREATE TABLE IF NOT EXISTS run_states (
    run_id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    status TEXT NOT NULL,
    version INTEGER NOT NULL,
    continuation_token TEXT,
    updated_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_run_status ON run_states(status);
"""


class SqliteCheckpointStore(BaseCheckpointStore):
    """SQLite-backed checkpoint store."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

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
        try:
            self._conn.execute(
                """INSERT INTO run_states
                   (run_id, data, status, version, continuation_token, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    run_id,
                    state.model_dump_json(),
                    state.status,
                    state.version,
                    state.continuation_token,
                    state.updated_at.isoformat(),
                ),
            )
            self._conn.commit()
        except sqlite3.IntegrityError as e:
            raise RunAlreadyExistsError(run_id) from e
        return state

    async def load(self, run_id: str) -> RunState | None:
        row = self._conn.execute(
            "SELECT data FROM run_states WHERE run_id = ?", (run_id,)
        ).fetchone()
        if row is None:
            return None
        try:
            return RunState(**json.loads(row[0]))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Failed to deserialize checkpoint %s: %s", run_id, e)
            return None

    async def save(self, state: RunState) -> RunState:
        expected = state.version
        candidate = state.model_copy(deep=True)
        candidate.version = expected + 1
        candidate.updated_at = utcnow()

        cursor = self._conn.execute(
            """UPDATE run_states
               SET data = ?, status = ?, version = ?, continuation_token = ?, updated_at = ?
               WHERE run_id = ? AND version = ?""",
            (
                candidate.model_dump_json(),
                candidate.status,
                candidate.version,
                candidate.continuation_token,
                candidate.updated_at.isoformat(),
                state.run_id,
                expected,
            ),
        )
        self._conn.commit()

        if cursor.rowcount == 0:
            row = self._conn.execute(
                "SELECT version FROM run_states WHERE run_id = ?", (state.run_id,)
            ).fetchone()
            if row is None:
                raise RunNotFoundError(state.run_id)
            raise CheckpointConflictError(state.run_id, expected, row[0])

        state.version = candidate.version
        state.updated_at = candidate.updated_at
        return state

    async def delete(self, run_id: str) -> bool:
        cursor = self._conn.execute("DELETE FROM run_states WHERE run_id = ?", (run_id,))
        self._conn.commit()
        return cursor.rowcount > 0

    async def list_run_ids(self) -> list[str]:
        cursor = self._conn.execute("SELECT run_id FROM run_states ORDER BY run_id DESC")
        return [row[0] for row in cursor.fetchall()]

    async def find_pending(self) -> list[RunState]:
        cursor = self._conn.execute(
            """SELECT run_id FROM run_states
               WHERE status NOT IN ('COMPLETED', 'FAILED')
               AND continuation_token IS NOT NULL
               ORDER BY run_id ASC"""
        )
        pending: list[RunState] = []
        for (run_id,) in cursor.fetchall():
            state = await self.load(run_id)
            if state is not None:
                pending.append(state)
        return pending

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
