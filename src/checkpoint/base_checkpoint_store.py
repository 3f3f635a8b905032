# src/checkpoint/base_checkpoint_store.py — v1
"""Abstract checkpoint store interface.

A checkpoint is the full RunState of one run. Every save is a whole-document
overwrite guarded by the ``version`` counter: a save whose ``state.version``
no longer matches the stored one raises CheckpointConflictError.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from pulsecollect.core.models import RunOptions, RunState

logger = logging.getLogger(__name__)


def generate_run_id(timestamp: datetime | None = None) -> str:
    """Generate a run_id: yyyymmdd_hhmmss_{uuid4_short}.

    Lexicographic order of these ids is creation order.
    """
    ts = timestamp or datetime.now(timezone.utc)
    short_uuid = uuid.uuid4().hex[:8]
    return f"{ts.strftime('%Y%m%d_%H%M%S')}_{short_uuid}"


class BaseCheckpointStore(ABC):
    """Unified interface for checkpoint storage backends."""

    @abstractmethod
    async def create(
        self,
        run_id: str,
        instruction: str,
        options: RunOptions | None = None,
    ) -> RunState:
        """Persist a fresh CREATED state.

        Raises:
            RunAlreadyExistsError: If a state with this run_id exists.
        """

    @abstractmethod
    async def load(self, run_id: str) -> RunState | None:
        """Return the stored state, or None if absent or unreadable."""

    @abstractmethod
    async def save(self, state: RunState) -> RunState:
        """Overwrite the stored state.

        On success ``state.version`` is incremented and ``updated_at``
        refreshed in place.

        Raises:
            RunNotFoundError: If the run was never created or was deleted.
            CheckpointConflictError: If the stored version moved on.
        """

    @abstractmethod
    async def delete(self, run_id: str) -> bool:
        """Remove a state. Returns True if something was deleted."""

    @abstractmethod
    async def list_run_ids(self) -> list[str]:
        """All stored run ids, newest first."""

    def close(self) -> None:
        """Release backend resources."""

    # --- Shared queries (built on the primitives above) ---

    async def exists(self, run_id: str) -> bool:
        return await self.load(run_id) is not None

    async def list_recent(self, limit: int = 10) -> list[RunState]:
        """Most recent states, newest first."""
        states: list[RunState] = []
        for run_id in await self.list_run_ids():
            if len(states) >= limit:
                break
            state = await self.load(run_id)
            if state is not None:
                states.append(state)
        return states

    async def find_pending(self) -> list[RunState]:
        """Non-terminal runs holding an armed continuation, oldest first."""
        pending: list[RunState] = []
        for run_id in reversed(await self.list_run_ids()):
            state = await self.load(run_id)
            if state is None or state.is_terminal:
                continue
            if state.continuation_token:
                pending.append(state)
        return pending

    async def cleanup_old_runs(self, keep: int = 50) -> int:
        """Delete all but the newest ``keep`` runs. Never deletes a live run.

        Returns:
            Number of deleted states.
        """
        run_ids = await self.list_run_ids()
        deleted = 0
        for run_id in run_ids[keep:]:
            state = await self.load(run_id)
            if state is not None and not state.is_terminal:
                logger.debug("Retention kept non-terminal run %s", run_id)
                continue
            if await self.delete(run_id):
                deleted += 1
        if deleted:
            logger.info("Retention removed %d old run state(s)", deleted)
        return deleted
