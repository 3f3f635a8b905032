# src/orchestrator/stage_runner.py — v1
"""Per-stage collection routine.

Pulls pages from one collector until the stage target is met, the source
runs dry (after the allowed expansion passes) or the invocation budget is
spent. Progress is persisted after every page, so a later invocation
resumes from the stored cursor with the same dedup ledger.

Per item:
    id already in processed_ids or buffered -> dropped, counted as duplicate
    else -> artifacts archived (failures noted in memo), row normalized, buffered

An id enters processed_ids (and counts as collected) only once its row is
in the sink, and the cursor moves past a page only after all of its rows
are flushed. The in-memory state therefore never claims rows the sink lacks.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from pulsecollect.collectors.base_collector import BaseStageCollector
from pulsecollect.core.errors import CollectorError
from pulsecollect.core.models import (
    Artifact,
    BudgetExhausted,
    RunState,
    SourceAvailability,
    StageCompleted,
    StageFailed,
    StageOutcome,
    StageProgress,
)
from pulsecollect.logging.context import set_source_context
from pulsecollect.orchestrator.budget import EXPANSION_HEADROOM_S, TimeBudget
from pulsecollect.sinks.base_sink import BaseOutputSink
from pulsecollect.sinks.columns import join_memo
from pulsecollect.storage.base_artifact_store import BaseArtifactStore
from pulsecollect.transport.retry import (
    RetryExhaustedError,
    RetryPolicy,
    batch_with_retry,
    with_retry,
)

logger = logging.getLogger(__name__)

PersistFn = Callable[[RunState], Awaitable[Any]]


class StageRunner:
    """Run one source's stage against a shared RunState.

    Args:
        sink: Tabular output for normalized rows.
        artifact_store: Archive for per-item artifacts.
        policy: Retry limits applied to collect calls and artifact writes.
        batch_size: Page size hint and row flush threshold.
        max_expansions: Expansion passes allowed per stage.
        max_pages_per_stage: Page cap per invocation and per expansion pass.
        sleep: Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        sink: BaseOutputSink,
        artifact_store: BaseArtifactStore,
        policy: RetryPolicy | None = None,
        batch_size: int = 15,
        max_expansions: int = 1,
        max_pages_per_stage: int = 20,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._sink = sink
        self._artifacts = artifact_store
        self._policy = policy or RetryPolicy()
        self._batch_size = batch_size
        self._max_expansions = max_expansions
        self._max_pages = max_pages_per_stage
        self._sleep = sleep

    async def run_stage(
        self,
        state: RunState,
        source: str,
        collector: BaseStageCollector,
        availability: SourceAvailability,
        budget: TimeBudget,
        persist: PersistFn,
    ) -> StageOutcome:
        """Collect ``source`` until done or out of budget.

        ``persist`` saves the whole state; a CheckpointConflictError it
        raises propagates to the caller.
        """
        set_source_context(source)
        try:
            return await self._run(state, source, collector, availability, budget, persist)
        finally:
            set_source_context(None)

    async def _run(
        self,
        state: RunState,
        source: str,
        collector: BaseStageCollector,
        availability: SourceAvailability,
        budget: TimeBudget,
        persist: PersistFn,
    ) -> StageOutcome:
        progress = state.progress_for(source)

        if not availability.is_usable(source):
            logger.info("Source %s not usable, skipping stage", source)
            return StageCompleted(
                source=source, collected=progress.collected,
                target=progress.target, skipped=True,
            )
        if progress.target <= 0 or progress.exhausted or not progress.is_under_target:
            return self._completed(source, progress)
        if state.plan is None:
            raise ValueError(f"Run {state.run_id} has no plan")

        buffer: dict[str, dict[str, Any]] = {}
        pages = 0

        try:
            while True:
                if pages >= self._max_pages:
                    logger.warning(
                        "Page cap (%d) reached for %s at %d/%d",
                        self._max_pages, source, progress.collected, progress.target,
                    )
                    source_dry = True
                else:
                    batch = await with_retry(
                        collector.collect,
                        state.plan,
                        progress.cursor,
                        self._batch_size,
                        policy=self._policy,
                        should_retry=collector.retry_predicate(),
                        label=f"{source}.collect",
                        sleep=self._sleep,
                    )
                    pages += 1

                    for item in batch.items:
                        if progress.collected + len(buffer) >= progress.target:
                            break
                        await self._process_item(state, source, collector, progress, item, buffer)

                    await self._flush(state, source, progress, buffer)
                    progress.cursor = batch.next_cursor if batch.has_more else None
                    source_dry = not batch.has_more

                    await self._checkpoint(state, source, progress, buffer, persist)

                    if not progress.is_under_target:
                        logger.info("Stage %s reached target %d", source, progress.target)
                        return self._completed(source, progress)

                if source_dry:
                    if progress.expansions >= self._max_expansions:
                        progress.exhausted = True
                        await self._checkpoint(
                            state, source, progress, buffer, persist,
                            message=f"{source}: accepted {progress.collected}/{progress.target}",
                        )
                        logger.info(
                            "Stage %s exhausted at %d/%d after %d expansion(s)",
                            source, progress.collected, progress.target, progress.expansions,
                        )
                        return self._completed(source, progress)

                    state.plan = collector.expand(state.plan, progress.collected, progress.target)
                    progress.expansions += 1
                    progress.cursor = None
                    pages = 0
                    await self._checkpoint(
                        state, source, progress, buffer, persist,
                        message=f"{source}: expanding search ({progress.collected}/{progress.target})",
                    )

                    # Expanded pass starts fresh in the next invocation.
                    if not budget.has_at_least(EXPANSION_HEADROOM_S):
                        return self._budget_exhausted(source, progress)
                    continue

                if budget.exhausted():
                    return self._budget_exhausted(source, progress)

        except (RetryExhaustedError, CollectorError) as e:
            logger.error("Stage %s failed: %s", source, e)
            await self._flush(state, source, progress, buffer)
            await persist(state)
            return StageFailed(source=source, error=str(e), collected=progress.collected)

    async def _process_item(
        self,
        state: RunState,
        source: str,
        collector: BaseStageCollector,
        progress: StageProgress,
        item: dict[str, Any],
        buffer: dict[str, dict[str, Any]],
    ) -> None:
        try:
            item_id = collector.item_id(item)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Dropping %s item without id: %s", source, e)
            return

        if progress.has_processed(item_id) or item_id in buffer:
            progress.duplicates_skipped += 1
            return

        artifact_url, notes = await self._archive(state, source, collector, item, item_id)
        try:
            row = collector.normalize(item, artifact_url, join_memo(notes))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Dropping malformed %s item %s: %s", source, item_id, e)
            return

        buffer[item_id] = row
        if len(buffer) >= self._batch_size:
            await self._flush(state, source, progress, buffer)

    async def _archive(
        self,
        state: RunState,
        source: str,
        collector: BaseStageCollector,
        item: dict[str, Any],
        item_id: str,
    ) -> tuple[str, list[str]]:
        """Write item artifacts. Returns (primary artifact url, memo notes)."""
        container = state.resources.source_containers.get(source)
        artifacts = collector.artifacts(item)
        if not artifacts:
            return "", []
        if container is None:
            return "", ["artifacts skipped: no container"]

        async def write(artifact: Artifact, index: int) -> str:
            return await self._artifacts.write_artifact(
                container, item_id, artifact.name, artifact.payload
            )

        result = await batch_with_retry(
            artifacts, write, policy=self._policy, label=f"{source}.artifact", sleep=self._sleep,
        )
        primary_url = next(
            (url for index, url in result.successes if artifacts[index].is_primary), ""
        )
        notes: list[str] = []
        for index, error in result.failures:
            name = artifacts[index].name
            logger.warning("Artifact %s for %s failed: %s", name, item_id, error)
            notes.append(f"{name} failed: {error}")
        return primary_url, notes

    async def _flush(
        self,
        state: RunState,
        source: str,
        progress: StageProgress,
        buffer: dict[str, dict[str, Any]],
    ) -> None:
        """Append buffered rows, then record their ids. A sink error leaves both untouched."""
        if not buffer:
            return
        sink_id = state.resources.sink_id
        if sink_id is None:
            raise ValueError(f"Run {state.run_id} has no output sink")
        written = await self._sink.append_rows(sink_id, source, list(buffer.values()))
        for item_id in buffer:
            progress.record(item_id)
        logger.debug("Flushed %d %s row(s)", written, source)
        buffer.clear()

    async def _checkpoint(
        self,
        state: RunState,
        source: str,
        progress: StageProgress,
        buffer: dict[str, dict[str, Any]],
        persist: PersistFn,
        message: str | None = None,
    ) -> None:
        await self._flush(state, source, progress, buffer)
        state.last_message = message or (
            f"Collecting {source}: {progress.collected}/{progress.target}"
        )
        await persist(state)

    def _completed(self, source: str, progress: StageProgress) -> StageCompleted:
        return StageCompleted(
            source=source,
            collected=progress.collected,
            target=progress.target,
            shortfall=progress.is_under_target,
        )

    def _budget_exhausted(self, source: str, progress: StageProgress) -> BudgetExhausted:
        logger.info(
            "Budget spent during %s at %d/%d, cursor=%s",
            source, progress.collected, progress.target, progress.cursor,
        )
        return BudgetExhausted(source=source, collected=progress.collected, cursor=progress.cursor)
