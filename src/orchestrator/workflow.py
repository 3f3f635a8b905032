# src/orchestrator/workflow.py — v1
"""Resumable workflow orchestrator.

Drives a run through its lifecycle across as many host invocations as
needed:

    start_run:    CREATED -> PLANNING -> (plan, sink, containers) -> arm continuation
    continue_run: COLLECTING(source) ... -> FINALIZING -> COMPLETED

Each invocation works until the run is terminal or the time budget is
spent, then arms a continuation carrying a fresh lease token. Callbacks
with a stale token, and invocations that lose a checkpoint version race,
stop without touching the run.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Awaitable, Callable

from pulsecollect.checkpoint.base_checkpoint_store import (
    BaseCheckpointStore,
    generate_run_id,
)
from pulsecollect.collectors.base_collector import BaseStageCollector
from pulsecollect.collectors.registry import snapshot_availability
from pulsecollect.config.settings import (
    SOURCE_SETUP_HINTS,
    ConfigurationError,
    Settings,
)
from pulsecollect.core.errors import (
    CheckpointConflictError,
    InvalidTransitionError,
    NoUsableSourceError,
    RunNotFoundError,
)
from pulsecollect.core.models import (
    BudgetExhausted,
    ControlResult,
    Plan,
    RunOptions,
    RunState,
    RunStatusSummary,
    SourceAvailability,
    StageCompleted,
    StageFailed,
    StageOutcome,
    StartRunResult,
    utcnow,
)
from pulsecollect.core.state_machine import first_pending_source, transition
from pulsecollect.logging.context import run_context
from pulsecollect.orchestrator.budget import TimeBudget
from pulsecollect.orchestrator.stage_runner import StageRunner
from pulsecollect.planning.base_planner import BasePlanner
from pulsecollect.scheduling.base_scheduler import BaseContinuationScheduler
from pulsecollect.sinks.base_sink import BaseOutputSink
from pulsecollect.storage.base_artifact_store import BaseArtifactStore
from pulsecollect.storage.models import RunManifest, SourceManifest
from pulsecollect.transport.retry import RetryPolicy

logger = logging.getLogger(__name__)

SOURCE_LABELS: dict[str, str] = {
    "instagram": "Instagram",
    "x": "X",
    "tiktok": "TikTok",
}

ZERO_COLLECTED_WARNING = "WARNING: No data collected (0 posts)."


def new_continuation_token() -> str:
    return uuid.uuid4().hex


def no_usable_source_message(availability: SourceAvailability) -> str:
    """Actionable message listing how to enable each source."""
    lines = ["No sources configured for data collection."]
    for source, hint in SOURCE_SETUP_HINTS.items():
        if source in availability.usable:
            lines.append(f"  - {SOURCE_LABELS.get(source, source)}: {hint}")
    lines.append("At least one source must be configured (or set USE_MOCKS=true).")
    return "\n".join(lines)


class WorkflowOrchestrator:
    """Run lifecycle, continuation protocol and control surface.

    Args:
        settings: Application settings (limits, order, budget).
        store: Checkpoint backend holding every RunState.
        planner: Instruction -> Plan.
        collectors: One collector per source, keyed by source name.
        sink: Tabular output for normalized rows.
        artifact_store: Archive for per-item artifacts and manifests.
        scheduler: Continuation timer backend; ``continue_run`` is
            registered as its entry point.
        clock: Monotonic clock used for the per-invocation budget.
        sleep: Retry backoff sleep.
    """

    def __init__(
        self,
        settings: Settings,
        store: BaseCheckpointStore,
        planner: BasePlanner,
        collectors: dict[str, BaseStageCollector],
        sink: BaseOutputSink,
        artifact_store: BaseArtifactStore,
        scheduler: BaseContinuationScheduler,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._store = store
        self._planner = planner
        self._collectors = collectors
        self._sink = sink
        self._artifacts = artifact_store
        self._scheduler = scheduler
        self._clock = clock
        self._order = [s for s in settings.source_order_list if s in collectors]
        self._runner = StageRunner(
            sink=sink,
            artifact_store=artifact_store,
            policy=RetryPolicy.from_settings(settings),
            batch_size=settings.batch_size,
            max_expansions=settings.max_expansions,
            max_pages_per_stage=settings.max_pages_per_stage,
            sleep=sleep,
        )
        scheduler.register(self._on_continuation)

    @property
    def store(self) -> BaseCheckpointStore:
        return self._store

    @property
    def scheduler(self) -> BaseContinuationScheduler:
        return self._scheduler

    def availability(self) -> SourceAvailability:
        """Take a fresh usability snapshot of every collector."""
        return snapshot_availability(
            self._collectors,
            configured=self._settings.source_configuration(),
            mock_mode=self._settings.use_mocks,
        )

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start_run(
        self, instruction: str, options: RunOptions | None = None
    ) -> StartRunResult:
        """Create, plan and schedule a run. Does not wait for collection.

        Raises:
            ValueError: Empty instruction.
            ConfigurationError: Required settings missing.
            NoUsableSourceError: No collector can run.
            RunAlreadyExistsError: ``external_run_id`` already in use.
        """
        instruction = (instruction or "").strip()
        if not instruction:
            raise ValueError("Instruction must not be empty")

        missing = self._settings.missing_required_keys()
        if missing:
            raise ConfigurationError(
                f"Missing configuration: {', '.join(missing)}", missing_keys=missing
            )

        availability = self.availability()
        if not availability.any_usable:
            raise NoUsableSourceError(no_usable_source_message(availability))

        options = options or RunOptions()
        run_id = options.external_run_id or generate_run_id()
        state = await self._store.create(run_id, instruction, options)
        logger.info("Run %s created (origin=%s)", run_id, options.origin)

        with run_context(run_id, step="start"):
            try:
                transition(state, "PLANNING", message="Parsing instruction...")
                await self._store.save(state)

                await self._plan(state)
                await self._ensure_resources(state)
                await self._arm_continuation(state, "Collection scheduled")
            except Exception as e:
                logger.exception("Run %s failed during start", run_id)
                await self._mark_failed(state, e)
                raise

        return StartRunResult(
            run_id=run_id,
            status=state.status,
            sink_location=state.resources.sink_location,
            root_container_url=state.resources.root_container_url,
            plan=state.plan,
        )

    # ------------------------------------------------------------------
    # Continue
    # ------------------------------------------------------------------

    async def _on_continuation(self, run_id: str, token: str) -> RunStatusSummary | None:
        return await self.continue_run(run_id, token)

    async def continue_run(
        self, run_id: str | None = None, token: str | None = None
    ) -> RunStatusSummary | None:
        """Resume a run for one invocation's worth of budget.

        Without ``run_id`` the oldest run holding a continuation lease is
        resumed. A ``token`` other than the run's current lease means the
        callback is stale and nothing happens.

        Returns:
            Status after this invocation, or None if nothing was resumed.
        """
        if run_id is None:
            pending = await self._store.find_pending()
            if not pending:
                logger.info("No pending runs to continue")
                return None
            run_id = pending[0].run_id

        state = await self._store.load(run_id)
        if state is None:
            logger.warning("Continuation for unknown run %s ignored", run_id)
            return None

        with run_context(run_id, step="continue"):
            if state.is_terminal:
                logger.info("Run %s already %s, continuation ignored", run_id, state.status)
                await self._release_lease(state)
                return RunStatusSummary.from_state(state)

            if token is not None and token != state.continuation_token:
                logger.info("Stale continuation for %s ignored", run_id)
                return RunStatusSummary.from_state(state)

            budget = TimeBudget(self._settings.execution_budget_s, clock=self._clock)
            availability = self.availability()

            try:
                # Claim the lease so a duplicate delivery of the same callback goes stale.
                state.continuation_token = new_continuation_token()
                await self._store.save(state)
                self._scheduler.cancel(run_id)

                await self._drive(state, availability, budget)
            except CheckpointConflictError as e:
                logger.warning("Run %s changed by another invocation, stopping: %s", run_id, e)
                latest = await self._reconcile(state)
                return RunStatusSummary.from_state(latest) if latest else None
            except Exception as e:
                logger.exception("Run %s failed", run_id)
                state = await self._mark_failed(state, e)

        return RunStatusSummary.from_state(state)

    async def _drive(
        self, state: RunState, availability: SourceAvailability, budget: TimeBudget
    ) -> None:
        """Advance the run until it is terminal or the budget is spent."""
        while not state.is_terminal:
            if state.status in ("CREATED", "PLANNING"):
                if state.status == "CREATED":
                    transition(state, "PLANNING", message="Parsing instruction...")
                    await self._store.save(state)
                if state.plan is None:
                    await self._plan(state)
                await self._ensure_resources(state)
                await self._enter_next_stage(state, availability, after=None)
                continue

            if state.status == "COLLECTING":
                if budget.exhausted():
                    await self._arm_continuation(state, state.last_message or "Continuing...")
                    return
                await self._ensure_resources(state)
                source = state.current_source
                if source is None:
                    raise ValueError(f"Run {state.run_id} is COLLECTING without a source")
                outcome = await self._run_stage(state, source, availability, budget)
                if await self._handle_outcome(state, outcome, availability):
                    return
                continue

            if state.status == "FINALIZING":
                await self._finalize(state, availability)
                return

            raise InvalidTransitionError(state.run_id, state.status, "COLLECTING")

    async def _run_stage(
        self,
        state: RunState,
        source: str,
        availability: SourceAvailability,
        budget: TimeBudget,
    ) -> StageOutcome:
        collector = self._collectors.get(source)
        if collector is None:
            return StageFailed(source=source, error=f"No collector for source {source!r}")
        return await self._runner.run_stage(
            state, source, collector, availability, budget, self._store.save
        )

    async def _handle_outcome(
        self,
        state: RunState,
        outcome: StageOutcome,
        availability: SourceAvailability,
    ) -> bool:
        """Apply a stage outcome. Returns True when the invocation must end."""
        if isinstance(outcome, BudgetExhausted):
            progress = state.progress_for(outcome.source)
            await self._arm_continuation(
                state,
                f"Collecting {outcome.source}: {progress.collected}/{progress.target} "
                "(continuing in next invocation)",
            )
            return True

        if isinstance(outcome, StageFailed):
            state.last_error = f"{outcome.source}: {outcome.error}"
            logger.warning("Stage %s failed, moving on: %s", outcome.source, outcome.error)
        elif isinstance(outcome, StageCompleted):
            if outcome.skipped:
                logger.info("Stage %s skipped", outcome.source)
            else:
                logger.info(
                    "Stage %s done: %d/%d", outcome.source, outcome.collected, outcome.target
                )
        else:
            raise TypeError(f"Unknown stage outcome: {outcome!r}")

        await self._enter_next_stage(state, availability, after=outcome.source)
        return False

    async def _enter_next_stage(
        self,
        state: RunState,
        availability: SourceAvailability,
        after: str | None,
    ) -> None:
        source = first_pending_source(state, self._order, availability, after=after)
        if source is not None:
            transition(state, "COLLECTING", message=f"Collecting {source}...", source=source)
        else:
            transition(state, "FINALIZING", message="Finalizing...")
        await self._store.save(state)

    # ------------------------------------------------------------------
    # Planning, resources, finalization
    # ------------------------------------------------------------------

    async def _plan(self, state: RunState) -> None:
        plan = await self._planner.plan(state.instruction)
        self._apply_plan(state, plan)
        state.last_message = "Plan ready"
        await self._store.save(state)
        logger.info(
            "Plan for %s: %s",
            state.run_id,
            ", ".join(f"{s}={plan.target_for(s)}" for s in self._order),
        )

    def _apply_plan(self, state: RunState, plan: Plan) -> None:
        state.plan = plan
        for source in self._order:
            progress = state.progress_for(source)
            if progress.target == 0 and progress.collected == 0:
                progress.target = plan.target_for(source)

    async def _ensure_resources(self, state: RunState) -> None:
        """Create the sink and artifact containers once per run."""
        resources = state.resources
        changed = False

        if resources.sink_id is None:
            info = await self._sink.create_sink(state.run_id)
            resources.sink_id = info.sink_id
            resources.sink_location = info.location
            changed = True

        if resources.root_container_id is None:
            container = await self._artifacts.create_container(
                state.run_id,
                state.created_at,
                parent_id=state.options.target_container_id,
                sources=self._order,
            )
            resources.root_container_id = container.container_id
            resources.root_container_url = container.url
            for source, container_id in container.source_containers.items():
                resources.source_containers.setdefault(source, container_id)
            changed = True

        if changed:
            await self._store.save(state)

    async def _finalize(self, state: RunState, availability: SourceAvailability) -> None:
        if state.resources.sink_id is not None:
            await self._sink.finalize(state.resources.sink_id)

        total = state.total_collected()
        if total == 0:
            state.warning = ZERO_COLLECTED_WARNING
            message = (
                f"{ZERO_COLLECTED_WARNING} Source status: {availability.describe()}. "
                "Please check source configuration."
            )
            logger.warning("Run %s collected nothing (%s)", state.run_id, availability.describe())
        else:
            summary = ", ".join(
                f"{SOURCE_LABELS.get(s, s)} {p.collected}/{p.target}"
                for s, p in state.stage_progress.items()
                if s in self._order
            )
            message = f"Completed: {summary}"

        try:
            await self._artifacts.write_manifest(self._manifest(state, message, total))
        except Exception as e:
            logger.warning("Manifest write failed for %s: %s", state.run_id, e)

        transition(state, "COMPLETED", message=message)
        state.continuation_token = None
        await self._store.save(state)
        self._scheduler.cancel(state.run_id)
        logger.info("Run %s completed: %s", state.run_id, message)

    def _manifest(self, state: RunState, message: str, total: int) -> RunManifest:
        return RunManifest(
            run_id=state.run_id,
            instruction=state.instruction,
            status="COMPLETED",
            created_at=state.created_at,
            completed_at=utcnow(),
            sink_location=state.resources.sink_location,
            container_url=state.resources.root_container_url,
            total_collected=total,
            warning=state.warning,
            message=message,
            plan=state.plan.model_dump(mode="json") if state.plan else {},
            sources={
                source: SourceManifest(
                    collected=p.collected,
                    target=p.target,
                    expansions=p.expansions,
                    duplicates_skipped=p.duplicates_skipped,
                    exhausted=p.exhausted,
                )
                for source, p in state.stage_progress.items()
            },
        )

    # ------------------------------------------------------------------
    # Lease handling
    # ------------------------------------------------------------------

    async def _arm_continuation(self, state: RunState, message: str) -> None:
        """Persist a fresh lease, then arm the timer carrying it."""
        token = new_continuation_token()
        state.continuation_token = token
        state.last_message = message
        await self._store.save(state)
        self._scheduler.schedule_continuation(state.run_id, token)

    async def _release_lease(self, state: RunState) -> None:
        self._scheduler.cancel(state.run_id)
        if state.continuation_token is None:
            return
        state.continuation_token = None
        try:
            await self._store.save(state)
        except CheckpointConflictError:
            logger.debug("Lease release for %s lost a version race", state.run_id)

    async def _reconcile(self, state: RunState) -> RunState | None:
        """Fold this invocation's progress into the stored state after a lost race.

        Rows this invocation flushed are already in the sink; dropping their
        ids would make a later invocation emit them again. Status, lease and
        messages of the stored state are kept.

        Returns:
            The stored state after merging, or None if the run is gone.
        """
        latest: RunState | None = None
        for _ in range(3):
            latest = await self._store.load(state.run_id)
            if latest is None:
                return None
            changed = False
            for source, mine in state.stage_progress.items():
                theirs = latest.progress_for(source)
                expanded = mine.expansions > theirs.expansions
                if theirs.absorb(mine):
                    changed = True
                    if expanded and state.plan is not None:
                        latest.plan = state.plan
            if not changed:
                return latest
            try:
                await self._store.save(latest)
                logger.info("Merged progress of %s into its stored state", state.run_id)
                return latest
            except CheckpointConflictError:
                continue
        return latest

    async def _mark_failed(self, state: RunState, error: BaseException) -> RunState:
        """Move a run to FAILED with ``last_error``. Never raises.

        Returns:
            The latest known state of the run.
        """
        self._scheduler.cancel(state.run_id)
        for _ in range(2):
            if state.is_terminal:
                return state
            transition(state, "FAILED", message=f"Failed: {error}")
            state.last_error = str(error)
            state.continuation_token = None
            try:
                await self._store.save(state)
                return state
            except CheckpointConflictError:
                pass
            except Exception:
                logger.exception("Could not persist failure of %s", state.run_id)
                return state
            try:
                latest = await self._reconcile(state)
            except Exception:
                logger.exception("Could not merge progress of %s", state.run_id)
                return state
            if latest is None:
                return state
            state = latest
        return state

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    async def get_run_status(self, run_id: str) -> RunStatusSummary:
        """Raises: RunNotFoundError."""
        state = await self._store.load(run_id)
        if state is None:
            raise RunNotFoundError(run_id)
        return RunStatusSummary.from_state(state)

    async def list_runs(self, limit: int = 10) -> list[RunStatusSummary]:
        return [RunStatusSummary.from_state(s) for s in await self._store.list_recent(limit)]

    async def cancel_run(self, run_id: str) -> ControlResult:
        """Stop a non-terminal run. A running invocation notices on its next save.

        Raises:
            RunNotFoundError: Unknown run.
            InvalidTransitionError: Run already COMPLETED or FAILED.
        """
        state = await self._store.load(run_id)
        if state is None:
            raise RunNotFoundError(run_id)
        if state.is_terminal:
            raise InvalidTransitionError(run_id, state.status, "FAILED")

        transition(state, "FAILED", message="Cancelled by user")
        state.continuation_token = None
        await self._store.save(state)
        self._scheduler.cancel(run_id)
        logger.info("Run %s cancelled", run_id)
        return ControlResult(run_id=run_id, status=state.status, message="Run cancelled")

    async def retry_run(self, run_id: str) -> ControlResult:
        """Resume a FAILED run from the first source still under target.

        Raises:
            RunNotFoundError: Unknown run.
            InvalidTransitionError: Run is not FAILED, or failed before planning.
        """
        state = await self._store.load(run_id)
        if state is None:
            raise RunNotFoundError(run_id)
        if state.status != "FAILED":
            raise InvalidTransitionError(run_id, state.status, "COLLECTING")
        if state.plan is None:
            raise InvalidTransitionError(run_id, state.status, "PLANNING")

        availability = self.availability()
        source = first_pending_source(state, self._order, availability)
        if source is not None:
            transition(state, "COLLECTING", message="Retrying...", source=source, recovery=True)
            resumed_at = f"COLLECTING({source})"
        else:
            transition(state, "FINALIZING", message="Retrying...", recovery=True)
            resumed_at = "FINALIZING"
        state.last_error = None

        with run_context(run_id, step="retry"):
            await self._arm_continuation(state, "Retrying...")
        logger.info("Run %s retrying from %s", run_id, resumed_at)
        return ControlResult(
            run_id=run_id, status=state.status, message=f"Retrying from {resumed_at}"
        )

    async def cleanup_old_runs(self, keep: int | None = None) -> int:
        """Retention housekeeping; never touches a non-terminal run."""
        return await self._store.cleanup_old_runs(keep or self._settings.retention_keep)

    async def aclose(self) -> None:
        """Release collector HTTP clients and the checkpoint backend."""
        for collector in self._collectors.values():
            await collector.aclose()
        self._store.close()
