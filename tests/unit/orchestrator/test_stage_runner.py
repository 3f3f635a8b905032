# tests/unit/orchestrator/test_stage_runner.py — v1
"""Tests for orchestrator/stage_runner.py — one stage against scripted pages."""

from __future__ import annotations

import pytest

from pulsecollect.core.models import (
    BudgetExhausted,
    Plan,
    RunState,
    SourceAvailability,
    StageCompleted,
    StageFailed,
)
from pulsecollect.orchestrator.budget import TimeBudget
from pulsecollect.orchestrator.stage_runner import StageRunner
from pulsecollect.transport.retry import HttpStatusError, RetryPolicy

USABLE = SourceAvailability(usable={"x": True})
NO_WAIT = RetryPolicy(max_retries=2, base_delay_s=0.0, max_delay_s=0.0, jitter_s=0.0)


def ids(prefix: str, n: int, start: int = 1) -> list[str]:
    return [f"{prefix}{i}" for i in range(start, start + n)]


def make_state(target: int, source: str = "x", container: bool = True) -> RunState:
    state = RunState(
        run_id="r1",
        instruction="coffee",
        status="COLLECTING",
        current_source=source,
        plan=Plan(target_counts={source: target}, keywords=["coffee"]),
    )
    state.progress_for(source).target = target
    state.resources.sink_id = "r1"
    if container:
        state.resources.source_containers = {source: f"runs/r1/{source}"}
    return state


class Persist:
    """Records snapshots and checks rows were flushed before each save."""

    def __init__(self, sink, source: str = "x") -> None:
        self.sink = sink
        self.source = source
        self.snapshots: list[RunState] = []

    async def __call__(self, state: RunState) -> RunState:
        collected = state.stage_progress[self.source].collected
        assert len(self.sink.rows.get(self.source, [])) == collected
        self.snapshots.append(state.model_copy(deep=True))
        return state


@pytest.fixture
def runner(memory_sink, memory_artifacts, no_sleep):
    return StageRunner(
        sink=memory_sink,
        artifact_store=memory_artifacts,
        policy=NO_WAIT,
        batch_size=5,
        max_expansions=1,
        max_pages_per_stage=20,
        sleep=no_sleep,
    )


class TestTargetAndPaging:
    @pytest.mark.asyncio
    async def test_pages_until_target(self, runner, scripted_collector, memory_sink, fake_clock):
        collector = scripted_collector("x", [[ids("a", 5), ids("b", 5), ids("c", 2)]])
        state = make_state(12)
        persist = Persist(memory_sink)

        outcome = await runner.run_stage(
            state, "x", collector, USABLE, TimeBudget(300, clock=fake_clock), persist,
        )

        assert isinstance(outcome, StageCompleted)
        assert outcome.collected == 12
        assert not outcome.shortfall
        assert collector.calls == [(0, None), (0, "1"), (0, "2")]
        assert memory_sink.ids("x") == ids("a", 5) + ids("b", 5) + ids("c", 2)
        assert [s.stage_progress["x"].collected for s in persist.snapshots] == [5, 10, 12]

    @pytest.mark.asyncio
    async def test_stops_mid_page_at_target(self, runner, scripted_collector, memory_sink, fake_clock):
        collector = scripted_collector("x", [[ids("a", 5)]])
        state = make_state(3)
        outcome = await runner.run_stage(
            state, "x", collector, USABLE, TimeBudget(300, clock=fake_clock), Persist(memory_sink),
        )
        assert outcome.collected == 3
        assert memory_sink.ids("x") == ["a1", "a2", "a3"]

    @pytest.mark.asyncio
    async def test_duplicates_skipped(self, runner, scripted_collector, memory_sink, fake_clock):
        collector = scripted_collector("x", [[["a", "b", "a"], ["b", "c"]]])
        state = make_state(3)
        await runner.run_stage(
            state, "x", collector, USABLE, TimeBudget(300, clock=fake_clock), Persist(memory_sink),
        )
        progress = state.stage_progress["x"]
        assert progress.collected == 3
        assert progress.duplicates_skipped == 2
        assert memory_sink.ids("x") == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_sink_failure_leaves_progress_untouched(self, runner, scripted_collector, memory_sink, fake_clock):
        async def broken_append(sink_id, source, rows):
            raise OSError("sink offline")

        memory_sink.append_rows = broken_append
        collector = scripted_collector("x", [[ids("a", 5), ids("b", 5)]])
        state = make_state(10)

        with pytest.raises(OSError, match="sink offline"):
            await runner.run_stage(
                state, "x", collector, USABLE, TimeBudget(300, clock=fake_clock), Persist(memory_sink),
            )

        progress = state.stage_progress["x"]
        assert progress.collected == 0
        assert progress.processed_ids == set()
        assert progress.cursor is None

    @pytest.mark.asyncio
    async def test_already_met_target_does_nothing(self, runner, scripted_collector, memory_sink, fake_clock):
        collector = scripted_collector("x", [[ids("a", 5)]])
        state = make_state(1)
        state.stage_progress["x"].record("done")
        outcome = await runner.run_stage(
            state, "x", collector, USABLE, TimeBudget(300, clock=fake_clock), Persist(memory_sink),
        )
        assert isinstance(outcome, StageCompleted)
        assert collector.calls == []

    @pytest.mark.asyncio
    async def test_unusable_source_skipped(self, runner, scripted_collector, memory_sink, fake_clock):
        collector = scripted_collector("x", [[ids("a", 5)]])
        outcome = await runner.run_stage(
            make_state(5), "x", collector, SourceAvailability(usable={"x": False}),
            TimeBudget(300, clock=fake_clock), Persist(memory_sink),
        )
        assert isinstance(outcome, StageCompleted)
        assert outcome.skipped
        assert collector.calls == []


class TestBudget:
    @pytest.mark.asyncio
    async def test_budget_exhausted_keeps_cursor(self, runner, scripted_collector, memory_sink, fake_clock):
        collector = scripted_collector(
            "x", [[ids("a", 5), ids("b", 5)]],
            on_collect=lambda n: fake_clock.advance(400) if n == 1 else None,
        )
        state = make_state(10)
        persist = Persist(memory_sink)

        outcome = await runner.run_stage(
            state, "x", collector, USABLE, TimeBudget(300, clock=fake_clock), persist,
        )
        assert isinstance(outcome, BudgetExhausted)
        assert outcome.cursor == "1"
        assert persist.snapshots[-1].stage_progress["x"].cursor == "1"

        # Next invocation resumes from the stored cursor.
        outcome = await runner.run_stage(
            state, "x", collector, USABLE, TimeBudget(300, clock=fake_clock), persist,
        )
        assert isinstance(outcome, StageCompleted)
        assert collector.calls == [(0, None), (0, "1")]
        assert memory_sink.ids("x") == ids("a", 5) + ids("b", 5)


class TestExpansion:
    @pytest.mark.asyncio
    async def test_expands_once_then_accepts_shortfall(self, runner, scripted_collector, memory_sink, fake_clock):
        collector = scripted_collector("x", [[ids("a", 7)], [[]]])
        state = make_state(10)
        persist = Persist(memory_sink)

        outcome = await runner.run_stage(
            state, "x", collector, USABLE, TimeBudget(300, clock=fake_clock), persist,
        )

        assert isinstance(outcome, StageCompleted)
        assert outcome.collected == 7
        assert outcome.shortfall
        assert collector.expansions == 1
        assert collector.calls == [(0, None), (1, None)]
        progress = state.stage_progress["x"]
        assert progress.expansions == 1
        assert progress.exhausted
        messages = [s.last_message for s in persist.snapshots]
        assert "x: expanding search (7/10)" in messages
        assert messages[-1] == "x: accepted 7/10"

    @pytest.mark.asyncio
    async def test_expanded_pass_can_reach_target(self, runner, scripted_collector, memory_sink, fake_clock):
        collector = scripted_collector("x", [[ids("a", 3)], [ids("a", 2) + ids("z", 4)]])
        state = make_state(6)
        outcome = await runner.run_stage(
            state, "x", collector, USABLE, TimeBudget(300, clock=fake_clock), Persist(memory_sink),
        )
        assert outcome.collected == 6
        assert not outcome.shortfall
        assert state.stage_progress["x"].duplicates_skipped == 2

    @pytest.mark.asyncio
    async def test_expansion_deferred_when_little_time_left(self, runner, scripted_collector, memory_sink, fake_clock):
        collector = scripted_collector(
            "x", [[ids("a", 2)], [ids("z", 5)]],
            on_collect=lambda n: fake_clock.advance(280) if n == 1 else None,
        )
        state = make_state(5)
        outcome = await runner.run_stage(
            state, "x", collector, USABLE, TimeBudget(300, clock=fake_clock), Persist(memory_sink),
        )
        assert isinstance(outcome, BudgetExhausted)
        progress = state.stage_progress["x"]
        assert progress.expansions == 1
        assert progress.cursor is None
        assert state.plan.query_strategy["x"]["pass"] == 1
        assert len(collector.calls) == 1

    @pytest.mark.asyncio
    async def test_page_cap_counts_as_dry(self, memory_sink, memory_artifacts, scripted_collector, fake_clock, no_sleep):
        runner = StageRunner(
            memory_sink, memory_artifacts, policy=NO_WAIT, batch_size=5,
            max_expansions=0, max_pages_per_stage=2, sleep=no_sleep,
        )
        collector = scripted_collector("x", [[["a"], ["b"], ["c"], ["d"]]])
        state = make_state(10)
        outcome = await runner.run_stage(
            state, "x", collector, USABLE, TimeBudget(300, clock=fake_clock), Persist(memory_sink),
        )
        assert outcome.collected == 2
        assert outcome.shortfall
        assert state.stage_progress["x"].exhausted


class TestArtifacts:
    @pytest.mark.asyncio
    async def test_primary_artifact_becomes_drive_url(self, runner, scripted_collector, memory_sink, memory_artifacts, fake_clock):
        collector = scripted_collector("x", [[["a"]]])
        await runner.run_stage(
            make_state(1), "x", collector, USABLE, TimeBudget(300, clock=fake_clock), Persist(memory_sink),
        )
        row = memory_sink.rows["x"][0]
        assert row["drive_url"] == "memory://runs/r1/x/a/watch.html"
        assert row["memo"] == ""
        assert "runs/r1/x/a/raw.json" in memory_artifacts.artifacts

    @pytest.mark.asyncio
    async def test_failed_artifact_noted_in_memo(self, runner, scripted_collector, memory_sink, memory_artifacts, fake_clock):
        memory_artifacts.fail_names = {"raw.json"}
        collector = scripted_collector("x", [[["a", "b"]]])
        state = make_state(2)
        await runner.run_stage(
            state, "x", collector, USABLE, TimeBudget(300, clock=fake_clock), Persist(memory_sink),
        )
        assert state.stage_progress["x"].collected == 2
        row = memory_sink.rows["x"][0]
        assert row["memo"] == "raw.json failed: disk full writing raw.json"
        assert row["drive_url"].endswith("/a/watch.html")

    @pytest.mark.asyncio
    async def test_transient_artifact_failure_retried(self, runner, scripted_collector, memory_sink, memory_artifacts, fake_clock):
        write = memory_artifacts.write_artifact
        failures = [HttpStatusError(503, "storage busy")]

        async def flaky_write(container_id, item_id, name, payload):
            if name == "raw.json" and failures:
                raise failures.pop()
            return await write(container_id, item_id, name, payload)

        memory_artifacts.write_artifact = flaky_write
        collector = scripted_collector("x", [[["a"]]])
        await runner.run_stage(
            make_state(1), "x", collector, USABLE, TimeBudget(300, clock=fake_clock), Persist(memory_sink),
        )
        assert memory_sink.rows["x"][0]["memo"] == ""
        assert "runs/r1/x/a/raw.json" in memory_artifacts.artifacts

    @pytest.mark.asyncio
    async def test_missing_container_noted(self, runner, scripted_collector, memory_sink, fake_clock):
        collector = scripted_collector("x", [[["a"]]])
        await runner.run_stage(
            make_state(1, container=False), "x", collector, USABLE,
            TimeBudget(300, clock=fake_clock), Persist(memory_sink),
        )
        assert memory_sink.rows["x"][0]["memo"] == "artifacts skipped: no container"
        assert memory_sink.rows["x"][0]["drive_url"] == ""


class TestFailures:
    @pytest.mark.asyncio
    async def test_transient_error_retried(self, runner, scripted_collector, memory_sink, fake_clock):
        collector = scripted_collector(
            "x", [[["a"]]], errors=[HttpStatusError(503, "unavailable")],
        )
        outcome = await runner.run_stage(
            make_state(1), "x", collector, USABLE, TimeBudget(300, clock=fake_clock), Persist(memory_sink),
        )
        assert isinstance(outcome, StageCompleted)
        assert collector.calls == [(0, None), (0, None)]

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_stage(self, runner, scripted_collector, memory_sink, fake_clock):
        collector = scripted_collector("x", [[["a"]]], errors=[HttpStatusError(401, "bad key")])
        persist = Persist(memory_sink)
        outcome = await runner.run_stage(
            make_state(1), "x", collector, USABLE, TimeBudget(300, clock=fake_clock), persist,
        )
        assert isinstance(outcome, StageFailed)
        assert "bad key" in outcome.error
        assert len(collector.calls) == 1
        assert len(persist.snapshots) == 1

    @pytest.mark.asyncio
    async def test_missing_plan_raises(self, runner, scripted_collector, memory_sink, fake_clock):
        state = make_state(1)
        state.plan = None
        with pytest.raises(ValueError, match="no plan"):
            await runner.run_stage(
                state, "x", scripted_collector("x", [[["a"]]]), USABLE,
                TimeBudget(300, clock=fake_clock), Persist(memory_sink),
            )
