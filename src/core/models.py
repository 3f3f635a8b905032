# src/core/models.py — v1
"""Core domain models: Plan, StageProgress, RunState and stage outcomes.

RunState is the only mutable shared entity. It is persisted whole by the
checkpoint store and mutated only by the orchestrator.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, field_serializer, field_validator

RunStatus = Literal[
    "CREATED",
    "PLANNING",
    "COLLECTING",
    "FINALIZING",
    "COMPLETED",
    "FAILED",
]

TERMINAL_STATUSES: frozenset[str] = frozenset({"COMPLETED", "FAILED"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# === PLAN ===


class TimeWindow(BaseModel):
    """Content time window requested by the instruction."""

    start_date: datetime | None = None
    end_date: datetime | None = None
    description: str = "recent"


class Plan(BaseModel):
    """Structured collection plan produced by the planner.

    ``query_strategy`` is opaque per-source data only the matching collector
    interprets.
    """

    target_platforms: list[str] = Field(default_factory=list)
    target_counts: dict[str, int] = Field(default_factory=dict)
    keywords: list[str] = Field(default_factory=list)
    hashtags: list[str] = Field(default_factory=list)
    creator_handles: list[str] = Field(default_factory=list)
    time_window: TimeWindow = Field(default_factory=TimeWindow)
    region_code: str = ""
    content_category: str = "general"
    query_strategy: dict[str, dict[str, Any]] = Field(default_factory=dict)

    def target_for(self, source: str) -> int:
        return max(0, int(self.target_counts.get(source, 0)))

    def strategy_for(self, source: str) -> dict[str, Any]:
        """Return (and create if needed) the mutable strategy dict for a source."""
        return self.query_strategy.setdefault(source, {})


# === PROGRESS / RESOURCES ===


class StageProgress(BaseModel):
    """Checkpointed progress for one source within a run.

    ``processed_ids`` is the within-run dedup ledger. It only grows, and an
    id enters it only once its row is in the sink, so ``collected`` always
    equals the ledger size. Stored as a sorted list.
    """

    collected: int = 0
    target: int = 0
    cursor: str | None = None
    processed_ids: set[str] = Field(default_factory=set)
    expansions: int = 0
    duplicates_skipped: int = 0
    exhausted: bool = False

    @field_serializer("processed_ids")
    def _sorted_ids(self, ids: set[str]) -> list[str]:
        return sorted(ids)

    @property
    def remaining(self) -> int:
        return max(0, self.target - self.collected)

    @property
    def is_under_target(self) -> bool:
        return self.collected < self.target

    def has_processed(self, item_id: str) -> bool:
        return item_id in self.processed_ids

    def record(self, item_id: str) -> None:
        """Add an id to the ledger and count it as collected."""
        if item_id in self.processed_ids:
            return
        self.processed_ids.add(item_id)
        self.collected += 1

    def absorb(self, other: StageProgress) -> bool:
        """Fold in progress saved by a concurrent writer of the same run.

        The ledger becomes the union of both; cursor, expansions and
        exhaustion follow whichever side got further. Returns True if
        anything changed.
        """
        new_ids = other.processed_ids - self.processed_ids
        ahead = (other.expansions, len(other.processed_ids)) > (
            self.expansions, len(self.processed_ids)
        )
        if not new_ids and not ahead:
            return False
        if ahead:
            self.cursor = other.cursor
            self.expansions = other.expansions
            self.exhausted = other.exhausted
        self.processed_ids |= new_ids
        self.collected = len(self.processed_ids)
        self.duplicates_skipped = max(self.duplicates_skipped, other.duplicates_skipped)
        return True


class RunResources(BaseModel):
    """Identifiers of externally created resources; written once."""

    sink_id: str | None = None
    sink_location: str | None = None
    root_container_id: str | None = None
    root_container_url: str | None = None
    source_containers: dict[str, str] = Field(default_factory=dict)

    @property
    def is_populated(self) -> bool:
        return self.sink_id is not None and self.root_container_id is not None


# One path segment: starts alphanumeric, so "." and ".." never match.
SAFE_ID_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]{0,127}")


class RunOptions(BaseModel):
    """Caller-provided overrides for a run.

    Both ids end up in sink and artifact paths, so each must be a plain
    path segment; ``target_container_id`` may nest segments with ``/``.
    """

    external_run_id: str | None = None
    target_container_id: str | None = None
    origin: Literal["ui", "api", "cli"] = "cli"

    @field_validator("external_run_id")
    @classmethod
    def validate_run_id(cls, v: str | None) -> str | None:  # noqa: N805
        if v is not None and not SAFE_ID_PATTERN.fullmatch(v):
            raise ValueError(
                f"invalid run id {v!r}: use letters, digits, '_', '-' or '.', "
                "starting with a letter or digit"
            )
        return v

    @field_validator("target_container_id")
    @classmethod
    def validate_container_id(cls, v: str | None) -> str | None:  # noqa: N805
        if v is None:
            return v
        segments = v.strip("/").split("/")
        if not all(SAFE_ID_PATTERN.fullmatch(s) for s in segments):
            raise ValueError(f"invalid container id {v!r}")
        return "/".join(segments)


class RunState(BaseModel):
    """Full persisted state of a run (the checkpoint)."""

    run_id: str
    status: RunStatus = "CREATED"
    current_source: str | None = None
    instruction: str
    plan: Plan | None = None
    stage_progress: dict[str, StageProgress] = Field(default_factory=dict)
    resources: RunResources = Field(default_factory=RunResources)
    options: RunOptions = Field(default_factory=RunOptions)

    last_error: str | None = None
    last_message: str | None = None
    warning: str | None = None

    # Per-run continuation lease; a callback carrying another token is stale.
    continuation_token: str | None = None
    version: int = 0

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def progress_for(self, source: str) -> StageProgress:
        """Return the progress record for a source, creating an empty one."""
        if source not in self.stage_progress:
            self.stage_progress[source] = StageProgress()
        return self.stage_progress[source]

    def total_collected(self) -> int:
        return sum(p.collected for p in self.stage_progress.values())


# === COLLECTOR CONTRACT ===


class CollectBatch(BaseModel):
    """One page returned by a stage collector."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False


class Artifact(BaseModel):
    """Item-level artifact to archive alongside a collected row."""

    name: str
    payload: str
    is_primary: bool = False


class SourceAvailability(BaseModel):
    """Snapshot of which sources are usable, taken once per invocation."""

    usable: dict[str, bool] = Field(default_factory=dict)
    configured: dict[str, bool] = Field(default_factory=dict)
    mock_mode: bool = False

    def is_usable(self, source: str) -> bool:
        return self.usable.get(source, False)

    @property
    def any_usable(self) -> bool:
        return any(self.usable.values())

    def describe(self) -> str:
        parts = [
            f"{name}: {'usable' if ok else 'not usable'}"
            for name, ok in self.usable.items()
        ]
        if self.mock_mode:
            parts.append("mock mode: on")
        return ", ".join(parts)


# === STAGE OUTCOMES ===


class StageCompleted(BaseModel):
    """Stage reached its target or accepted a shortfall."""

    kind: Literal["completed"] = "completed"
    source: str
    collected: int = 0
    target: int = 0
    skipped: bool = False
    shortfall: bool = False


class BudgetExhausted(BaseModel):
    """Time budget spent mid-stage; the checkpoint is already persisted."""

    kind: Literal["budget_exhausted"] = "budget_exhausted"
    source: str
    collected: int = 0
    cursor: str | None = None


class StageFailed(BaseModel):
    """Stage could not proceed; recorded and skipped, the run carries on."""

    kind: Literal["failed"] = "failed"
    source: str
    error: str
    collected: int = 0


StageOutcome = StageCompleted | BudgetExhausted | StageFailed


# === CONTROL SURFACE RESULTS ===


class SourceProgressSummary(BaseModel):
    collected: int
    target: int
    expansions: int = 0
    exhausted: bool = False


class RunStatusSummary(BaseModel):
    """Read-only view returned to pollers."""

    run_id: str
    status: RunStatus
    current_source: str | None = None
    progress: dict[str, SourceProgressSummary] = Field(default_factory=dict)
    last_message: str | None = None
    last_error: str | None = None
    warning: str | None = None
    sink_location: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_state(cls, state: RunState) -> RunStatusSummary:
        return cls(
            run_id=state.run_id,
            status=state.status,
            current_source=state.current_source,
            progress={
                name: SourceProgressSummary(
                    collected=p.collected,
                    target=p.target,
                    expansions=p.expansions,
                    exhausted=p.exhausted,
                )
                for name, p in state.stage_progress.items()
            },
            last_message=state.last_message,
            last_error=state.last_error,
            warning=state.warning,
            sink_location=state.resources.sink_location,
            created_at=state.created_at,
            updated_at=state.updated_at,
        )


class StartRunResult(BaseModel):
    run_id: str
    status: RunStatus
    sink_location: str | None = None
    root_container_url: str | None = None
    plan: Plan | None = None


class ControlResult(BaseModel):
    """Result of cancel/retry operations."""

    run_id: str
    status: RunStatus
    message: str
