# src/core/state_machine.py — v1
"""Run status state machine.

CREATED -> PLANNING -> COLLECTING(source...) -> FINALIZING -> COMPLETED,
any non-terminal state -> FAILED, and FAILED -> COLLECTING | FINALIZING
through explicit recovery only.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pulsecollect.core.errors import InvalidTransitionError
from pulsecollect.core.models import RunStatus, TERMINAL_STATUSES, utcnow

if TYPE_CHECKING:
    from pulsecollect.core.models import RunState, SourceAvailability

_FORWARD_EDGES: dict[str, frozenset[str]] = {
    "CREATED": frozenset({"PLANNING", "COLLECTING", "FINALIZING"}),
    "PLANNING": frozenset({"COLLECTING", "FINALIZING"}),
    # COLLECTING -> COLLECTING moves to the next source
    "COLLECTING": frozenset({"COLLECTING", "FINALIZING"}),
    "FINALIZING": frozenset({"COMPLETED"}),
    "COMPLETED": frozenset(),
    "FAILED": frozenset(),
}

_RECOVERY_EDGES: frozenset[str] = frozenset({"COLLECTING", "FINALIZING"})


def can_transition(current: str, target: str, recovery: bool = False) -> bool:
    """Return True if ``current -> target`` is a legal edge."""
    if target == "FAILED":
        return current not in TERMINAL_STATUSES
    if current == "FAILED":
        return recovery and target in _RECOVERY_EDGES
    return target in _FORWARD_EDGES.get(current, frozenset())


def transition(
    state: RunState,
    target: RunStatus,
    message: str | None = None,
    source: str | None = None,
    recovery: bool = False,
) -> RunState:
    """Apply a status change in place, validating the edge.

    Raises:
        InvalidTransitionError: If the edge is not part of the state machine.
    """
    if not can_transition(state.status, target, recovery=recovery):
        raise InvalidTransitionError(state.run_id, state.status, target)
    if target == "COLLECTING" and source is None:
        raise ValueError("COLLECTING requires a source")

    state.status = target
    state.current_source = source if target == "COLLECTING" else None
    if message is not None:
        state.last_message = message
    state.updated_at = utcnow()
    return state


def first_pending_source(
    state: RunState,
    order: list[str],
    availability: SourceAvailability,
    after: str | None = None,
) -> str | None:
    """Return the next source that still has work, in configured order.

    A source has work when it is usable, has a positive target, is under
    target and has not been marked exhausted. ``after`` restricts the search
    to sources that come later in ``order``.
    """
    candidates = order
    if after is not None and after in order:
        candidates = order[order.index(after) + 1:]

    for source in candidates:
        if not availability.is_usable(source):
            continue
        progress = state.stage_progress.get(source)
        if progress is None or progress.target <= 0:
            continue
        if progress.exhausted or not progress.is_under_target:
            continue
        return source
    return None
