from __future__ import annotations

import pytest

from hero_engine.agent_core.errors import InvalidTransition
from hero_engine.agent_core.runtime.transitions import (
    ALLOWED_TRANSITIONS,
    ROLLBACK_SOURCES,
    can_transition,
    ensure_transition,
)
from hero_engine.agent_core.schemas.domain import Execution, ExecutionStatus

S = ExecutionStatus


@pytest.mark.parametrize(
    "current,target",
    [
        (S.idle, S.running),
        (S.idle, S.failed),
        (S.running, S.paused),
        (S.running, S.awaiting_confirmation),
        (S.running, S.complete),
        (S.running, S.failed),
        (S.paused, S.running),
        (S.paused, S.failed),
        (S.awaiting_confirmation, S.running),
        (S.awaiting_confirmation, S.failed),
    ],
)
def test_allowed_edges(current: ExecutionStatus, target: ExecutionStatus) -> None:
    assert can_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (S.idle, S.paused),
        (S.idle, S.complete),
        (S.paused, S.complete),
        (S.paused, S.awaiting_confirmation),
        (S.awaiting_confirmation, S.paused),
        (S.running, S.idle),
    ],
)
def test_disallowed_edges(current: ExecutionStatus, target: ExecutionStatus) -> None:
    assert not can_transition(current, target)


def test_terminal_states_have_no_exits() -> None:
    assert ALLOWED_TRANSITIONS[S.complete] == frozenset()
    assert ALLOWED_TRANSITIONS[S.failed] == frozenset()
    assert all(not can_transition(S.complete, t) for t in S)


def test_every_status_has_a_row() -> None:
    assert set(ALLOWED_TRANSITIONS) == set(S)


def test_rollback_sources() -> None:
    assert ROLLBACK_SOURCES == {S.paused, S.awaiting_confirmation, S.failed}


def test_ensure_transition_leaves_execution_unchanged_on_error() -> None:
    execution = Execution(user_id="u", agent_id="a", goal="g", status=S.complete)
    with pytest.raises(InvalidTransition) as exc_info:
        ensure_transition(execution, S.running)
    assert execution.status == S.complete
    assert exc_info.value.current == "complete"
    assert exc_info.value.target == "running"
    assert "cannot transition from 'complete' to 'running'" in str(exc_info.value)
