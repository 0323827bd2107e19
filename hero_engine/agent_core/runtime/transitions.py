from __future__ import annotations

"""Execution lifecycle transition table.

::

    idle ──► running ◄──► paused
               │  ▲
               │  └── awaiting_confirmation ◄─┘
               ├──► complete
               └──► failed ◄── paused | awaiting_confirmation | idle (cancel)

``complete`` and ``failed`` are terminal. Rollback re-seats an execution in
``paused`` from ``paused``, ``awaiting_confirmation`` or ``failed``; that is a
restoration rather than a lifecycle edge and is checked separately.
"""

from typing import Dict, FrozenSet

from ..errors import InvalidTransition
from ..schemas.domain import Execution, ExecutionStatus

S = ExecutionStatus

ALLOWED_TRANSITIONS: Dict[ExecutionStatus, FrozenSet[ExecutionStatus]] = {
    S.idle: frozenset({S.running, S.failed}),
    S.running: frozenset({S.paused, S.awaiting_confirmation, S.complete, S.failed}),
    S.paused: frozenset({S.running, S.failed}),
    S.awaiting_confirmation: frozenset({S.running, S.failed}),
    S.complete: frozenset(),
    S.failed: frozenset(),
}

ROLLBACK_SOURCES: FrozenSet[ExecutionStatus] = frozenset({S.paused, S.awaiting_confirmation, S.failed})


def can_transition(current: ExecutionStatus, target: ExecutionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(execution: Execution, target: ExecutionStatus) -> None:
    """
    Validate a lifecycle edge for ``execution``.

    Raises:
        InvalidTransition: The edge is not in the table. The execution is left
            unchanged.
    """
    if not can_transition(execution.status, target):
        raise InvalidTransition(execution.id, execution.status.value, target.value)
