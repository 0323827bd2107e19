"""Error types for the agent execution engine.

Defines the exception hierarchy raised by the state machine, the hook
pipeline, the checkpoint manager and the budget gate. The HTTP layer maps
each class to a status code in ``hero_engine.server.exception_handlers``.
"""

from __future__ import annotations

from typing import Optional


class HeroEngineError(Exception):
    """Base error for all engine exceptions."""

    code: str = "engine_error"


class InvalidTransition(HeroEngineError):
    """Raised when a requested lifecycle edge is not in the transition table."""

    code = "invalid_transition"

    def __init__(self, execution_id: str, current: str, target: str) -> None:
        self.execution_id = execution_id
        self.current = current
        self.target = target
        super().__init__(f"Execution '{execution_id}' cannot transition from '{current}' to '{target}'")


class NotFound(HeroEngineError):
    """Raised for unknown executions, checkpoints, hooks or agents."""

    code = "not_found"

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: '{identifier}'")


class Forbidden(HeroEngineError):
    """Raised when the caller does not own the target resource."""

    code = "forbidden"

    def __init__(self, message: str = "You do not have access to this resource") -> None:
        super().__init__(message)


class InvalidState(HeroEngineError):
    """Raised when an operation is not allowed in the resource's current state."""

    code = "invalid_state"


class BudgetExceeded(HeroEngineError):
    """Raised when the budget gate refuses a new execution."""

    code = "budget_exceeded"

    def __init__(self, reason: str, remaining: Optional[float] = None) -> None:
        self.reason = reason
        self.remaining = remaining
        super().__init__(reason)


class HookBlocked(HeroEngineError):
    """Raised when a guard hook blocks the triggering action."""

    code = "hook_blocked"

    def __init__(self, hook_name: str, reason: str) -> None:
        self.hook_name = hook_name
        self.reason = reason
        super().__init__(f"Blocked by hook '{hook_name}': {reason}")


class OracleFailure(HeroEngineError):
    """Raised when the planning or judgment oracle errors."""

    code = "oracle_failure"


class PersistenceFailure(HeroEngineError):
    """Raised when a record cannot be written, including version conflicts."""

    code = "persistence_failure"
