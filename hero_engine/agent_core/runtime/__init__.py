"""LangGraph-based execution runtime.

The runtime drives an execution's step loop: the planning oracle proposes one
action at a time and the engine classifies, confirms, checkpoints, executes
and journals it, consulting the hook pipeline and the budget gate at every
step boundary.

The main entry point is ``ExecutionEngine``.

State is persisted and auditable via ``EngineDeps``, which provides the
execution repository, the checkpoint manager, the hook pipeline, the budget
gate, the audit logger and the event bus that fans step and state changes
out to subscribers.
"""

from .engine import ExecutionEngine
from .events import ExecutionEventBus, Subscription
from .models import EngineConfig, EngineDeps
from .transitions import ALLOWED_TRANSITIONS, ROLLBACK_SOURCES, can_transition, ensure_transition

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ROLLBACK_SOURCES",
    "EngineConfig",
    "EngineDeps",
    "ExecutionEngine",
    "ExecutionEventBus",
    "Subscription",
    "can_transition",
    "ensure_transition",
]
