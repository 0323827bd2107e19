"""Core execution engine, safety controls and persistence abstractions.

This package contains the "engine room" of the system.

Design overview
---------------

An execution is one run of an agent against a goal. It advances one step at
a time:

- The planning oracle proposes the next action given the goal and the step
  ledger.
- The safety checker classifies it (denied, risky, sensitive); the hook
  pipeline intercepts it at every lifecycle event; the budget gate bills and
  caps model usage.
- The action executor (by default the capability registry) performs it and
  reports the files and rows it touched so a rollback can undo them.

Execution is performed by ``agent_core.runtime.ExecutionEngine`` using
LangGraph. Every state and step change is persisted, published to
subscribers and written to the audit log via repository interfaces.

Typical usage
-------------

Most applications should use ``agent_core.service.ExecutionService``, wired by
``agent_core.factory.build_service``:

1. Register an agent profile.
2. Start an execution with a goal.
3. Approve, reject or skip steps that wait for confirmation.
4. Inspect, replay or roll back the execution.
"""

from .errors import (
    BudgetExceeded,
    Forbidden,
    HeroEngineError,
    HookBlocked,
    InvalidState,
    InvalidTransition,
    NotFound,
    OracleFailure,
    PersistenceFailure,
)
from .factory import build_engine, build_service
from .runtime import EngineConfig, EngineDeps, ExecutionEngine
from .schemas.domain import (
    AgentProfile,
    AgentType,
    AutonomyProfile,
    Execution,
    ExecutionStatus,
    FailureReason,
    RiskLevel,
    Step,
    StepStatus,
)
from .service import AgentCreate, ExecutionService, ExecutionState

__all__ = [
    "AgentCreate",
    "AgentProfile",
    "AgentType",
    "AutonomyProfile",
    "BudgetExceeded",
    "EngineConfig",
    "EngineDeps",
    "Execution",
    "ExecutionEngine",
    "ExecutionService",
    "ExecutionState",
    "ExecutionStatus",
    "FailureReason",
    "Forbidden",
    "HeroEngineError",
    "HookBlocked",
    "InvalidState",
    "InvalidTransition",
    "NotFound",
    "OracleFailure",
    "PersistenceFailure",
    "RiskLevel",
    "Step",
    "StepStatus",
    "build_engine",
    "build_service",
]
