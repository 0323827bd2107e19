from __future__ import annotations

"""Runtime dependency bundle, tunables and LangGraph state types.

The runtime engine is dependency-injected.

- ``EngineDeps`` collects the repositories, managers and oracles the engine
  needs.
- ``EngineConfig`` holds the engine-level tunables.
- ``_GraphState`` is the mutable state passed between LangGraph nodes. It is
  deliberately tiny: the execution record is the source of truth and every
  node reloads it.
"""

from dataclasses import dataclass
from typing import Literal, NotRequired, Optional, Required, TypedDict

from pydantic import Field

from ..audit.logger import AuditLogger
from ..budget.gate import BudgetGate
from ..capabilities.base import ActionExecutor
from ..checkpoints.manager import CheckpointManager
from ..hooks.pipeline import HookPipeline
from ..oracles.base import PlanningOracle
from ..policy.safety import SafetyChecker
from ..repos.interfaces import AgentRepository, ExecutionRepository
from ..schemas.base import BaseSchema
from .events import ExecutionEventBus


class EngineConfig(BaseSchema):
    """Engine-level tunables.

    Attributes:
        default_max_steps: Step ceiling for executions whose agent sets none.
        recovery_mode: What startup recovery does with executions left
            ``running`` by a previous process.
        recovery_scan_limit: Max executions inspected by startup recovery.
    """

    default_max_steps: int = Field(default=50, ge=1)
    recovery_mode: Literal["pause", "fail"] = "pause"
    recovery_scan_limit: int = Field(default=1000, ge=1)


@dataclass(frozen=True)
class EngineDeps:
    """Dependency bundle for ``ExecutionEngine``.

    Typically constructed by ``agent_core.factory`` and passed into the engine
    (or ``ExecutionService``).
    """

    executions: ExecutionRepository
    checkpoints: CheckpointManager
    hooks: HookPipeline
    budget: BudgetGate
    audit: AuditLogger
    planner: PlanningOracle
    executor: ActionExecutor
    safety: SafetyChecker
    events: ExecutionEventBus
    agents: Optional[AgentRepository] = None


class _GraphState(TypedDict):
    """Mutable LangGraph state for one pass of the step loop.

    Required keys:

    - ``execution_id``: the execution being driven.

    Optional keys:

    - ``_route``: next node chosen by the node that just ran.
    - ``_goal``: goal text as rewritten by ``pre_execution`` transform hooks.
    """

    execution_id: Required[str]
    _route: NotRequired[str]
    _goal: NotRequired[Optional[str]]
