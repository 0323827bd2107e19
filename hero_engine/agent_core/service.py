from __future__ import annotations

"""High-level application service for agent executions.

``ExecutionService`` provides an application-friendly API over the runtime
engine and its collaborators. It is what the HTTP layer talks to.

Responsibilities
----------------

- Resolve the agent profile an execution is started for and derive its
  step ceiling and budget.
- Enforce ownership: every per-execution command is checked against the
  calling user (``NotFound`` for unknown ids, ``Forbidden`` for other users'
  executions).
- Drive step loops as background tasks so commands return promptly; pass
  ``wait=True`` to drive inline and get the settled execution back.
- Front hooks, checkpoints, replay, audit queries, budget and the agent
  directory.

``ExecutionService`` is intentionally thin: it delegates execution semantics
to the engine and does not contain lifecycle logic itself.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import Field

from .budget.gate import BudgetStatus, UsageSummary
from .checkpoints.manager import RollbackPreview, RollbackResult
from .errors import Forbidden, NotFound
from .hooks.registry import HookCreate, HookRegistry, HookUpdate
from .replay.replay import ExecutionComparison, ExecutionReplay, ExecutionReplayer
from .repos.interfaces import AgentRepository
from .runtime.engine import ExecutionEngine
from .runtime.events import Subscription
from .schemas.base import BaseSchema
from .schemas.domain import (
    AgentProfile,
    AgentType,
    AuditLogEntry,
    AuditLogQuery,
    AutonomyProfile,
    BudgetSettings,
    Checkpoint,
    Execution,
    ExecutionStatus,
    FailureReason,
    Hook,
    HookContext,
    HookOrigin,
    HookResult,
    HookType,
    Step,
    UsageDaily,
)

logger = logging.getLogger(__name__)


class ExecutionState(BaseSchema):
    """Caller-facing view of an execution."""

    execution_id: str
    agent_id: str
    status: ExecutionStatus
    goal: str
    current_step: int
    steps: List[Step] = Field(default_factory=list)
    tokens_used: int = 0
    cost_incurred: float = 0.0
    budget_limit: Optional[float] = None
    max_steps: int
    failure_reason: Optional[FailureReason] = None
    failure_detail: Optional[str] = None

    @classmethod
    def of(cls, execution: Execution) -> "ExecutionState":
        return cls(
            execution_id=execution.id,
            agent_id=execution.agent_id,
            status=execution.status,
            goal=execution.goal,
            current_step=execution.current_step,
            steps=execution.steps,
            tokens_used=execution.tokens_used,
            cost_incurred=execution.cost_incurred,
            budget_limit=execution.budget_limit,
            max_steps=execution.max_steps,
            failure_reason=execution.failure_reason,
            failure_detail=execution.failure_detail,
        )


class AgentCreate(BaseSchema):
    name: str = Field(min_length=1, max_length=128)
    agent_type: AgentType = AgentType.custom
    max_steps: Optional[int] = Field(default=None, ge=1)
    budget_limit: Optional[float] = Field(default=None, ge=0)
    autonomy_profile: AutonomyProfile = AutonomyProfile.balanced
    system_prompt: Optional[str] = None


class ExecutionService:
    """Orchestrate executions on behalf of users.

    Args:
        engine: The runtime engine.
        hooks: The hook registry shared with the engine's pipeline.
        agents: The agent directory executions are started for.
        replayer: Builds replays from the step ledger and the audit log.
    """

    def __init__(
        self,
        *,
        engine: ExecutionEngine,
        hooks: HookRegistry,
        agents: AgentRepository,
        replayer: Optional[ExecutionReplayer] = None,
    ) -> None:
        self._engine = engine
        self._hooks = hooks
        self._agents = agents
        self._replayer = replayer or ExecutionReplayer(engine.deps.audit)
        self._tasks: Set[asyncio.Task[Execution]] = set()

    @property
    def engine(self) -> ExecutionEngine:
        return self._engine

    @property
    def hooks(self) -> HookRegistry:
        return self._hooks

    @property
    def background_loops(self) -> int:
        """Number of step loops currently running as background tasks."""
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _owned(self, execution_id: str, user_id: str) -> Execution:
        execution = await self._engine.get(execution_id)
        if execution.user_id != user_id:
            raise Forbidden("You do not have access to this execution")
        return execution

    async def _drive_logged(self, execution_id: str) -> Execution:
        try:
            return await self._engine.drive(execution_id)
        except Exception:
            logger.exception("Step loop for execution %s stopped with an error", execution_id)
            raise

    def _spawn(self, execution_id: str) -> None:
        task = asyncio.create_task(self._drive_logged(execution_id), name=f"execution:{execution_id}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Execution]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Background task %s finished with %r", task.get_name(), task.exception())

    async def _continue(self, execution: Execution, wait: bool) -> Execution:
        if execution.status != ExecutionStatus.running:
            return execution
        if wait:
            return await self._engine.drive(execution.id)
        self._spawn(execution.id)
        return execution

    async def wait_idle(self) -> None:
        """Wait until every background step loop has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    async def start(
        self,
        *,
        agent_id: str,
        user_id: str,
        goal: str,
        context: Optional[Dict[str, Any]] = None,
        project_id: Optional[str] = None,
        budget_limit: Optional[float] = None,
        wait: bool = False,
    ) -> Execution:
        """
        Start an execution of ``agent_id`` against ``goal``.

        The execution is created ``idle``, moved to ``running`` and its loop
        is driven in the background. An exhausted budget is settled inline so
        the caller sees the ``budget_exceeded`` failure in the response.

        Raises:
            NotFound: Unknown agent.
            Forbidden: The agent belongs to another user.
        """
        agent = await self.get_agent(agent_id, user_id)
        execution = Execution(
            user_id=user_id,
            agent_id=agent.id,
            agent_type=agent.agent_type,
            project_id=project_id,
            goal=goal,
            context=context or {},
            budget_limit=budget_limit if budget_limit is not None else agent.budget_limit,
            max_steps=agent.max_steps or self._engine.config.default_max_steps,
        )
        await self._engine.create(execution)
        started = await self._engine.begin(execution.id, actor=user_id)
        verdict = await self._engine.deps.budget.check(started)
        logger.info("Started execution %s for agent %s (user=%s)", started.id, agent.id, user_id)
        return await self._continue(started, wait or not verdict.allowed)

    async def get_state(self, execution_id: str, user_id: str) -> ExecutionState:
        return ExecutionState.of(await self._owned(execution_id, user_id))

    async def get_execution(self, execution_id: str, user_id: str) -> Execution:
        return await self._owned(execution_id, user_id)

    async def list_executions(
        self,
        user_id: str,
        *,
        status: Optional[ExecutionStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Execution]:
        return await self._engine.deps.executions.list(
            user_id=user_id,
            statuses=[status] if status is not None else None,
            limit=limit,
            offset=offset,
        )

    async def pause(self, execution_id: str, user_id: str) -> Execution:
        await self._owned(execution_id, user_id)
        return await self._engine.pause(execution_id, actor=user_id)

    async def resume(self, execution_id: str, user_id: str, *, wait: bool = False) -> Execution:
        await self._owned(execution_id, user_id)
        resumed = await self._engine.resume(execution_id, actor=user_id, drive=False)
        return await self._continue(resumed, wait)

    async def stop(self, execution_id: str, user_id: str) -> Execution:
        """Cancel the execution; cooperative while a loop is active."""
        await self._owned(execution_id, user_id)
        return await self._engine.cancel(execution_id, actor=user_id)

    async def approve(
        self, execution_id: str, user_id: str, *, reason: Optional[str] = None, wait: bool = False
    ) -> Execution:
        await self._owned(execution_id, user_id)
        approved = await self._engine.approve(execution_id, actor=user_id, reason=reason, drive=False)
        return await self._continue(approved, wait)

    async def reject(self, execution_id: str, user_id: str, *, reason: Optional[str] = None) -> Execution:
        await self._owned(execution_id, user_id)
        return await self._engine.reject(execution_id, actor=user_id, reason=reason)

    async def skip(
        self, execution_id: str, user_id: str, *, reason: Optional[str] = None, wait: bool = False
    ) -> Execution:
        await self._owned(execution_id, user_id)
        skipped = await self._engine.skip(execution_id, actor=user_id, reason=reason, drive=False)
        return await self._continue(skipped, wait)

    async def subscribe(self, execution_id: str, user_id: str) -> Subscription:
        """Open an event subscription on an execution the caller owns."""
        await self._owned(execution_id, user_id)
        return self._engine.deps.events.subscribe(execution_id)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _check_hook_owner(self, hook: Hook, user_id: str) -> None:
        if hook.origin == HookOrigin.user and hook.user_id is not None and hook.user_id != user_id:
            raise Forbidden("You do not have access to this hook")

    def list_hooks(self, *, hook_type: Optional[HookType] = None, project_id: Optional[str] = None) -> List[Hook]:
        return self._hooks.list(hook_type=hook_type, project_id=project_id)

    def get_hook(self, hook_id: str) -> Hook:
        return self._hooks.get(hook_id)

    async def create_hook(self, data: HookCreate, user_id: str) -> Hook:
        return await self._hooks.register(data, user_id=user_id)

    async def update_hook(self, hook_id: str, changes: HookUpdate, user_id: str) -> Hook:
        self._check_hook_owner(self._hooks.get(hook_id), user_id)
        return await self._hooks.update(hook_id, changes)

    async def toggle_hook(self, hook_id: str, user_id: str, enabled: Optional[bool] = None) -> Hook:
        self._check_hook_owner(self._hooks.get(hook_id), user_id)
        return await self._hooks.toggle(hook_id, enabled)

    async def delete_hook(self, hook_id: str, user_id: str) -> None:
        self._check_hook_owner(self._hooks.get(hook_id), user_id)
        await self._hooks.delete(hook_id)

    async def test_hook(self, hook_id: str, context: HookContext, user_id: str) -> HookResult:
        """Run one hook against a synthetic context without touching any execution."""
        hook = self._hooks.get(hook_id)
        self._check_hook_owner(hook, user_id)
        ctx = context if context.user_id is not None else context.model_copy(update={"user_id": user_id})
        return await self._engine.deps.hooks.test_hook(hook, ctx)

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    async def create_checkpoint(self, execution_id: str, user_id: str, *, description: str = "") -> Checkpoint:
        await self._owned(execution_id, user_id)
        return await self._engine.create_checkpoint(execution_id, description=description, actor=user_id)

    async def list_checkpoints(self, execution_id: str, user_id: str) -> List[Checkpoint]:
        await self._owned(execution_id, user_id)
        return await self._engine.deps.checkpoints.list(execution_id)

    async def latest_checkpoint(self, execution_id: str, user_id: str) -> Checkpoint:
        await self._owned(execution_id, user_id)
        checkpoint = await self._engine.deps.checkpoints.get_latest(execution_id)
        if checkpoint is None:
            raise NotFound("Checkpoint", f"latest of {execution_id}")
        return checkpoint

    async def get_checkpoint(self, execution_id: str, checkpoint_id: str, user_id: str) -> Checkpoint:
        await self._owned(execution_id, user_id)
        return await self._engine.deps.checkpoints.get(checkpoint_id, execution_id=execution_id)

    async def preview_rollback(self, execution_id: str, checkpoint_id: str, user_id: str) -> RollbackPreview:
        await self._owned(execution_id, user_id)
        return await self._engine.preview_rollback(execution_id, checkpoint_id)

    async def rollback(self, execution_id: str, checkpoint_id: str, user_id: str) -> Tuple[Execution, RollbackResult]:
        await self._owned(execution_id, user_id)
        return await self._engine.rollback(execution_id, checkpoint_id, actor=user_id)

    async def rollback_to_previous(self, execution_id: str, user_id: str) -> Tuple[Execution, RollbackResult]:
        await self._owned(execution_id, user_id)
        return await self._engine.rollback_to_previous(execution_id, actor=user_id)

    async def delete_checkpoint(self, execution_id: str, checkpoint_id: str, user_id: str) -> None:
        await self._owned(execution_id, user_id)
        checkpoint = await self._engine.deps.checkpoints.get(checkpoint_id, execution_id=execution_id)
        await self._engine.deps.checkpoints.delete(checkpoint.id)

    # ------------------------------------------------------------------
    # Replay and audit
    # ------------------------------------------------------------------

    async def replay(self, execution_id: str, user_id: str) -> ExecutionReplay:
        return await self._replayer.build(await self._owned(execution_id, user_id))

    async def export_replay(self, execution_id: str, user_id: str) -> str:
        return ExecutionReplayer.export_markdown(await self.replay(execution_id, user_id))

    async def compare(self, base_id: str, other_id: str, user_id: str) -> ExecutionComparison:
        base = await self._owned(base_id, user_id)
        other = await self._owned(other_id, user_id)
        return ExecutionReplayer.compare(base, other)

    async def query_audit(self, user_id: str, query: Optional[AuditLogQuery] = None) -> List[AuditLogEntry]:
        """Query the caller's audit entries; the user filter is always the caller."""
        scoped = (query or AuditLogQuery()).model_copy(update={"user_id": user_id})
        return await self._engine.deps.audit.query_logs(scoped)

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    async def budget_status(self, user_id: str) -> BudgetStatus:
        return await self._engine.deps.budget.get_status(user_id)

    async def usage_summary(self, user_id: str) -> UsageSummary:
        return await self._engine.deps.budget.usage_summary(user_id)

    async def usage_history(self, user_id: str, days: int = 30) -> List[UsageDaily]:
        return await self._engine.deps.budget.daily_history(user_id, days)

    async def update_budget(
        self,
        user_id: str,
        *,
        daily_limit: Optional[float] = None,
        monthly_limit: Optional[float] = None,
    ) -> BudgetSettings:
        return await self._engine.deps.budget.update_settings(
            user_id, daily_limit=daily_limit, monthly_limit=monthly_limit
        )

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    async def create_agent(self, data: AgentCreate, user_id: str) -> AgentProfile:
        agent = AgentProfile(user_id=user_id, **data.model_dump())
        await self._agents.create(agent)
        logger.info("Created agent %s (%s) for user %s", agent.id, agent.agent_type.value, user_id)
        return agent

    async def list_agents(self, user_id: str) -> List[AgentProfile]:
        return await self._agents.list(user_id)

    async def get_agent(self, agent_id: str, user_id: str) -> AgentProfile:
        agent = await self._agents.get(agent_id)
        if agent is None:
            raise NotFound("Agent", agent_id)
        if agent.user_id != user_id:
            raise Forbidden("You do not have access to this agent")
        return agent

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def recover_in_flight(self) -> int:
        return await self._engine.recover_in_flight()

    async def aclose(self) -> None:
        """Cancel background step loops; recovery re-seats them on the next start."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
