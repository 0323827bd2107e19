from __future__ import annotations

"""LangGraph runtime engine.

``ExecutionEngine`` drives an execution's step loop. The planning oracle
proposes one action at a time; the engine classifies, confirms, checkpoints,
executes and journals it.

Execution model
---------------

The loop is a LangGraph state machine over a tiny ``_GraphState``::

    gate ──► plan ──► execute ──► gate ...
      │        │         │
      └────────┴─────────┴──► stop ──► END

- ``gate`` observes cancellation and status, consults the budget gate,
  enforces ``max_steps`` and runs ``pre_execution`` hooks. An approved step
  waiting at the cursor goes straight to ``execute``.
- ``plan`` asks the planning oracle for the next action, bills its tokens,
  appends a ``pending`` step and classifies it. Risky steps get an automatic
  checkpoint; sensitive steps suspend the loop in ``awaiting_confirmation``.
- ``execute`` hands the step to the action executor, records the outcome and
  rollback journal, and runs ``post_execution``/``on_file_change`` hooks.

Concurrency
-----------

- One cursor per execution: ``drive`` claims the execution id in-process and
  the repositories reject stale writes through the version column.
- Every mutation runs as load -> mutate -> save under the execution's
  ``asyncio.Lock``. Oracle calls, hook judgments and executor calls happen
  outside the lock.
- ``pause`` takes effect at the next step boundary. ``cancel`` on an active
  loop sets a flag that the loop observes at the next boundary.

Reads go through a write-through cache that is evicted when an execution
reaches a terminal state.
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set, Tuple

from langgraph.graph import END, StateGraph

from ...core.monitoring import log_execution_finished, log_execution_started, log_llm_call
from ..capabilities.base import CapabilityResult
from ..checkpoints.manager import RollbackPreview, RollbackResult
from ..errors import BudgetExceeded, InvalidState, NotFound, PersistenceFailure
from ..oracles.base import PlanningRequest
from ..schemas.domain import (
    AgentProfile,
    AuditCategory,
    AuditSeverity,
    Checkpoint,
    ConfirmationDecision,
    Execution,
    ExecutionEvent,
    ExecutionEventType,
    ExecutionStatus,
    FailureReason,
    HookContext,
    HookPipelineResult,
    HookType,
    Step,
    StepConfirmation,
    StepStatus,
)
from .models import EngineConfig, EngineDeps, _GraphState
from .transitions import ROLLBACK_SOURCES, ensure_transition

logger = logging.getLogger(__name__)

_STOP = "stop"
_PLAN = "plan"
_EXECUTE = "execute"
_GATE = "gate"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _describe_step(step: Step) -> str:
    detail = step.input.get("command") or step.input.get("cmd") or step.input.get("path") or step.input.get("url")
    if detail:
        return f"{step.action} {detail}"
    if step.input:
        return f"{step.action} {json.dumps(step.input, default=str, sort_keys=True)}"
    return step.action


def _step_payload(step: Step) -> Dict[str, Any]:
    return {"step": step.model_dump(mode="json")}


StepMutation = Callable[[Execution], Optional[Step]]


class ExecutionEngine:
    """Drive executions through their lifecycle.

    The engine is orchestration only: safety decisions come from
    ``SafetyChecker``, interception from ``HookPipeline``, spend limits from
    ``BudgetGate``, and side effects from the ``ActionExecutor``.
    """

    def __init__(self, *, deps: EngineDeps, config: Optional[EngineConfig] = None) -> None:
        """
        Initialize the ExecutionEngine.

        Args:
            deps: The runtime dependencies (repositories, oracles, managers).
            config: Engine tunables. Defaults to ``EngineConfig()``.
        """
        self._deps = deps
        self._config = config or EngineConfig()
        self._cache: Dict[str, Execution] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._active: Set[str] = set()
        self._cancel_requested: Set[str] = set()
        self._graph = self._build_graph()

    @property
    def deps(self) -> EngineDeps:
        return self._deps

    @property
    def config(self) -> EngineConfig:
        return self._config

    def _build_graph(self):
        """Build and compile the LangGraph step loop."""
        g: StateGraph = StateGraph(_GraphState)
        g.add_node(_GATE, self._node_gate)
        g.add_node(_PLAN, self._node_plan)
        g.add_node(_EXECUTE, self._node_execute)
        g.add_node(_STOP, self._node_stop)

        g.set_entry_point(_GATE)
        g.add_conditional_edges(_GATE, self._route, {_PLAN: _PLAN, _EXECUTE: _EXECUTE, _STOP: _STOP})
        g.add_conditional_edges(_PLAN, self._route, {_EXECUTE: _EXECUTE, _STOP: _STOP})
        g.add_conditional_edges(_EXECUTE, self._route, {_GATE: _GATE, _STOP: _STOP})
        g.add_edge(_STOP, END)
        return g.compile()

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _lock(self, execution_id: str) -> asyncio.Lock:
        return self._locks.setdefault(execution_id, asyncio.Lock())

    async def _load(self, execution_id: str) -> Execution:
        cached = self._cache.get(execution_id)
        if cached is not None:
            return cached.model_copy(deep=True)
        execution = await self._deps.executions.get(execution_id)
        if execution is None:
            raise NotFound("Execution", execution_id)
        if not execution.is_terminal:
            self._cache[execution_id] = execution.model_copy(deep=True)
        return execution

    async def _save(self, execution: Execution) -> Execution:
        stored = await self._deps.executions.save(execution)
        if stored.is_terminal:
            self._cache.pop(stored.id, None)
        else:
            self._cache[stored.id] = stored.model_copy(deep=True)
        return stored

    def _publish(self, execution_id: str, event_type: ExecutionEventType, payload: Dict[str, Any]) -> None:
        self._deps.events.publish(ExecutionEvent(execution_id=execution_id, type=event_type, payload=payload))

    async def _step_changed(self, execution: Execution, step: Step, event: str) -> None:
        self._publish(execution.id, ExecutionEventType.step_updated, _step_payload(step))
        await self._deps.audit.log_step(execution, step, event=event)

    async def _transition(
        self,
        execution: Execution,
        target: ExecutionStatus,
        *,
        reason: Optional[FailureReason] = None,
        detail: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Execution:
        """Apply a lifecycle edge and persist. Callers hold the execution lock."""
        ensure_transition(execution, target)
        previous = execution.status
        now = _utc_now()
        execution.status = target
        if target == ExecutionStatus.running and execution.started_at is None:
            execution.started_at = now
        if target == ExecutionStatus.failed:
            execution.failure_reason = reason
            execution.failure_detail = detail
        if target in (ExecutionStatus.complete, ExecutionStatus.failed):
            execution.completed_at = now
        saved = await self._save(execution)

        logger.info(
            "Execution %s: %s -> %s%s",
            saved.id,
            previous.value,
            target.value,
            f" ({reason.value}: {detail})" if reason else "",
        )
        await self._deps.audit.log_state_change(saved, previous, actor=actor)
        self._publish(
            saved.id,
            ExecutionEventType.state_changed,
            {
                "from": previous.value,
                "to": target.value,
                "reason": reason.value if reason else None,
                "detail": detail,
                "current_step": saved.current_step,
            },
        )
        if saved.is_terminal:
            log_execution_finished(
                saved.id,
                saved.status.value,
                reason.value if reason else None,
                saved.current_step,
                saved.cost_incurred,
            )
        return saved

    def _hook_context(
        self,
        execution: Execution,
        *,
        message: Optional[str] = None,
        step: Optional[Step] = None,
        files: Optional[list] = None,
        file_sizes: Optional[Dict[str, int]] = None,
        error: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> HookContext:
        metadata: Dict[str, Any] = {"current_step": execution.current_step}
        if step is not None:
            metadata.update({"step_number": step.number, "action": step.action})
        return HookContext(
            execution_id=execution.id,
            user_id=execution.user_id,
            project_id=execution.project_id,
            agent_type=execution.agent_type,
            message=message,
            files=list(files or []),
            file_sizes=dict(file_sizes or {}),
            error=error,
            confidence=confidence,
            duration_ms=step.duration_ms if step is not None else None,
            metadata=metadata,
        )

    async def _run_hooks(self, hook_type: HookType, context: HookContext) -> HookPipelineResult:
        outcome = await self._deps.hooks.run_hooks(hook_type, context)
        if outcome.blocked and context.execution_id:
            self._publish(
                context.execution_id,
                ExecutionEventType.hook_blocked,
                {"hook_type": hook_type.value, "hook": outcome.blocked_by, "reason": outcome.blocked_reason},
            )
        return outcome

    async def _fail(
        self,
        execution_id: str,
        reason: FailureReason,
        detail: Optional[str],
        *,
        actor: Optional[str] = None,
        mutate: Optional[StepMutation] = None,
    ) -> Execution:
        """
        Fail an execution: ``on_error`` hooks first, then the transition.

        ``mutate`` runs under the lock on the freshly loaded execution, just
        before the transition, and may return a step it changed.
        """
        execution = await self._load(execution_id)
        if execution.is_terminal:
            return execution
        await self._run_hooks(
            HookType.on_error,
            self._hook_context(execution, message=execution.goal, error=f"{reason.value}: {detail}"),
        )
        async with self._lock(execution_id):
            execution = await self._load(execution_id)
            if execution.is_terminal:
                return execution
            changed = mutate(execution) if mutate is not None else None
            saved = await self._transition(execution, ExecutionStatus.failed, reason=reason, detail=detail, actor=actor)
        if changed is not None:
            await self._step_changed(saved, saved.step(changed.number), changed.status.value)
        return saved

    # ------------------------------------------------------------------
    # Loop driving
    # ------------------------------------------------------------------

    async def create(self, execution: Execution) -> Execution:
        """Persist a new ``idle`` execution and count it on the usage ledger."""
        if execution.status != ExecutionStatus.idle:
            raise InvalidState("New executions must start idle")
        await self._deps.executions.create(execution)
        self._cache[execution.id] = execution.model_copy(deep=True)
        await self._deps.budget.record_execution(execution.user_id)
        await self._deps.audit.log_action(
            action="execution:created",
            category=AuditCategory.execution,
            user_id=execution.user_id,
            project_id=execution.project_id,
            execution_id=execution.id,
            details={"agent_id": execution.agent_id, "goal": execution.goal, "max_steps": execution.max_steps},
        )
        return execution

    async def begin(self, execution_id: str, *, actor: Optional[str] = None) -> Execution:
        """Transition ``idle -> running`` without driving the loop."""
        async with self._lock(execution_id):
            execution = await self._load(execution_id)
            saved = await self._transition(execution, ExecutionStatus.running, actor=actor)
        log_execution_started(saved.id, saved.user_id, saved.agent_id, saved.goal)
        return saved

    async def start(self, execution_id: str, *, actor: Optional[str] = None) -> Execution:
        """Begin an idle execution and drive it until it stops."""
        await self.begin(execution_id, actor=actor)
        return await self.drive(execution_id)

    async def drive(self, execution_id: str) -> Execution:
        """
        Run the step loop until the execution is no longer ``running``.

        Returns immediately when another loop already holds the cursor.
        """
        if execution_id in self._active:
            logger.debug("Execution %s already has an active loop", execution_id)
            return await self._load(execution_id)
        self._active.add(execution_id)
        try:
            while True:
                execution = await self._load(execution_id)
                if execution.status != ExecutionStatus.running:
                    break
                state: _GraphState = {"execution_id": execution_id, "_route": _GATE, "_goal": None}
                limit = (execution.max_steps - execution.current_step + 2) * 4 + 10
                try:
                    await self._graph.ainvoke(state, config={"recursion_limit": limit})
                except Exception as exc:
                    logger.exception("Step loop for execution %s raised", execution_id)
                    await self._fail_internal(execution_id, f"{type(exc).__name__}: {exc}")
                    break
                if execution_id in self._cancel_requested:
                    break
                # A pause/resume pair can land while the graph is winding down;
                # go round again only if the pass made progress.
                if (await self._load(execution_id)).version == execution.version:
                    break
        finally:
            self._active.discard(execution_id)
            cancel = execution_id in self._cancel_requested
            self._cancel_requested.discard(execution_id)
        if cancel:
            return await self._apply_cancel(execution_id)
        return await self._load(execution_id)

    def is_active(self, execution_id: str) -> bool:
        return execution_id in self._active

    def _route(self, state: _GraphState) -> str:
        return state.get("_route") or _STOP

    async def _node_stop(self, state: _GraphState) -> _GraphState:
        """Terminal node. The execution record already carries the outcome."""
        return state

    async def _node_gate(self, state: _GraphState) -> _GraphState:
        """Step boundary: cancellation, status, budget, max steps, pre_execution hooks."""
        execution_id = state["execution_id"]
        state["_route"] = _STOP
        if execution_id in self._cancel_requested:
            return state

        execution = await self._load(execution_id)
        if execution.status != ExecutionStatus.running:
            return state

        open_step = execution.open_step()
        if open_step is not None and open_step.status == StepStatus.running:
            # Left behind by an interrupted process; it never reported an outcome.
            async with self._lock(execution_id):
                execution = await self._load(execution_id)
                step = execution.step(open_step.number)
                step.status = StepStatus.failed
                step.output = {"error": "Interrupted before completion"}
                step.completed_at = _utc_now()
                execution.current_step = step.number
                execution = await self._save(execution)
            await self._step_changed(execution, execution.step(open_step.number), StepStatus.failed.value)
            open_step = None
        if open_step is not None and open_step.status == StepStatus.pending:
            approved = open_step.confirmation is not None and open_step.confirmation.decision == ConfirmationDecision.approved
            if open_step.safety is not None and open_step.safety.sensitive and not approved:
                await self._request_confirmation(execution_id, open_step.number, open_step.safety.reason)
                return state
            state["_route"] = _EXECUTE
            return state

        verdict = await self._deps.budget.check(execution)
        if not verdict.allowed:
            await self._fail(execution_id, FailureReason.budget_exceeded, verdict.reason)
            return state

        if execution.current_step >= execution.max_steps:
            await self._fail(
                execution_id,
                FailureReason.max_steps_exceeded,
                f"Maximum steps ({execution.max_steps}) reached",
            )
            return state

        outcome = await self._run_hooks(
            HookType.pre_execution,
            self._hook_context(execution, message=state.get("_goal") or execution.goal),
        )
        if outcome.blocked:
            await self._fail(execution_id, FailureReason.hook_blocked, outcome.blocked_reason)
            return state
        if outcome.transformed is not None:
            state["_goal"] = outcome.transformed

        state["_route"] = _PLAN
        return state

    async def _agent_profile(self, execution: Execution) -> Optional[AgentProfile]:
        if self._deps.agents is None:
            return None
        return await self._deps.agents.get(execution.agent_id)

    async def _node_plan(self, state: _GraphState) -> _GraphState:
        """Ask the planning oracle for the next action and classify it."""
        execution_id = state["execution_id"]
        state["_route"] = _STOP
        execution = await self._load(execution_id)
        profile = await self._agent_profile(execution)

        request = PlanningRequest(
            goal=state.get("_goal") or execution.goal,
            agent_type=execution.agent_type,
            history=list(execution.steps),
            context=dict(execution.context),
            system_prompt=profile.system_prompt if profile is not None else None,
        )
        try:
            decision = await self._deps.planner.next_action(request)
            cost = await self._deps.budget.record_usage(
                execution.user_id, decision.input_tokens, decision.output_tokens
            )
        except Exception as exc:
            logger.warning("Planning oracle failed for execution %s: %s", execution_id, exc)
            await self._fail_planning(execution_id, str(exc))
            return state

        async with self._lock(execution_id):
            execution = await self._load(execution_id)
            execution.tokens_used += cost.total_tokens
            execution.cost_incurred = round(execution.cost_incurred + cost.total_cost, 4)
            if execution.status != ExecutionStatus.running or execution_id in self._cancel_requested:
                # Paused or cancelled while the oracle was thinking; the proposal is dropped.
                await self._save(execution)
                return state
            if decision.done or decision.action is None:
                completed = await self._transition(execution, ExecutionStatus.complete)
                await self._deps.audit.log_agent_execution(
                    completed.user_id,
                    completed.agent_type.value,
                    completed.goal,
                    decision.summary or "",
                    execution_id=completed.id,
                    project_id=completed.project_id,
                )
                return state

            step = Step(
                number=execution.current_step + 1,
                action=decision.action.action,
                input=dict(decision.action.input),
            )
            verdict = self._deps.safety.classify(
                step.action,
                step.input,
                profile=profile.autonomy_profile if profile is not None else None,
            )
            step.safety = verdict.to_step_safety()
            execution.steps.append(step)
            execution = await self._save(execution)

        self._publish(
            execution_id,
            ExecutionEventType.usage_recorded,
            {"tokens": cost.total_tokens, "cost": cost.total_cost, "tokens_used": execution.tokens_used},
        )
        log_llm_call(execution_id, cost.total_tokens, cost.total_cost)
        await self._step_changed(execution, step, "planned")
        await self._deps.audit.log_safety_check(
            execution.user_id,
            step.action,
            passed=verdict.allowed,
            reason=verdict.reason,
            details={"risk_level": verdict.risk_level.value, "risky": verdict.risky, "sensitive": verdict.requires_confirmation},
            project_id=execution.project_id,
            execution_id=execution_id,
            step_number=step.number,
        )

        if not verdict.allowed:
            detail = f"Blocked by safety rule: {verdict.reason}"

            def _block(ex: Execution) -> Optional[Step]:
                blocked = ex.step(step.number)
                blocked.status = StepStatus.failed
                blocked.output = {"error": detail}
                blocked.completed_at = _utc_now()
                ex.current_step = blocked.number
                return blocked

            await self._fail(execution_id, FailureReason.safety_blocked, detail, mutate=_block)
            return state

        if verdict.risky or verdict.requires_confirmation:
            label = "Before sensitive step" if verdict.requires_confirmation else "Before risky step"
            if await self._auto_checkpoint(execution_id, f"{label} {step.number}: {_describe_step(step)}") is None:
                return state

        if verdict.requires_confirmation:
            await self._request_confirmation(execution_id, step.number, verdict.reason)
            return state

        state["_route"] = _EXECUTE
        return state

    async def _request_confirmation(self, execution_id: str, step_number: int, reason: Optional[str]) -> None:
        """Suspend the loop on a sensitive step until a human decides."""
        async with self._lock(execution_id):
            execution = await self._load(execution_id)
            if execution.status != ExecutionStatus.running:
                return
            execution.step(step_number).status = StepStatus.awaiting_confirmation
            execution = await self._transition(execution, ExecutionStatus.awaiting_confirmation)
        step = execution.step(step_number)
        await self._step_changed(execution, step, "confirmation_requested")
        await self._run_hooks(
            HookType.on_approval_required,
            self._hook_context(execution, message=f"{_describe_step(step)}: {reason}", step=step),
        )

    async def _fail_planning(self, execution_id: str, error: str) -> None:
        def _record(ex: Execution) -> Optional[Step]:
            step = Step(
                number=ex.current_step + 1,
                action="plan",
                status=StepStatus.failed,
                output={"error": error},
                completed_at=_utc_now(),
            )
            ex.steps.append(step)
            ex.current_step = step.number
            return step

        await self._fail(execution_id, FailureReason.oracle_failure, f"Planning oracle failed: {error}", mutate=_record)

    async def _fail_internal(self, execution_id: str, error: str) -> None:
        def _interrupt(ex: Execution) -> Optional[Step]:
            step = ex.open_step()
            if step is None or step.status != StepStatus.running:
                return None
            step.status = StepStatus.failed
            step.output = {"error": error}
            step.completed_at = _utc_now()
            return step

        await self._fail(execution_id, FailureReason.internal_error, error, mutate=_interrupt)

    async def _auto_checkpoint(self, execution_id: str, description: str) -> Optional[Checkpoint]:
        """Write an automatic checkpoint; a write failure fails the execution."""
        execution = await self._load(execution_id)
        try:
            checkpoint = await self._deps.checkpoints.create(execution, description=description, automatic=True)
        except PersistenceFailure as exc:
            logger.error("Automatic checkpoint failed for execution %s: %s", execution_id, exc)
            await self._fail(execution_id, FailureReason.checkpoint_failed, str(exc))
            return None
        await self._checkpoint_created(execution, checkpoint)
        return checkpoint

    async def _checkpoint_created(self, execution: Execution, checkpoint: Checkpoint) -> None:
        self._publish(
            execution.id,
            ExecutionEventType.checkpoint_created,
            {"checkpoint_id": checkpoint.id, "step_number": checkpoint.step_number, "automatic": checkpoint.automatic},
        )
        await self._run_hooks(
            HookType.on_checkpoint,
            self._hook_context(execution, message=checkpoint.description),
        )

    async def _node_execute(self, state: _GraphState) -> _GraphState:
        """Execute the step at the cursor and record its outcome."""
        execution_id = state["execution_id"]
        state["_route"] = _STOP
        if execution_id in self._cancel_requested:
            return state

        async with self._lock(execution_id):
            execution = await self._load(execution_id)
            open_step = execution.open_step()
            if execution.status != ExecutionStatus.running or open_step is None:
                return state
            if open_step.status != StepStatus.pending:
                return state
            open_step.status = StepStatus.running
            open_step.started_at = _utc_now()
            execution = await self._save(execution)
        step = execution.step(open_step.number)
        await self._step_changed(execution, step, "started")

        started = time.perf_counter()
        try:
            result = await self._deps.executor.execute(execution, step)
        except Exception as exc:
            logger.warning("Step %d of execution %s raised: %s", step.number, execution_id, exc)
            result = CapabilityResult.failure(str(exc))
        duration_ms = int((time.perf_counter() - started) * 1000)

        async with self._lock(execution_id):
            execution = await self._load(execution_id)
            step = execution.step(step.number)
            step.status = StepStatus.complete if result.ok else StepStatus.failed
            step.output = dict(result.output)
            step.duration_ms = duration_ms
            step.completed_at = _utc_now()
            execution.current_step = step.number
            for snapshot in result.file_snapshots:
                execution.rollback_journal.file_snapshots.append(snapshot.model_copy(update={"step_number": step.number}))
            for change in result.db_changes:
                execution.rollback_journal.db_changes.append(change.model_copy(update={"step_number": step.number}))
            for path in result.files_changed:
                if path not in execution.modified_files:
                    execution.modified_files.append(path)
            execution = await self._save(execution)

        await self._step_changed(execution, step, step.status.value)
        await self._deps.audit.log_tool_call(
            execution.user_id,
            step.action,
            step.input,
            step.output,
            project_id=execution.project_id,
            execution_id=execution_id,
            step_number=step.number,
            ok=result.ok,
        )

        await self._run_hooks(
            HookType.post_execution,
            self._hook_context(
                execution,
                message=_describe_step(step),
                step=step,
                error=None if result.ok else str(result.output.get("error")),
            ),
        )
        if result.files_changed:
            outcome = await self._run_hooks(
                HookType.on_file_change,
                self._hook_context(
                    execution,
                    message=_describe_step(step),
                    step=step,
                    files=result.files_changed,
                    file_sizes=result.file_sizes,
                ),
            )
            if outcome.blocked:
                await self._fail(execution_id, FailureReason.hook_blocked, outcome.blocked_reason)
                return state

        state["_route"] = _GATE
        return state

    # ------------------------------------------------------------------
    # Control operations
    # ------------------------------------------------------------------

    async def get(self, execution_id: str) -> Execution:
        """Current state: live cache first, then the store."""
        return await self._load(execution_id)

    async def pause(self, execution_id: str, *, actor: Optional[str] = None) -> Execution:
        """``running -> paused``. An active loop stops at the next step boundary."""
        async with self._lock(execution_id):
            execution = await self._load(execution_id)
            return await self._transition(execution, ExecutionStatus.paused, actor=actor)

    async def resume(self, execution_id: str, *, actor: Optional[str] = None, drive: bool = True) -> Execution:
        """
        Resume a ``paused`` or ``awaiting_confirmation`` execution.

        Resuming from ``awaiting_confirmation`` approves the waiting step. The
        budget gate is consulted first; an exhausted budget leaves the
        execution where it was.

        Raises:
            InvalidTransition: The execution is not paused or awaiting.
            BudgetExceeded: The user or execution budget is exhausted.
        """
        async with self._lock(execution_id):
            execution = await self._load(execution_id)
            ensure_transition(execution, ExecutionStatus.running)
            if execution.status == ExecutionStatus.idle:
                raise InvalidState("Use start to run an idle execution")
            verdict = await self._deps.budget.check(execution)
            if not verdict.allowed:
                raise BudgetExceeded(verdict.reason or "Budget exceeded")
            approved = self._decide_waiting(execution, ConfirmationDecision.approved, actor, "Approved on resume")
            saved = await self._transition(execution, ExecutionStatus.running, actor=actor)
        if approved is not None:
            await self._step_changed(saved, saved.step(approved.number), "confirmation_received")
        return await self.drive(execution_id) if drive else saved

    def _decide_waiting(
        self,
        execution: Execution,
        decision: ConfirmationDecision,
        actor: Optional[str],
        reason: Optional[str],
    ) -> Optional[Step]:
        step = execution.open_step()
        if step is None or step.status != StepStatus.awaiting_confirmation:
            return None
        step.confirmation = StepConfirmation(decision=decision, decided_by=actor or "system", reason=reason)
        now = _utc_now()
        if decision == ConfirmationDecision.approved:
            step.status = StepStatus.pending
        elif decision == ConfirmationDecision.skipped:
            step.status = StepStatus.skipped
            step.completed_at = now
            execution.current_step = step.number
        else:
            step.status = StepStatus.failed
            step.output = {"error": f"Rejected: {reason}" if reason else "Rejected"}
            step.completed_at = now
            execution.current_step = step.number
        return step

    def _require_waiting(self, execution: Execution) -> Step:
        step = execution.open_step()
        if execution.status != ExecutionStatus.awaiting_confirmation or step is None or step.status != StepStatus.awaiting_confirmation:
            raise InvalidState(f"Execution '{execution.id}' has no step awaiting confirmation")
        return step

    async def approve(
        self, execution_id: str, *, actor: Optional[str] = None, reason: Optional[str] = None, drive: bool = True
    ) -> Execution:
        """Approve the waiting step and re-enter the loop; the step runs next."""
        async with self._lock(execution_id):
            execution = await self._load(execution_id)
            self._require_waiting(execution)
            step = self._decide_waiting(execution, ConfirmationDecision.approved, actor, reason)
            saved = await self._transition(execution, ExecutionStatus.running, actor=actor)
        await self._step_changed(saved, saved.step(step.number), "confirmation_received")
        return await self.drive(execution_id) if drive else saved

    async def skip(
        self, execution_id: str, *, actor: Optional[str] = None, reason: Optional[str] = None, drive: bool = True
    ) -> Execution:
        """Mark the waiting step skipped and let the planner continue."""
        async with self._lock(execution_id):
            execution = await self._load(execution_id)
            self._require_waiting(execution)
            step = self._decide_waiting(execution, ConfirmationDecision.skipped, actor, reason)
            saved = await self._transition(execution, ExecutionStatus.running, actor=actor)
        await self._step_changed(saved, saved.step(step.number), "confirmation_received")
        return await self.drive(execution_id) if drive else saved

    async def reject(self, execution_id: str, *, actor: Optional[str] = None, reason: Optional[str] = None) -> Execution:
        """Fail the waiting step and the execution with reason ``rejected``."""
        async with self._lock(execution_id):
            self._require_waiting(await self._load(execution_id))

        def _reject(ex: Execution) -> Optional[Step]:
            return self._decide_waiting(ex, ConfirmationDecision.rejected, actor, reason)

        detail = f"Step rejected: {reason}" if reason else "Step rejected"
        return await self._fail(execution_id, FailureReason.rejected, detail, actor=actor, mutate=_reject)

    async def cancel(self, execution_id: str, *, actor: Optional[str] = None) -> Execution:
        """
        Cancel a non-terminal execution.

        With an active loop the request is cooperative: the loop fails the
        execution with reason ``cancelled`` at its next step boundary.

        Raises:
            InvalidTransition: The execution is already terminal.
        """
        async with self._lock(execution_id):
            execution = await self._load(execution_id)
            ensure_transition(execution, ExecutionStatus.failed)
            if execution_id in self._active:
                self._cancel_requested.add(execution_id)
                logger.info("Cancellation requested for active execution %s", execution_id)
                return execution
        return await self._apply_cancel(execution_id, actor=actor)

    async def _apply_cancel(self, execution_id: str, *, actor: Optional[str] = None) -> Execution:
        def _close(ex: Execution) -> Optional[Step]:
            step = ex.open_step()
            if step is None:
                return None
            step.status = StepStatus.failed
            step.output = {"error": "Cancelled"}
            step.completed_at = _utc_now()
            ex.current_step = step.number
            return step

        return await self._fail(execution_id, FailureReason.cancelled, "Cancelled by user", actor=actor, mutate=_close)

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    async def create_checkpoint(
        self,
        execution_id: str,
        *,
        description: str = "",
        actor: Optional[str] = None,
    ) -> Checkpoint:
        """Take a manual checkpoint at the execution's cursor."""
        async with self._lock(execution_id):
            execution = await self._load(execution_id)
            checkpoint = await self._deps.checkpoints.create(execution, description=description, automatic=False)
        await self._checkpoint_created(execution, checkpoint)
        await self._deps.audit.log_action(
            action="checkpoint:created",
            category=AuditCategory.execution,
            user_id=execution.user_id,
            project_id=execution.project_id,
            execution_id=execution_id,
            details={"checkpoint_id": checkpoint.id, "step_number": checkpoint.step_number, "actor": actor},
        )
        return checkpoint

    async def preview_rollback(self, execution_id: str, checkpoint_id: str) -> RollbackPreview:
        execution = await self._load(execution_id)
        checkpoint = await self._deps.checkpoints.get(checkpoint_id, execution_id=execution_id)
        return await self._deps.checkpoints.preview(execution, checkpoint)

    async def rollback(
        self,
        execution_id: str,
        checkpoint_id: str,
        *,
        actor: Optional[str] = None,
    ) -> Tuple[Execution, RollbackResult]:
        """
        Restore an execution to a checkpoint and leave it ``paused``.

        Raises:
            NotFound: Unknown checkpoint, or one of another execution.
            InvalidState: The execution is ``complete``, ``running`` or ``idle``.
        """
        async with self._lock(execution_id):
            execution = await self._load(execution_id)
            if execution.status == ExecutionStatus.complete:
                raise InvalidState("Cannot roll back a completed execution")
            if execution.status == ExecutionStatus.running or execution_id in self._active:
                raise InvalidState("Pause the execution before rolling back")
            if execution.status not in ROLLBACK_SOURCES:
                raise InvalidState(f"Cannot roll back an execution in state '{execution.status.value}'")
            checkpoint = await self._deps.checkpoints.get(checkpoint_id, execution_id=execution_id)
            previous = execution.status
            result = await self._deps.checkpoints.restore(execution, checkpoint)
            execution.status = ExecutionStatus.paused
            saved = await self._save(execution)

        await self._deps.audit.log_state_change(saved, previous, actor=actor)
        await self._deps.audit.log_action(
            action="execution:rolled_back",
            category=AuditCategory.execution,
            severity=AuditSeverity.warning if result.errors else AuditSeverity.info,
            user_id=saved.user_id,
            project_id=saved.project_id,
            execution_id=execution_id,
            details={
                "checkpoint_id": checkpoint.id,
                "step_number": checkpoint.step_number,
                "discarded_steps": [s.model_dump(mode="json") for s in result.discarded_steps],
                "reversed_files": result.reversed_files,
                "removed_checkpoints": result.removed_checkpoints,
                "errors": result.errors,
                "actor": actor,
            },
        )
        self._publish(
            execution_id,
            ExecutionEventType.rolled_back,
            {"checkpoint_id": checkpoint.id, "step_number": checkpoint.step_number, "from": previous.value},
        )
        self._publish(
            execution_id,
            ExecutionEventType.state_changed,
            {"from": previous.value, "to": saved.status.value, "reason": None, "detail": result.message, "current_step": saved.current_step},
        )
        return saved, result

    async def rollback_to_previous(self, execution_id: str, *, actor: Optional[str] = None) -> Tuple[Execution, RollbackResult]:
        checkpoint = await self._deps.checkpoints.previous(execution_id)
        return await self.rollback(execution_id, checkpoint.id, actor=actor)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def recover_in_flight(self) -> int:
        """
        Re-seat executions left ``running`` by a previous process.

        Depending on ``EngineConfig.recovery_mode`` they become ``paused`` or
        fail with reason ``cancelled``. A step left ``running`` is marked
        failed since its outcome is unknown.

        Returns:
            The number of executions recovered.
        """
        stale = await self._deps.executions.list(
            statuses=[ExecutionStatus.running], limit=self._config.recovery_scan_limit
        )
        recovered = 0
        for execution in stale:
            if execution.id in self._active:
                continue

            def _interrupt(ex: Execution) -> Optional[Step]:
                step = ex.open_step()
                if step is None or step.status != StepStatus.running:
                    return None
                step.status = StepStatus.failed
                step.output = {"error": "Interrupted by engine restart"}
                step.completed_at = _utc_now()
                ex.current_step = step.number
                return step

            if self._config.recovery_mode == "fail":
                await self._fail(
                    execution.id,
                    FailureReason.cancelled,
                    "Interrupted by engine restart",
                    actor="system",
                    mutate=_interrupt,
                )
            else:
                async with self._lock(execution.id):
                    current = await self._load(execution.id)
                    if current.status != ExecutionStatus.running:
                        continue
                    _interrupt(current)
                    await self._transition(current, ExecutionStatus.paused, actor="system")
            recovered += 1
        if recovered:
            logger.info("Recovered %d in-flight executions (mode=%s)", recovered, self._config.recovery_mode)
        return recovered
