"""
Executions API Endpoints.

This module provides the primary interface for starting, steering and
inspecting executions. It handles the lifecycle of an agent task from start
to finish.

Includes:
- Start, list and inspect executions
- Pause, resume, stop, approve, reject and skip commands
- Real-time step/state events via Server-Sent Events (SSE)
- Replay, Markdown export and comparison of executions

Every endpoint acts on behalf of the user named by the ``X-User-Id`` header;
executions of other users answer 403.
"""

import asyncio
from typing import List, Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import PlainTextResponse
from sse_starlette.sse import EventSourceResponse

from hero_engine.agent_core.replay.replay import ExecutionComparison, ExecutionReplay
from hero_engine.agent_core.schemas.domain import (
    TERMINAL_STATUSES,
    ExecutionEventType,
    ExecutionStatus,
)
from hero_engine.agent_core.service import ExecutionState
from hero_engine.core.logging_config import get_logger
from hero_engine.server.schemas import (
    DecisionRequest,
    ExecutionCreate,
    ExecutionStarted,
    KeepAliveEvent,
    serialize_event,
)
from hero_engine.server.services.deps import CurrentUser, ServiceDep

logger = get_logger(__name__)
router = APIRouter()

KEEP_ALIVE_SECONDS = 15.0
_TERMINAL_VALUES = {s.value for s in TERMINAL_STATUSES}


@router.post(
    "/",
    response_model=ExecutionStarted,
    status_code=201,
    summary="Start Execution",
    description="Start an execution of one of the caller's agents against a goal.",
    response_description="The new execution id and its status.",
    responses={402: {"description": "Budget exhausted"}, 404: {"description": "Agent not found"}},
)
async def start_execution(body: ExecutionCreate, service: ServiceDep, user_id: CurrentUser):
    """
    Start a new execution.

    The execution is created, moved to ``running`` and its step loop runs in
    the background. With ``wait=true`` the response is sent once the loop
    settles (complete, failed, paused or awaiting confirmation).
    """
    logger.info(f"Starting execution of agent {body.agent_id} for user {user_id}")
    execution = await service.start(
        agent_id=body.agent_id,
        user_id=user_id,
        goal=body.goal,
        context=body.context,
        project_id=body.project_id,
        budget_limit=body.budget_limit,
        wait=body.wait,
    )
    return ExecutionStarted(execution_id=execution.id, status=execution.status)


@router.get(
    "/",
    response_model=List[ExecutionState],
    summary="List Executions",
    description="List the caller's executions, newest first.",
)
async def list_executions(
    service: ServiceDep,
    user_id: CurrentUser,
    status: Optional[ExecutionStatus] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    executions = await service.list_executions(user_id, status=status, limit=limit, offset=offset)
    return [ExecutionState.of(e) for e in executions]


@router.get(
    "/compare",
    response_model=ExecutionComparison,
    summary="Compare Executions",
    description="Diff the step ledgers of two executions by action name.",
)
async def compare_executions(
    service: ServiceDep,
    user_id: CurrentUser,
    base: str = Query(..., description="Baseline execution id."),
    other: str = Query(..., description="Execution compared against the baseline."),
):
    return await service.compare(base, other, user_id)


@router.get(
    "/{execution_id}",
    response_model=ExecutionState,
    summary="Get Execution State",
    responses={404: {"description": "Execution not found"}, 403: {"description": "Not the owner"}},
)
async def get_execution(execution_id: str, service: ServiceDep, user_id: CurrentUser):
    """Current status, step ledger, usage and budget of an execution."""
    return await service.get_state(execution_id, user_id)


@router.post("/{execution_id}/pause", response_model=ExecutionState, summary="Pause Execution")
async def pause_execution(execution_id: str, service: ServiceDep, user_id: CurrentUser):
    """Pause a running execution; the loop stops at the next step boundary."""
    return ExecutionState.of(await service.pause(execution_id, user_id))


@router.post("/{execution_id}/resume", response_model=ExecutionState, summary="Resume Execution")
async def resume_execution(
    execution_id: str,
    service: ServiceDep,
    user_id: CurrentUser,
    wait: bool = Query(False, description="Drive the resumed loop inline."),
):
    """
    Resume a paused execution, or approve the waiting step of one awaiting
    confirmation. The budget is re-checked first.
    """
    return ExecutionState.of(await service.resume(execution_id, user_id, wait=wait))


@router.post("/{execution_id}/stop", response_model=ExecutionState, summary="Stop Execution")
async def stop_execution(execution_id: str, service: ServiceDep, user_id: CurrentUser):
    """Cancel a non-terminal execution (reason ``cancelled``)."""
    return ExecutionState.of(await service.stop(execution_id, user_id))


@router.post("/{execution_id}/approve", response_model=ExecutionState, summary="Approve Waiting Step")
async def approve_step(execution_id: str, service: ServiceDep, user_id: CurrentUser, body: Optional[DecisionRequest] = None):
    decision = body or DecisionRequest()
    return ExecutionState.of(await service.approve(execution_id, user_id, reason=decision.reason, wait=decision.wait))


@router.post("/{execution_id}/reject", response_model=ExecutionState, summary="Reject Waiting Step")
async def reject_step(execution_id: str, service: ServiceDep, user_id: CurrentUser, body: Optional[DecisionRequest] = None):
    """Fail the waiting step and the execution (reason ``rejected``)."""
    decision = body or DecisionRequest()
    return ExecutionState.of(await service.reject(execution_id, user_id, reason=decision.reason))


@router.post("/{execution_id}/skip", response_model=ExecutionState, summary="Skip Waiting Step")
async def skip_step(execution_id: str, service: ServiceDep, user_id: CurrentUser, body: Optional[DecisionRequest] = None):
    """Mark the waiting step skipped and let the planner continue."""
    decision = body or DecisionRequest()
    return ExecutionState.of(await service.skip(execution_id, user_id, reason=decision.reason, wait=decision.wait))


@router.get(
    "/{execution_id}/events",
    summary="Stream Execution Events",
    description="Subscribe to a Server-Sent Events (SSE) stream of step and state changes.",
    responses={200: {"description": "SSE stream established", "content": {"text/event-stream": {}}}},
)
async def stream_events(execution_id: str, request: Request, service: ServiceDep, user_id: CurrentUser):
    """
    Stream events of an execution.

    The first message is a ``snapshot`` of the current state. The stream ends
    after the execution reaches a terminal state or the client disconnects.
    Idle streams receive a ``keep_alive`` message every few seconds.
    """
    subscription = await service.subscribe(execution_id, user_id)
    snapshot = await service.get_state(execution_id, user_id)

    async def event_generator():
        try:
            yield {"event": "snapshot", "data": snapshot.model_dump_json()}
            if snapshot.status in TERMINAL_STATUSES:
                return
            while True:
                if await request.is_disconnected():
                    logger.info(f"Client disconnected from stream for execution: {execution_id}")
                    break
                try:
                    event = await subscription.get(timeout=KEEP_ALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield {"event": "keep_alive", "data": KeepAliveEvent().model_dump_json()}
                    continue
                yield serialize_event(event)
                if event.type == ExecutionEventType.state_changed and event.payload.get("to") in _TERMINAL_VALUES:
                    break
        finally:
            subscription.close()

    return EventSourceResponse(event_generator())


@router.get("/{execution_id}/replay", response_model=ExecutionReplay, summary="Replay Execution")
async def replay_execution(execution_id: str, service: ServiceDep, user_id: CurrentUser):
    """Timeline, per-step audit entries and summary statistics of an execution."""
    return await service.replay(execution_id, user_id)


@router.get(
    "/{execution_id}/replay/markdown",
    response_class=PlainTextResponse,
    summary="Export Replay as Markdown",
)
async def export_replay(execution_id: str, service: ServiceDep, user_id: CurrentUser):
    return PlainTextResponse(await service.export_replay(execution_id, user_id), media_type="text/markdown")
