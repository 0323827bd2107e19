"""
API Schemas.

This module contains Pydantic models used for API request bodies and response validation.
These schemas define the interface contract between the client and the server.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from hero_engine.agent_core.checkpoints.manager import RollbackResult
from hero_engine.agent_core.schemas.domain import ExecutionEvent, ExecutionStatus
from hero_engine.agent_core.service import ExecutionState


class ExecutionCreate(BaseModel):
    """
    Schema for starting a new execution.

    Defines the agent to run and the goal it should accomplish.
    """

    agent_id: str = Field(..., description="The agent profile to run.", examples=["b7a1c6b4-..."])
    goal: str = Field(
        ...,
        min_length=1,
        description="The task for the agent to accomplish.",
        examples=["Add input validation to the signup form"],
    )
    context: Dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form context passed to the planner.",
        examples=[{"plan": ["read_file"]}],
    )
    project_id: Optional[str] = Field(default=None, description="Project scope for project-level hooks.")
    budget_limit: Optional[float] = Field(
        default=None, ge=0, description="Per-execution spend ceiling (USD); defaults to the agent's."
    )
    wait: bool = Field(
        default=False,
        description="Drive the step loop inline and respond with the settled execution.",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "agent_id": "b7a1c6b4-0f7e-4b0c-9d3e-2f7a1f1f9b10",
                "goal": "Add input validation to the signup form",
                "context": {"repository": "web-app"},
            }
        }
    )


class ExecutionStarted(BaseModel):
    execution_id: str
    status: ExecutionStatus


class DecisionRequest(BaseModel):
    """Body of approve/reject/skip commands."""

    reason: Optional[str] = Field(default=None, description="Why the step was approved, rejected or skipped.")
    wait: bool = Field(default=False, description="Drive the resumed loop inline.")


class CheckpointCreate(BaseModel):
    description: str = Field(default="", max_length=500)


class RollbackResponse(BaseModel):
    """Outcome of a rollback: the restored execution plus what was undone."""

    execution: ExecutionState
    checkpoint_id: str
    step_number: int
    message: str
    discarded_steps: int
    reversed_files: List[str] = Field(default_factory=list)
    removed_checkpoints: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @classmethod
    def of(cls, execution_state: ExecutionState, result: RollbackResult) -> "RollbackResponse":
        return cls(
            execution=execution_state,
            checkpoint_id=result.checkpoint.id,
            step_number=result.checkpoint.step_number,
            message=result.message,
            discarded_steps=len(result.discarded_steps),
            reversed_files=result.reversed_files,
            removed_checkpoints=result.removed_checkpoints,
            errors=result.errors,
        )


class HookToggle(BaseModel):
    enabled: Optional[bool] = Field(default=None, description="Target state; omitted flips the current one.")


class BudgetUpdate(BaseModel):
    daily_limit: Optional[float] = Field(default=None, ge=0, description="Daily ceiling in USD; null is unlimited.")
    monthly_limit: Optional[float] = Field(default=None, ge=0, description="Monthly ceiling in USD; null is unlimited.")


class ErrorResponse(BaseModel):
    detail: str
    code: str


class KeepAliveEvent(BaseModel):
    """Sent on idle SSE streams so proxies keep the connection open."""

    type: str = "keep_alive"


def serialize_event(event: ExecutionEvent) -> Dict[str, str]:
    """Render an ``ExecutionEvent`` as an SSE message (``event`` + JSON ``data``)."""
    return {"event": event.type.value, "data": event.model_dump_json()}
