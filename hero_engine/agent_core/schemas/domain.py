from __future__ import annotations

import base64
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import Field, field_validator

from .base import BaseSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AgentType(str, Enum):
    planner = "planner"
    coder = "coder"
    tester = "tester"
    ops = "ops"
    researcher = "researcher"
    custom = "custom"


class AutonomyProfile(str, Enum):
    unrestricted = "unrestricted"
    balanced = "balanced"
    strict = "strict"


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


RISK_ORDER: Dict[RiskLevel, int] = {
    RiskLevel.low: 0,
    RiskLevel.medium: 1,
    RiskLevel.high: 2,
    RiskLevel.critical: 3,
}


class ExecutionStatus(str, Enum):
    idle = "idle"
    running = "running"
    paused = "paused"
    awaiting_confirmation = "awaiting_confirmation"
    complete = "complete"
    failed = "failed"


TERMINAL_STATUSES = frozenset({ExecutionStatus.complete, ExecutionStatus.failed})


class StepStatus(str, Enum):
    pending = "pending"
    running = "running"
    awaiting_confirmation = "awaiting_confirmation"
    complete = "complete"
    failed = "failed"
    skipped = "skipped"


FINISHED_STEP_STATUSES = frozenset({StepStatus.complete, StepStatus.failed, StepStatus.skipped})


class FailureReason(str, Enum):
    budget_exceeded = "budget_exceeded"
    max_steps_exceeded = "max_steps_exceeded"
    hook_blocked = "hook_blocked"
    safety_blocked = "safety_blocked"
    oracle_failure = "oracle_failure"
    checkpoint_failed = "checkpoint_failed"
    cancelled = "cancelled"
    rejected = "rejected"
    internal_error = "internal_error"


class ConfirmationDecision(str, Enum):
    approved = "approved"
    rejected = "rejected"
    skipped = "skipped"


class FileAction(str, Enum):
    create = "create"
    modify = "modify"
    delete = "delete"


class HookType(str, Enum):
    pre_execution = "pre_execution"
    post_execution = "post_execution"
    on_file_change = "on_file_change"
    on_error = "on_error"
    on_approval_required = "on_approval_required"
    on_checkpoint = "on_checkpoint"


class HookActionType(str, Enum):
    validate = "validate"
    transform = "transform"
    notify = "notify"
    log = "log"
    execute = "execute"
    guard = "guard"


class HookOrigin(str, Enum):
    builtin = "builtin"
    user = "user"


class AuditCategory(str, Enum):
    security = "security"
    execution = "execution"
    tool = "tool"
    agent = "agent"
    hook = "hook"
    system = "system"


class AuditSeverity(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"
    critical = "critical"


class ExecutionEventType(str, Enum):
    state_changed = "state.changed"
    step_updated = "step.updated"
    checkpoint_created = "checkpoint.created"
    hook_blocked = "hook.blocked"
    rolled_back = "execution.rolled_back"
    usage_recorded = "usage.recorded"


class StepSafety(BaseSchema):
    """Safety classification attached to a step when it is planned."""

    allowed: bool = True
    risk_level: RiskLevel = RiskLevel.low
    risky: bool = False
    sensitive: bool = False
    reason: Optional[str] = None
    matched_rule: Optional[str] = None


class StepConfirmation(BaseSchema):
    decision: ConfirmationDecision
    decided_by: str
    decided_at: datetime = Field(default_factory=_utc_now)
    reason: Optional[str] = None


class Step(BaseSchema):
    number: int = Field(ge=1)
    action: str
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Optional[Dict[str, Any]] = None
    status: StepStatus = StepStatus.pending
    duration_ms: Optional[int] = None
    safety: Optional[StepSafety] = None
    confirmation: Optional[StepConfirmation] = None
    created_at: datetime = Field(default_factory=_utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def finished(self) -> bool:
        return self.status in FINISHED_STEP_STATUSES


class FileSnapshot(BaseSchema):
    """
    Prior state of a file touched by a step.

    ``content`` is the file content *before* the step ran (``None`` when the
    file did not exist). ``action`` is what the step did to the file.
    Content that is not valid UTF-8 is kept base64-encoded, as flagged by
    ``encoding``, so a restore writes back the exact bytes.
    """

    path: str
    content: Optional[str] = None
    encoding: Literal["utf-8", "base64"] = "utf-8"
    action: FileAction
    step_number: Optional[int] = None

    @classmethod
    def capture(cls, path: str, data: Optional[bytes], action: FileAction) -> "FileSnapshot":
        """Build a snapshot from a file's raw prior bytes (``None`` if it did not exist)."""
        if data is None:
            return cls(path=path, action=action)
        try:
            return cls(path=path, content=data.decode("utf-8"), action=action)
        except UnicodeDecodeError:
            return cls(path=path, content=base64.b64encode(data).decode("ascii"), encoding="base64", action=action)

    def raw_content(self) -> Optional[bytes]:
        if self.content is None:
            return None
        if self.encoding == "base64":
            return base64.b64decode(self.content)
        return self.content.encode("utf-8")


class DbChange(BaseSchema):
    """A reversible database change recorded by a step."""

    table: str
    operation: str
    key: Dict[str, Any] = Field(default_factory=dict)
    before: Optional[Dict[str, Any]] = None
    step_number: Optional[int] = None


class RollbackData(BaseSchema):
    file_snapshots: List[FileSnapshot] = Field(default_factory=list)
    db_changes: List[DbChange] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.file_snapshots and not self.db_changes


class Execution(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    agent_id: str
    agent_type: AgentType = AgentType.custom
    project_id: Optional[str] = None
    goal: str
    context: Dict[str, Any] = Field(default_factory=dict)
    status: ExecutionStatus = ExecutionStatus.idle
    failure_reason: Optional[FailureReason] = None
    failure_detail: Optional[str] = None
    current_step: int = 0
    steps: List[Step] = Field(default_factory=list)
    tokens_used: int = 0
    cost_incurred: float = 0.0
    budget_limit: Optional[float] = None
    max_steps: int = 50
    modified_files: List[str] = Field(default_factory=list)
    rollback_journal: RollbackData = Field(default_factory=RollbackData)
    version: int = 0
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def open_step(self) -> Optional[Step]:
        """Return the step the cursor sits on, if it has not finished yet."""
        for step in reversed(self.steps):
            if not step.finished:
                return step
        return None

    def step(self, number: int) -> Step:
        return self.steps[number - 1]


class CheckpointState(BaseSchema):
    status: ExecutionStatus
    current_step: int
    steps: List[Step] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)
    modified_files: List[str] = Field(default_factory=list)
    rollback_journal: RollbackData = Field(default_factory=RollbackData)


class Checkpoint(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    execution_id: str
    step_number: int = Field(ge=0)
    description: str = ""
    state: CheckpointState
    rollback_data: RollbackData = Field(default_factory=RollbackData)
    automatic: bool = False
    tokens_used: int = 0
    cost_incurred: float = 0.0
    created_at: datetime = Field(default_factory=_utc_now)


class HookCondition(BaseSchema):
    agent_types: Optional[List[AgentType]] = None
    file_patterns: Optional[List[str]] = None
    message_patterns: Optional[List[str]] = None
    min_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    min_file_bytes: Optional[int] = Field(default=None, ge=0)

    @field_validator("message_patterns")
    @classmethod
    def _compile_patterns(cls, patterns: Optional[List[str]]) -> Optional[List[str]]:
        for pattern in patterns or []:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid message pattern {pattern!r}: {exc}") from exc
        return patterns


class HookAction(BaseSchema):
    validation_prompt: Optional[str] = None
    blocked_message: Optional[str] = None
    transform_prompt: Optional[str] = None
    notify_endpoint: Optional[str] = None
    notify_template: Optional[str] = None
    execute_prompt: Optional[str] = None
    log_level: str = "info"
    log_template: Optional[str] = None


class Hook(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    description: Optional[str] = None
    hook_type: HookType
    action_type: HookActionType
    enabled: bool = True
    priority: int = Field(default=50, ge=0, le=100)
    condition: Optional[HookCondition] = None
    action: HookAction = Field(default_factory=HookAction)
    project_id: Optional[str] = None
    user_id: Optional[str] = None
    origin: HookOrigin = HookOrigin.user
    registration_seq: int = 0
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class HookContext(BaseSchema):
    execution_id: Optional[str] = None
    user_id: Optional[str] = None
    project_id: Optional[str] = None
    agent_type: Optional[AgentType] = None
    message: Optional[str] = None
    files: List[str] = Field(default_factory=list)
    file_sizes: Dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None
    confidence: Optional[float] = None
    duration_ms: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class HookResult(BaseSchema):
    hook_id: str
    hook_name: str
    success: bool = True
    skipped: bool = False
    blocked: bool = False
    blocked_reason: Optional[str] = None
    transformed: Optional[str] = None
    logs: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    duration_ms: int = 0


class HookPipelineResult(BaseSchema):
    hook_type: HookType
    results: List[HookResult] = Field(default_factory=list)
    blocked: bool = False
    blocked_reason: Optional[str] = None
    blocked_by: Optional[str] = None
    transformed: Optional[str] = None


class AuditLogEntry(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: Optional[str] = None
    project_id: Optional[str] = None
    execution_id: Optional[str] = None
    action: str
    category: AuditCategory
    severity: AuditSeverity = AuditSeverity.info
    details: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)


class AuditLogQuery(BaseSchema):
    user_id: Optional[str] = None
    project_id: Optional[str] = None
    execution_id: Optional[str] = None
    action: Optional[str] = None
    category: Optional[AuditCategory] = None
    severity: Optional[AuditSeverity] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class UsageDaily(BaseSchema):
    user_id: str
    day: str
    tokens_used: int = 0
    cost: float = 0.0
    execution_count: int = 0


class BudgetSettings(BaseSchema):
    user_id: str
    daily_limit: Optional[float] = Field(default=None, ge=0)
    monthly_limit: Optional[float] = Field(default=None, ge=0)


class AgentProfile(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    name: str
    agent_type: AgentType = AgentType.custom
    max_steps: Optional[int] = Field(default=None, ge=1)
    budget_limit: Optional[float] = Field(default=None, ge=0)
    autonomy_profile: AutonomyProfile = AutonomyProfile.balanced
    system_prompt: Optional[str] = None
    created_at: datetime = Field(default_factory=_utc_now)


class ExecutionEvent(BaseSchema):
    execution_id: str
    type: ExecutionEventType
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)
