"""Schemas and DTOs for the agent core."""

from .domain import (
    AgentProfile,
    AgentType,
    AuditCategory,
    AuditLogEntry,
    AuditLogQuery,
    AuditSeverity,
    AutonomyProfile,
    BudgetSettings,
    Checkpoint,
    CheckpointState,
    DbChange,
    Execution,
    ExecutionEvent,
    ExecutionEventType,
    ExecutionStatus,
    FailureReason,
    FileAction,
    FileSnapshot,
    Hook,
    HookAction,
    HookActionType,
    HookCondition,
    HookContext,
    HookOrigin,
    HookPipelineResult,
    HookResult,
    HookType,
    RiskLevel,
    RollbackData,
    Step,
    StepStatus,
    UsageDaily,
)

__all__ = [
    "AgentProfile",
    "AgentType",
    "AuditCategory",
    "AuditLogEntry",
    "AuditLogQuery",
    "AuditSeverity",
    "AutonomyProfile",
    "BudgetSettings",
    "Checkpoint",
    "CheckpointState",
    "DbChange",
    "Execution",
    "ExecutionEvent",
    "ExecutionEventType",
    "ExecutionStatus",
    "FailureReason",
    "FileAction",
    "FileSnapshot",
    "Hook",
    "HookAction",
    "HookActionType",
    "HookCondition",
    "HookContext",
    "HookOrigin",
    "HookPipelineResult",
    "HookResult",
    "HookType",
    "RiskLevel",
    "RollbackData",
    "Step",
    "StepStatus",
    "UsageDaily",
]
