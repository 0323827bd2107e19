from __future__ import annotations

"""Audit logger.

``AuditLogger`` writes the append-only audit trail of an execution: state
changes, step results, tool calls, safety checks and hook results.

Writes are best-effort. ``log_action`` never raises to its caller; a failed
write is reported on the Python logger (the fallback channel) and the run
carries on.
"""

import logging
from typing import Any, Dict, Optional

from ..repos.interfaces import AuditLogRepository
from ..schemas.domain import (
    AuditCategory,
    AuditLogEntry,
    AuditLogQuery,
    AuditSeverity,
    Execution,
    ExecutionStatus,
    Hook,
    HookContext,
    HookResult,
    Step,
    StepStatus,
)

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 500


def _preview(text: str) -> str:
    return text[:_PREVIEW_CHARS] + ("..." if len(text) > _PREVIEW_CHARS else "")


class AuditLogger:
    """Append structured entries to an ``AuditLogRepository``."""

    def __init__(self, repository: AuditLogRepository) -> None:
        self._repository = repository

    async def log_action(
        self,
        *,
        action: str,
        category: AuditCategory,
        severity: AuditSeverity = AuditSeverity.info,
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLogEntry]:
        """
        Append one audit entry.

        Returns:
            The stored entry, or None when the write failed.
        """
        try:
            entry = AuditLogEntry(
                user_id=user_id,
                project_id=project_id,
                execution_id=execution_id,
                action=action,
                category=category,
                severity=severity,
                details=details or {},
                ip_address=ip_address,
                user_agent=user_agent,
                metadata=metadata or {},
            )
            await self._repository.append(entry)
            return entry
        except Exception:
            logger.exception("Failed to write audit log entry action=%s execution=%s", action, execution_id)
            return None

    async def log_tool_call(
        self,
        user_id: str,
        tool_name: str,
        args: Any,
        result: Any,
        *,
        project_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        step_number: Optional[int] = None,
        ok: bool = True,
    ) -> Optional[AuditLogEntry]:
        return await self.log_action(
            action="tool_call",
            category=AuditCategory.tool,
            severity=AuditSeverity.info if ok else AuditSeverity.error,
            user_id=user_id,
            project_id=project_id,
            execution_id=execution_id,
            details={"tool_name": tool_name, "arguments": args, "result": result, "step_number": step_number},
        )

    async def log_safety_check(
        self,
        user_id: str,
        action: str,
        *,
        passed: bool,
        reason: Optional[str],
        details: Optional[Dict[str, Any]] = None,
        project_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        step_number: Optional[int] = None,
    ) -> Optional[AuditLogEntry]:
        return await self.log_action(
            action=f"safety_check:{action}",
            category=AuditCategory.security,
            severity=AuditSeverity.info if passed else AuditSeverity.warning,
            user_id=user_id,
            project_id=project_id,
            execution_id=execution_id,
            details={
                "check_action": action,
                "passed": passed,
                "reason": reason,
                "details": details or {},
                "step_number": step_number,
            },
        )

    async def log_agent_execution(
        self,
        user_id: str,
        agent_type: str,
        input: str,
        output: str,
        *,
        execution_id: str,
        project_id: Optional[str] = None,
    ) -> Optional[AuditLogEntry]:
        return await self.log_action(
            action="agent_execution",
            category=AuditCategory.agent,
            user_id=user_id,
            project_id=project_id,
            execution_id=execution_id,
            details={
                "agent_type": agent_type,
                "input": _preview(input),
                "output": _preview(output),
                "input_length": len(input),
                "output_length": len(output),
            },
        )

    async def log_hook_result(self, hook: Hook, result: HookResult, *, context: HookContext) -> Optional[AuditLogEntry]:
        if result.blocked:
            severity = AuditSeverity.warning
        elif not result.success:
            severity = AuditSeverity.error
        else:
            severity = AuditSeverity.info
        return await self.log_action(
            action=f"hook:{hook.hook_type.value}",
            category=AuditCategory.hook,
            severity=severity,
            user_id=context.user_id,
            project_id=context.project_id,
            execution_id=context.execution_id,
            details={
                "hook_id": hook.id,
                "hook_name": hook.name,
                "action_type": hook.action_type.value,
                "success": result.success,
                "blocked": result.blocked,
                "blocked_reason": result.blocked_reason,
                "error": result.error,
                "duration_ms": result.duration_ms,
                "step_number": context.metadata.get("step_number"),
            },
        )

    async def log_state_change(
        self,
        execution: Execution,
        previous: ExecutionStatus,
        *,
        actor: Optional[str] = None,
    ) -> Optional[AuditLogEntry]:
        failed = execution.status == ExecutionStatus.failed
        return await self.log_action(
            action=f"execution:{execution.status.value}",
            category=AuditCategory.execution,
            severity=AuditSeverity.error if failed else AuditSeverity.info,
            user_id=execution.user_id,
            project_id=execution.project_id,
            execution_id=execution.id,
            details={
                "from": previous.value,
                "to": execution.status.value,
                "reason": execution.failure_reason.value if execution.failure_reason else None,
                "detail": execution.failure_detail,
                "current_step": execution.current_step,
                "actor": actor,
            },
        )

    async def log_step(self, execution: Execution, step: Step, *, event: str) -> Optional[AuditLogEntry]:
        return await self.log_action(
            action=f"step:{event}",
            category=AuditCategory.execution,
            severity=AuditSeverity.error if step.status == StepStatus.failed else AuditSeverity.info,
            user_id=execution.user_id,
            project_id=execution.project_id,
            execution_id=execution.id,
            details={
                "step_number": step.number,
                "action": step.action,
                "status": step.status.value,
                "duration_ms": step.duration_ms,
                "output": step.output,
            },
        )

    async def query_logs(self, query: Optional[AuditLogQuery] = None, **filters: Any) -> list[AuditLogEntry]:
        """
        Query entries newest-first.

        Accepts either an ``AuditLogQuery`` or its fields as keyword
        arguments; defaults are limit 100, offset 0.
        """
        q = query or AuditLogQuery(**filters)
        return await self._repository.query(q)
