from __future__ import annotations

"""Execution replay.

Rebuilds what happened during an execution from its step ledger and audit
trail: an ordered timeline, the steps with the audit entries that reference
them (by ``details.step_number``), and a summary. Two executions can be
compared step-by-step by action name, and a replay can be exported as
Markdown.
"""

import json
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field

from ..audit.logger import AuditLogger
from ..schemas.base import BaseSchema
from ..schemas.domain import (
    AuditLogEntry,
    AuditLogQuery,
    AuditSeverity,
    Execution,
    Step,
    StepStatus,
)

_REPLAY_LOG_LIMIT = 1000


class TimelineEventType(str, Enum):
    execution_start = "execution_start"
    step_start = "step_start"
    step_complete = "step_complete"
    step_failed = "step_failed"
    step_skipped = "step_skipped"
    confirmation_requested = "confirmation_requested"
    confirmation_received = "confirmation_received"
    log = "log"
    execution_end = "execution_end"


class TimelineEvent(BaseSchema):
    timestamp: datetime
    type: TimelineEventType
    message: str
    step_number: Optional[int] = None
    action: Optional[str] = None
    level: str = "info"


class ReplayStep(BaseSchema):
    step: Step
    logs: List[AuditLogEntry] = Field(default_factory=list)


class ReplaySummary(BaseSchema):
    total_steps: int = 0
    completed_steps: int = 0
    failed_steps: int = 0
    skipped_steps: int = 0
    total_duration_ms: int = 0
    average_step_duration_ms: int = 0
    error_count: int = 0
    confirmation_count: int = 0


class ExecutionReplay(BaseSchema):
    execution_id: str
    goal: str
    status: str
    failure_reason: Optional[str] = None
    steps: List[ReplayStep] = Field(default_factory=list)
    timeline: List[TimelineEvent] = Field(default_factory=list)
    summary: ReplaySummary = Field(default_factory=ReplaySummary)


class ModifiedStep(BaseSchema):
    before: Step
    after: Step


class ExecutionComparison(BaseSchema):
    base_execution_id: str
    other_execution_id: str
    added: List[Step] = Field(default_factory=list)
    removed: List[Step] = Field(default_factory=list)
    modified: List[ModifiedStep] = Field(default_factory=list)


def _summarize(steps: List[ReplayStep], logs: List[AuditLogEntry]) -> ReplaySummary:
    ledger = [s.step for s in steps]
    durations = [s.duration_ms for s in ledger if s.duration_ms is not None]
    total = sum(durations)
    return ReplaySummary(
        total_steps=len(ledger),
        completed_steps=sum(1 for s in ledger if s.status == StepStatus.complete),
        failed_steps=sum(1 for s in ledger if s.status == StepStatus.failed),
        skipped_steps=sum(1 for s in ledger if s.status == StepStatus.skipped),
        total_duration_ms=total,
        average_step_duration_ms=round(total / len(durations)) if durations else 0,
        error_count=sum(1 for e in logs if e.severity in (AuditSeverity.error, AuditSeverity.critical)),
        confirmation_count=sum(
            1 for s in ledger if s.confirmation is not None or s.status == StepStatus.awaiting_confirmation
        ),
    )


def _timeline(execution: Execution, steps: List[ReplayStep]) -> List[TimelineEvent]:
    events: List[TimelineEvent] = [
        TimelineEvent(
            timestamp=execution.started_at or execution.created_at,
            type=TimelineEventType.execution_start,
            message=f"Started: {execution.goal}",
        )
    ]
    for item in steps:
        step = item.step
        started = step.started_at or step.created_at
        common = {"step_number": step.number, "action": step.action}
        events.append(
            TimelineEvent(timestamp=started, type=TimelineEventType.step_start, message=f"Started: {step.action}", **common)
        )
        if step.confirmation is not None:
            events.append(
                TimelineEvent(
                    timestamp=step.created_at,
                    type=TimelineEventType.confirmation_requested,
                    message=f"Awaiting confirmation: {step.action}",
                    level="warning",
                    **common,
                )
            )
            events.append(
                TimelineEvent(
                    timestamp=step.confirmation.decided_at,
                    type=TimelineEventType.confirmation_received,
                    message=f"{step.confirmation.decision.value.capitalize()} by {step.confirmation.decided_by}",
                    **common,
                )
            )
        ended = step.completed_at or started + timedelta(milliseconds=step.duration_ms or 0)
        if step.status == StepStatus.complete:
            events.append(
                TimelineEvent(
                    timestamp=ended,
                    type=TimelineEventType.step_complete,
                    message=f"Completed: {step.action} ({step.duration_ms or 0}ms)",
                    **common,
                )
            )
        elif step.status == StepStatus.failed:
            events.append(
                TimelineEvent(
                    timestamp=ended, type=TimelineEventType.step_failed, message=f"Failed: {step.action}", level="error", **common
                )
            )
        elif step.status == StepStatus.skipped:
            events.append(
                TimelineEvent(timestamp=ended, type=TimelineEventType.step_skipped, message=f"Skipped: {step.action}", **common)
            )
        elif step.status == StepStatus.awaiting_confirmation:
            events.append(
                TimelineEvent(
                    timestamp=step.created_at,
                    type=TimelineEventType.confirmation_requested,
                    message=f"Awaiting confirmation: {step.action}",
                    level="warning",
                    **common,
                )
            )
        for entry in item.logs:
            events.append(
                TimelineEvent(
                    timestamp=entry.created_at,
                    type=TimelineEventType.log,
                    message=entry.action,
                    level=entry.severity.value,
                    step_number=step.number,
                )
            )
    if execution.is_terminal:
        reason = f" ({execution.failure_reason.value})" if execution.failure_reason else ""
        events.append(
            TimelineEvent(
                timestamp=execution.completed_at or execution.updated_at,
                type=TimelineEventType.execution_end,
                message=f"Ended: {execution.status.value}{reason}",
                level="error" if execution.failure_reason else "info",
            )
        )
    # Stable sort keeps start-before-end for events sharing a timestamp.
    events.sort(key=lambda e: e.timestamp)
    return events


class ExecutionReplayer:
    """Build, compare and export execution replays from the audit trail."""

    def __init__(self, audit: AuditLogger) -> None:
        self._audit = audit

    async def build(self, execution: Execution) -> ExecutionReplay:
        logs = await self._audit.query_logs(AuditLogQuery(execution_id=execution.id, limit=_REPLAY_LOG_LIMIT))
        logs = sorted(logs, key=lambda e: e.created_at)
        by_step: Dict[int, List[AuditLogEntry]] = {}
        for entry in logs:
            number = entry.details.get("step_number")
            if isinstance(number, int):
                by_step.setdefault(number, []).append(entry)
        steps = [ReplayStep(step=s, logs=by_step.get(s.number, [])) for s in execution.steps]
        return ExecutionReplay(
            execution_id=execution.id,
            goal=execution.goal,
            status=execution.status.value,
            failure_reason=execution.failure_reason.value if execution.failure_reason else None,
            steps=steps,
            timeline=_timeline(execution, steps),
            summary=_summarize(steps, logs),
        )

    @staticmethod
    def compare(base: Execution, other: Execution) -> ExecutionComparison:
        """
        Compare two executions by action name.

        A step is ``added`` when its action only occurs in ``other``,
        ``removed`` when it only occurs in ``base`` and ``modified`` when the
        action occurs in both with a different input. The last step per action
        name represents it.
        """
        before = {s.action: s for s in base.steps}
        after = {s.action: s for s in other.steps}
        result = ExecutionComparison(base_execution_id=base.id, other_execution_id=other.id)
        for action, step in after.items():
            previous = before.get(action)
            if previous is None:
                result.added.append(step)
            elif json.dumps(previous.input, sort_keys=True, default=str) != json.dumps(step.input, sort_keys=True, default=str):
                result.modified.append(ModifiedStep(before=previous, after=step))
        result.removed = [step for action, step in before.items() if action not in after]
        return result

    @staticmethod
    def export_markdown(replay: ExecutionReplay) -> str:
        summary = replay.summary
        lines: List[str] = [
            f"# Execution Replay {replay.execution_id}",
            "",
            f"**Goal:** {replay.goal}",
            f"**Status:** {replay.status}" + (f" ({replay.failure_reason})" if replay.failure_reason else ""),
            "",
            "## Summary",
            "",
            "| Metric | Value |",
            "|--------|-------|",
            f"| Total Steps | {summary.total_steps} |",
            f"| Completed | {summary.completed_steps} |",
            f"| Failed | {summary.failed_steps} |",
            f"| Skipped | {summary.skipped_steps} |",
            f"| Total Duration | {summary.total_duration_ms}ms |",
            f"| Avg Step Duration | {summary.average_step_duration_ms}ms |",
            f"| Errors | {summary.error_count} |",
            f"| Confirmations | {summary.confirmation_count} |",
            "",
            "## Steps",
            "",
        ]
        for item in replay.steps:
            step = item.step
            lines.append(f"### Step {step.number}: {step.action}")
            lines.append("")
            lines.append(f"**Status:** {step.status.value}")
            if step.duration_ms:
                lines.append(f"**Duration:** {step.duration_ms}ms")
            lines.append("")
            for label, payload in (("Input", step.input), ("Output", step.output)):
                if payload:
                    lines.extend([f"**{label}:**", "```json", json.dumps(payload, indent=2, default=str), "```", ""])
            if item.logs:
                lines.append("**Logs:**")
                lines.extend(f"- [{entry.severity.value.upper()}] {entry.action}" for entry in item.logs)
                lines.append("")

        lines.extend(["## Timeline", "", "| Time | Event | Details |", "|------|-------|---------|"])
        for event in replay.timeline:
            lines.append(f"| {event.timestamp.strftime('%H:%M:%S')} | {event.type.value} | {event.message} |")
        return "\n".join(lines)
