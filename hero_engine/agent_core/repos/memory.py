from __future__ import annotations

"""In-memory repository implementations.

These implement the same Protocols as ``repos.sql`` and are used for unit
tests and for embedding the engine without a database. Records are deep
copied on the way in and out, so callers never share mutable state with the
store.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import PersistenceFailure
from ..schemas.domain import (
    AgentProfile,
    AuditLogEntry,
    AuditLogQuery,
    BudgetSettings,
    Checkpoint,
    Execution,
    ExecutionStatus,
    Hook,
    UsageDaily,
)


class InMemoryExecutionRepository:
    def __init__(self) -> None:
        self._rows: Dict[str, Execution] = {}

    async def create(self, execution: Execution) -> None:
        self._rows[execution.id] = execution.model_copy(deep=True)

    async def get(self, execution_id: str) -> Optional[Execution]:
        row = self._rows.get(execution_id)
        return row.model_copy(deep=True) if row is not None else None

    async def save(self, execution: Execution) -> Execution:
        current = self._rows.get(execution.id)
        if current is None or current.version != execution.version:
            raise PersistenceFailure(f"Execution '{execution.id}' was modified concurrently or no longer exists")
        stored = execution.model_copy(
            update={"version": execution.version + 1, "updated_at": datetime.now(timezone.utc)},
            deep=True,
        )
        self._rows[execution.id] = stored
        return stored.model_copy(deep=True)

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[ExecutionStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Execution]:
        wanted = {ExecutionStatus(s) for s in statuses} if statuses is not None else None
        rows = [
            r
            for r in self._rows.values()
            if (user_id is None or r.user_id == user_id) and (wanted is None or r.status in wanted)
        ]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in rows[offset : offset + limit]]


class InMemoryCheckpointRepository:
    def __init__(self) -> None:
        self._rows: Dict[str, Checkpoint] = {}

    async def create(self, checkpoint: Checkpoint) -> None:
        self._rows[checkpoint.id] = checkpoint.model_copy(deep=True)

    async def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        row = self._rows.get(checkpoint_id)
        return row.model_copy(deep=True) if row is not None else None

    async def list(self, execution_id: str) -> list[Checkpoint]:
        rows = [c for c in self._rows.values() if c.execution_id == execution_id]
        rows.sort(key=lambda c: (c.step_number, c.created_at), reverse=True)
        return [c.model_copy(deep=True) for c in rows]

    async def delete(self, checkpoint_id: str) -> bool:
        return self._rows.pop(checkpoint_id, None) is not None


class InMemoryHookRepository:
    def __init__(self) -> None:
        self._rows: Dict[str, Hook] = {}

    async def list(self) -> list[Hook]:
        rows = sorted(self._rows.values(), key=lambda h: (h.registration_seq, h.created_at))
        return [h.model_copy(deep=True) for h in rows]

    async def upsert(self, hook: Hook) -> None:
        self._rows[hook.id] = hook.model_copy(deep=True)

    async def delete(self, hook_id: str) -> bool:
        return self._rows.pop(hook_id, None) is not None


class InMemoryAuditLogRepository:
    def __init__(self) -> None:
        self._rows: List[AuditLogEntry] = []

    async def append(self, entry: AuditLogEntry) -> None:
        self._rows.append(entry.model_copy(deep=True))

    async def query(self, query: AuditLogQuery) -> list[AuditLogEntry]:
        def matches(e: AuditLogEntry) -> bool:
            return (
                (query.user_id is None or e.user_id == query.user_id)
                and (query.project_id is None or e.project_id == query.project_id)
                and (query.execution_id is None or e.execution_id == query.execution_id)
                and (query.action is None or e.action == query.action)
                and (query.category is None or e.category == query.category)
                and (query.severity is None or e.severity == query.severity)
                and (query.since is None or e.created_at >= query.since)
                and (query.until is None or e.created_at <= query.until)
            )

        # Stable sort keeps insertion order for identical timestamps, reversed.
        rows = [e for e in reversed(self._rows) if matches(e)]
        rows.sort(key=lambda e: e.created_at, reverse=True)
        return [e.model_copy(deep=True) for e in rows[query.offset : query.offset + query.limit]]


@dataclass
class InMemoryUsageLedgerRepository:
    _rows: Dict[Tuple[str, str], UsageDaily] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def increment(
        self,
        *,
        user_id: str,
        day: str,
        tokens: int,
        cost: float,
        executions: int = 0,
    ) -> UsageDaily:
        async with self._lock:
            row = self._rows.get((user_id, day)) or UsageDaily(user_id=user_id, day=day)
            row = row.model_copy(
                update={
                    "tokens_used": row.tokens_used + tokens,
                    "cost": row.cost + cost,
                    "execution_count": row.execution_count + executions,
                }
            )
            self._rows[(user_id, day)] = row
            return row.model_copy()

    async def list(
        self,
        user_id: str,
        *,
        since_day: Optional[str] = None,
        until_day: Optional[str] = None,
    ) -> list[UsageDaily]:
        rows = [
            r
            for (uid, day), r in self._rows.items()
            if uid == user_id
            and (since_day is None or day >= since_day)
            and (until_day is None or day <= until_day)
        ]
        rows.sort(key=lambda r: r.day)
        return [r.model_copy() for r in rows]


class InMemoryBudgetSettingsRepository:
    def __init__(self) -> None:
        self._rows: Dict[str, BudgetSettings] = {}

    async def get(self, user_id: str) -> Optional[BudgetSettings]:
        row = self._rows.get(user_id)
        return row.model_copy() if row is not None else None

    async def upsert(self, settings: BudgetSettings) -> None:
        self._rows[settings.user_id] = settings.model_copy()


class InMemoryAgentRepository:
    def __init__(self) -> None:
        self._rows: Dict[str, AgentProfile] = {}

    async def create(self, agent: AgentProfile) -> None:
        self._rows[agent.id] = agent.model_copy()

    async def get(self, agent_id: str) -> Optional[AgentProfile]:
        row = self._rows.get(agent_id)
        return row.model_copy() if row is not None else None

    async def list(self, user_id: str) -> list[AgentProfile]:
        return [a.model_copy() for a in self._rows.values() if a.user_id == user_id]


@dataclass(frozen=True)
class InMemoryRepoBundle:
    """Bundle of in-memory repositories mirroring ``SqlRepoBundle``."""

    executions: InMemoryExecutionRepository
    checkpoints: InMemoryCheckpointRepository
    hooks: InMemoryHookRepository
    audit_logs: InMemoryAuditLogRepository
    usage: InMemoryUsageLedgerRepository
    budgets: InMemoryBudgetSettingsRepository
    agents: InMemoryAgentRepository


def build_memory_repos() -> InMemoryRepoBundle:
    """Build a fresh ``InMemoryRepoBundle``."""
    return InMemoryRepoBundle(
        executions=InMemoryExecutionRepository(),
        checkpoints=InMemoryCheckpointRepository(),
        hooks=InMemoryHookRepository(),
        audit_logs=InMemoryAuditLogRepository(),
        usage=InMemoryUsageLedgerRepository(),
        budgets=InMemoryBudgetSettingsRepository(),
        agents=InMemoryAgentRepository(),
    )
