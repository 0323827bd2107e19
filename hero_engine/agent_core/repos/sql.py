from __future__ import annotations

"""SQLAlchemy async repository implementations.

This module provides a SQL-backed persistence implementation for the
repository interfaces defined in ``hero_engine.agent_core.repos.interfaces``.
PostgreSQL (asyncpg) is the production target; SQLite (aiosqlite) is used by
the end-to-end tests.

Usage
-----

- Create an async engine with ``create_engine``.
- Create tables with ``create_all`` (for tests/dev).
- Create a session factory with ``create_sessionmaker``.
- Build repository instances with ``build_sql_repos``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits. Execution writes are guarded by the ``version`` column; usage
increments are a single ``INSERT ... ON CONFLICT DO UPDATE`` statement so
concurrent writers never lose an update.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..errors import PersistenceFailure
from ..schemas.domain import (
    AgentProfile,
    AuditLogEntry,
    AuditLogQuery,
    BudgetSettings,
    Checkpoint,
    CheckpointState,
    Execution,
    ExecutionStatus,
    Hook,
    RollbackData,
    Step,
    UsageDaily,
)
from .interfaces import (
    AgentRepository,
    AuditLogRepository,
    BudgetSettingsRepository,
    CheckpointRepository,
    ExecutionRepository,
    HookRepository,
    UsageLedgerRepository,
)
from .models import (
    AgentRow,
    AuditLogRow,
    Base,
    BudgetSettingsRow,
    CheckpointRow,
    ExecutionRow,
    HookRow,
    UsageDailyRow,
)


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    The helper normalizes Postgres URLs to ensure the async driver is used.
    For example, it rewrites ``postgresql://`` and other variants to
    ``postgresql+asyncpg://``.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    return create_async_engine(url, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata.

    This is mainly intended for tests and local development.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back out.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _execution_values(execution: Execution) -> Dict[str, Any]:
    return {
        "user_id": execution.user_id,
        "agent_id": execution.agent_id,
        "agent_type": execution.agent_type.value,
        "project_id": execution.project_id,
        "goal": execution.goal,
        "context": execution.context,
        "status": execution.status.value,
        "failure_reason": execution.failure_reason.value if execution.failure_reason else None,
        "failure_detail": execution.failure_detail,
        "current_step": execution.current_step,
        "steps": [s.model_dump(mode="json") for s in execution.steps],
        "tokens_used": execution.tokens_used,
        "cost_incurred": execution.cost_incurred,
        "budget_limit": execution.budget_limit,
        "max_steps": execution.max_steps,
        "modified_files": list(execution.modified_files),
        "rollback_journal": execution.rollback_journal.model_dump(mode="json"),
        "created_at": execution.created_at,
        "updated_at": execution.updated_at,
        "started_at": execution.started_at,
        "completed_at": execution.completed_at,
    }


def _execution_from_row(row: ExecutionRow) -> Execution:
    return Execution(
        id=row.id,
        user_id=row.user_id,
        agent_id=row.agent_id,
        agent_type=row.agent_type,
        project_id=row.project_id,
        goal=row.goal,
        context=row.context or {},
        status=row.status,
        failure_reason=row.failure_reason,
        failure_detail=row.failure_detail,
        current_step=row.current_step,
        steps=[Step.model_validate(s) for s in (row.steps or [])],
        tokens_used=row.tokens_used,
        cost_incurred=row.cost_incurred,
        budget_limit=row.budget_limit,
        max_steps=row.max_steps,
        modified_files=list(row.modified_files or []),
        rollback_journal=RollbackData.model_validate(row.rollback_journal or {}),
        version=row.version,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
    )


@dataclass(frozen=True)
class SqlExecutionRepository(ExecutionRepository):
    """SQL implementation of ``ExecutionRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def create(self, execution: Execution) -> None:
        async with self.session_factory() as s:
            s.add(ExecutionRow(id=execution.id, version=execution.version, **_execution_values(execution)))
            await s.commit()

    async def get(self, execution_id: str) -> Optional[Execution]:
        async with self.session_factory() as s:
            row = await s.get(ExecutionRow, execution_id)
            if row is None:
                return None
            return _execution_from_row(row)

    async def save(self, execution: Execution) -> Execution:
        """
        Write the execution if nobody else wrote it since it was loaded.

        Args:
            execution: The mutated execution.

        Returns:
            The execution with its new version.

        Raises:
            PersistenceFailure: The stored version moved on or the row is gone.
        """
        stored = execution.model_copy(update={"version": execution.version + 1, "updated_at": _utc_now()})
        async with self.session_factory() as s:
            stmt = (
                update(ExecutionRow)
                .where(ExecutionRow.id == execution.id, ExecutionRow.version == execution.version)
                .values(version=stored.version, **_execution_values(stored))
            )
            result = await s.execute(stmt)
            if result.rowcount == 0:
                await s.rollback()
                raise PersistenceFailure(
                    f"Execution '{execution.id}' was modified concurrently or no longer exists"
                )
            await s.commit()
        return stored

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[ExecutionStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Execution]:
        async with self.session_factory() as s:
            stmt = select(ExecutionRow)
            if user_id is not None:
                stmt = stmt.where(ExecutionRow.user_id == user_id)
            if statuses is not None:
                stmt = stmt.where(ExecutionRow.status.in_([ExecutionStatus(x).value for x in statuses]))
            stmt = stmt.order_by(ExecutionRow.created_at.desc()).offset(offset).limit(limit)
            result = await s.execute(stmt)
            return [_execution_from_row(row) for row in result.scalars().all()]


def _checkpoint_from_row(row: CheckpointRow) -> Checkpoint:
    return Checkpoint(
        id=row.id,
        execution_id=row.execution_id,
        step_number=row.step_number,
        description=row.description,
        state=CheckpointState.model_validate(row.state),
        rollback_data=RollbackData.model_validate(row.rollback_data or {}),
        automatic=row.automatic,
        tokens_used=row.tokens_used,
        cost_incurred=row.cost_incurred,
        created_at=_aware(row.created_at),
    )


@dataclass(frozen=True)
class SqlCheckpointRepository(CheckpointRepository):
    """SQL implementation of ``CheckpointRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def create(self, checkpoint: Checkpoint) -> None:
        async with self.session_factory() as s:
            s.add(
                CheckpointRow(
                    id=checkpoint.id,
                    execution_id=checkpoint.execution_id,
                    step_number=checkpoint.step_number,
                    description=checkpoint.description,
                    state=checkpoint.state.model_dump(mode="json"),
                    rollback_data=checkpoint.rollback_data.model_dump(mode="json"),
                    automatic=checkpoint.automatic,
                    tokens_used=checkpoint.tokens_used,
                    cost_incurred=checkpoint.cost_incurred,
                    created_at=checkpoint.created_at,
                )
            )
            await s.commit()

    async def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        async with self.session_factory() as s:
            row = await s.get(CheckpointRow, checkpoint_id)
            if row is None:
                return None
            return _checkpoint_from_row(row)

    async def list(self, execution_id: str) -> list[Checkpoint]:
        async with self.session_factory() as s:
            stmt = (
                select(CheckpointRow)
                .where(CheckpointRow.execution_id == execution_id)
                .order_by(CheckpointRow.step_number.desc(), CheckpointRow.created_at.desc())
            )
            result = await s.execute(stmt)
            return [_checkpoint_from_row(row) for row in result.scalars().all()]

    async def delete(self, checkpoint_id: str) -> bool:
        async with self.session_factory() as s:
            result = await s.execute(delete(CheckpointRow).where(CheckpointRow.id == checkpoint_id))
            await s.commit()
            return bool(result.rowcount)


@dataclass(frozen=True)
class SqlHookRepository(HookRepository):
    """SQL implementation of ``HookRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def list(self) -> list[Hook]:
        async with self.session_factory() as s:
            stmt = select(HookRow).order_by(HookRow.registration_seq.asc(), HookRow.created_at.asc())
            result = await s.execute(stmt)
            return [
                Hook(
                    id=row.id,
                    name=row.name,
                    description=row.description,
                    hook_type=row.hook_type,
                    action_type=row.action_type,
                    enabled=row.enabled,
                    priority=row.priority,
                    condition=row.condition,
                    action=row.action or {},
                    project_id=row.project_id,
                    user_id=row.user_id,
                    origin=row.origin,
                    registration_seq=row.registration_seq,
                    created_at=_aware(row.created_at),
                    updated_at=_aware(row.updated_at),
                )
                for row in result.scalars().all()
            ]

    async def upsert(self, hook: Hook) -> None:
        values = hook.model_dump(mode="json", exclude={"id", "created_at", "updated_at"})
        async with self.session_factory() as s:
            row = await s.get(HookRow, hook.id)
            if row is None:
                s.add(HookRow(id=hook.id, created_at=hook.created_at, updated_at=hook.updated_at, **values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)
                row.updated_at = hook.updated_at
            await s.commit()

    async def delete(self, hook_id: str) -> bool:
        async with self.session_factory() as s:
            result = await s.execute(delete(HookRow).where(HookRow.id == hook_id))
            await s.commit()
            return bool(result.rowcount)


@dataclass(frozen=True)
class SqlAuditLogRepository(AuditLogRepository):
    """SQL implementation of ``AuditLogRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def append(self, entry: AuditLogEntry) -> None:
        async with self.session_factory() as s:
            s.add(
                AuditLogRow(
                    id=entry.id,
                    user_id=entry.user_id,
                    project_id=entry.project_id,
                    execution_id=entry.execution_id,
                    action=entry.action,
                    category=entry.category.value,
                    severity=entry.severity.value,
                    details=entry.details,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    metadata_=entry.metadata,
                    created_at=entry.created_at,
                )
            )
            await s.commit()

    async def query(self, query: AuditLogQuery) -> list[AuditLogEntry]:
        async with self.session_factory() as s:
            stmt = select(AuditLogRow)
            if query.user_id is not None:
                stmt = stmt.where(AuditLogRow.user_id == query.user_id)
            if query.project_id is not None:
                stmt = stmt.where(AuditLogRow.project_id == query.project_id)
            if query.execution_id is not None:
                stmt = stmt.where(AuditLogRow.execution_id == query.execution_id)
            if query.action is not None:
                stmt = stmt.where(AuditLogRow.action == query.action)
            if query.category is not None:
                stmt = stmt.where(AuditLogRow.category == query.category.value)
            if query.severity is not None:
                stmt = stmt.where(AuditLogRow.severity == query.severity.value)
            if query.since is not None:
                stmt = stmt.where(AuditLogRow.created_at >= query.since)
            if query.until is not None:
                stmt = stmt.where(AuditLogRow.created_at <= query.until)
            stmt = stmt.order_by(AuditLogRow.created_at.desc()).offset(query.offset).limit(query.limit)
            result = await s.execute(stmt)
            return [
                AuditLogEntry(
                    id=row.id,
                    user_id=row.user_id,
                    project_id=row.project_id,
                    execution_id=row.execution_id,
                    action=row.action,
                    category=row.category,
                    severity=row.severity,
                    details=row.details or {},
                    ip_address=row.ip_address,
                    user_agent=row.user_agent,
                    metadata=row.metadata_ or {},
                    created_at=_aware(row.created_at),
                )
                for row in result.scalars().all()
            ]


@dataclass(frozen=True)
class SqlUsageLedgerRepository(UsageLedgerRepository):
    """SQL implementation of ``UsageLedgerRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def increment(
        self,
        *,
        user_id: str,
        day: str,
        tokens: int,
        cost: float,
        executions: int = 0,
    ) -> UsageDaily:
        """
        Add usage to the ``(user_id, day)`` row in a single statement.

        PostgreSQL and SQLite both support ``ON CONFLICT DO UPDATE``; other
        dialects fall back to a locked read-modify-write.
        """
        async with self.session_factory() as s:
            dialect = s.get_bind().dialect.name
            if dialect in ("postgresql", "sqlite"):
                if dialect == "postgresql":
                    from sqlalchemy.dialects.postgresql import insert as dialect_insert
                else:
                    from sqlalchemy.dialects.sqlite import insert as dialect_insert

                stmt = dialect_insert(UsageDailyRow).values(
                    user_id=user_id,
                    day=day,
                    tokens_used=tokens,
                    cost=cost,
                    execution_count=executions,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[UsageDailyRow.user_id, UsageDailyRow.day],
                    set_={
                        "tokens_used": UsageDailyRow.tokens_used + stmt.excluded.tokens_used,
                        "cost": UsageDailyRow.cost + stmt.excluded.cost,
                        "execution_count": UsageDailyRow.execution_count + stmt.excluded.execution_count,
                    },
                )
                await s.execute(stmt)
            else:
                stmt = (
                    select(UsageDailyRow)
                    .where(UsageDailyRow.user_id == user_id, UsageDailyRow.day == day)
                    .with_for_update()
                )
                row = (await s.execute(stmt)).scalar_one_or_none()
                if row is None:
                    s.add(
                        UsageDailyRow(
                            user_id=user_id, day=day, tokens_used=tokens, cost=cost, execution_count=executions
                        )
                    )
                else:
                    row.tokens_used += tokens
                    row.cost += cost
                    row.execution_count += executions
            await s.commit()

            row = await s.get(UsageDailyRow, (user_id, day), populate_existing=True)
            return UsageDaily(
                user_id=row.user_id,
                day=row.day,
                tokens_used=row.tokens_used,
                cost=row.cost,
                execution_count=row.execution_count,
            )

    async def list(
        self,
        user_id: str,
        *,
        since_day: Optional[str] = None,
        until_day: Optional[str] = None,
    ) -> list[UsageDaily]:
        async with self.session_factory() as s:
            stmt = select(UsageDailyRow).where(UsageDailyRow.user_id == user_id)
            if since_day is not None:
                stmt = stmt.where(UsageDailyRow.day >= since_day)
            if until_day is not None:
                stmt = stmt.where(UsageDailyRow.day <= until_day)
            stmt = stmt.order_by(UsageDailyRow.day.asc())
            result = await s.execute(stmt)
            return [
                UsageDaily(
                    user_id=row.user_id,
                    day=row.day,
                    tokens_used=row.tokens_used,
                    cost=row.cost,
                    execution_count=row.execution_count,
                )
                for row in result.scalars().all()
            ]


@dataclass(frozen=True)
class SqlBudgetSettingsRepository(BudgetSettingsRepository):
    """SQL implementation of ``BudgetSettingsRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get(self, user_id: str) -> Optional[BudgetSettings]:
        async with self.session_factory() as s:
            row = await s.get(BudgetSettingsRow, user_id)
            if row is None:
                return None
            return BudgetSettings(user_id=row.user_id, daily_limit=row.daily_limit, monthly_limit=row.monthly_limit)

    async def upsert(self, settings: BudgetSettings) -> None:
        async with self.session_factory() as s:
            row = await s.get(BudgetSettingsRow, settings.user_id)
            if row is None:
                s.add(
                    BudgetSettingsRow(
                        user_id=settings.user_id,
                        daily_limit=settings.daily_limit,
                        monthly_limit=settings.monthly_limit,
                        updated_at=_utc_now(),
                    )
                )
            else:
                row.daily_limit = settings.daily_limit
                row.monthly_limit = settings.monthly_limit
                row.updated_at = _utc_now()
            await s.commit()


def _agent_from_row(row: AgentRow) -> AgentProfile:
    return AgentProfile(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        agent_type=row.agent_type,
        max_steps=row.max_steps,
        budget_limit=row.budget_limit,
        autonomy_profile=row.autonomy_profile,
        system_prompt=row.system_prompt,
        created_at=_aware(row.created_at),
    )


@dataclass(frozen=True)
class SqlAgentRepository(AgentRepository):
    """SQL implementation of ``AgentRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def create(self, agent: AgentProfile) -> None:
        async with self.session_factory() as s:
            s.add(
                AgentRow(
                    id=agent.id,
                    user_id=agent.user_id,
                    name=agent.name,
                    agent_type=agent.agent_type.value,
                    max_steps=agent.max_steps,
                    budget_limit=agent.budget_limit,
                    autonomy_profile=agent.autonomy_profile.value,
                    system_prompt=agent.system_prompt,
                    created_at=agent.created_at,
                )
            )
            await s.commit()

    async def get(self, agent_id: str) -> Optional[AgentProfile]:
        async with self.session_factory() as s:
            row = await s.get(AgentRow, agent_id)
            if row is None:
                return None
            return _agent_from_row(row)

    async def list(self, user_id: str) -> list[AgentProfile]:
        async with self.session_factory() as s:
            stmt = select(AgentRow).where(AgentRow.user_id == user_id).order_by(AgentRow.created_at.asc())
            result = await s.execute(stmt)
            return [_agent_from_row(row) for row in result.scalars().all()]


@dataclass(frozen=True)
class SqlRepoBundle:
    """Convenience bundle of all SQL repositories for dependency injection."""

    executions: SqlExecutionRepository
    checkpoints: SqlCheckpointRepository
    hooks: SqlHookRepository
    audit_logs: SqlAuditLogRepository
    usage: SqlUsageLedgerRepository
    budgets: SqlBudgetSettingsRepository
    agents: SqlAgentRepository


def build_sql_repos(*, session_factory: async_sessionmaker[AsyncSession]) -> SqlRepoBundle:
    """Build a ``SqlRepoBundle`` from a session factory."""
    return SqlRepoBundle(
        executions=SqlExecutionRepository(session_factory=session_factory),
        checkpoints=SqlCheckpointRepository(session_factory=session_factory),
        hooks=SqlHookRepository(session_factory=session_factory),
        audit_logs=SqlAuditLogRepository(session_factory=session_factory),
        usage=SqlUsageLedgerRepository(session_factory=session_factory),
        budgets=SqlBudgetSettingsRepository(session_factory=session_factory),
        agents=SqlAgentRepository(session_factory=session_factory),
    )
