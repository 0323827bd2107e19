from __future__ import annotations

"""Repository interface contracts.

The engine depends on these Protocols instead of concrete persistence
implementations.

Contract guidelines
-------------------

- All methods are async.
- Implementations must not leak SQLAlchemy sessions/transactions to callers.
- Execution writes are optimistic: ``save`` only succeeds when the stored
  version equals the version the caller loaded, which keeps a single step
  cursor per execution even across processes.
- The audit log and the usage ledger are append/increment only.

These interfaces mirror the engine's needs:

- Executions carry their status, step ledger and rollback journal.
- Checkpoints are immutable snapshots, removed only by retention.
- Hooks persist user-defined interceptors and built-in overrides.
- The usage ledger keeps one additive row per user per day.
"""

from typing import Iterable, Optional, Protocol

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


class ExecutionRepository(Protocol):
    """Persist and query executions, including their step ledger."""

    async def create(self, execution: Execution) -> None:
        """
        Create a new execution record.

        Args:
            execution: The initial execution state to persist.
        """
        ...

    async def get(self, execution_id: str) -> Optional[Execution]:
        """
        Retrieve an execution by its ID.

        Args:
            execution_id: The execution identifier.

        Returns:
            The Execution if found, else None.
        """
        ...

    async def save(self, execution: Execution) -> Execution:
        """
        Persist a mutated execution.

        Args:
            execution: The execution as loaded and mutated by the caller. Its
                ``version`` must equal the stored version.

        Returns:
            The stored execution with its version incremented.

        Raises:
            PersistenceFailure: The record is missing or was modified
                concurrently.
        """
        ...

    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[ExecutionStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Execution]:
        """
        List executions newest-first, optionally filtered.

        Args:
            user_id: Only executions owned by this user.
            statuses: Only executions in one of these statuses.
            limit: Max number of records to return.
            offset: Pagination offset.

        Returns:
            A list of Execution objects.
        """
        ...


class CheckpointRepository(Protocol):
    """Store immutable checkpoints."""

    async def create(self, checkpoint: Checkpoint) -> None:
        """
        Persist a new checkpoint.

        Args:
            checkpoint: The checkpoint to store.
        """
        ...

    async def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        """
        Retrieve a checkpoint by its ID.

        Args:
            checkpoint_id: The checkpoint identifier.

        Returns:
            The Checkpoint if found, else None.
        """
        ...

    async def list(self, execution_id: str) -> list[Checkpoint]:
        """
        List checkpoints of an execution, newest-first.

        Ordering is by step number descending, then creation time descending.

        Args:
            execution_id: The execution identifier.

        Returns:
            A list of Checkpoint objects.
        """
        ...

    async def delete(self, checkpoint_id: str) -> bool:
        """
        Delete a checkpoint.

        Args:
            checkpoint_id: The checkpoint identifier.

        Returns:
            True if a record was removed.
        """
        ...


class HookRepository(Protocol):
    """Persist hook definitions."""

    async def list(self) -> list[Hook]:
        """
        List all stored hooks in registration order.

        Returns:
            A list of Hook objects.
        """
        ...

    async def upsert(self, hook: Hook) -> None:
        """
        Insert or replace a hook definition.

        Args:
            hook: The hook to store.
        """
        ...

    async def delete(self, hook_id: str) -> bool:
        """
        Delete a hook definition.

        Args:
            hook_id: The hook identifier.

        Returns:
            True if a record was removed.
        """
        ...


class AuditLogRepository(Protocol):
    """Append-only store for audit log entries."""

    async def append(self, entry: AuditLogEntry) -> None:
        """
        Append an entry to the audit log.

        Args:
            entry: The entry to persist.
        """
        ...

    async def query(self, query: AuditLogQuery) -> list[AuditLogEntry]:
        """
        Query entries newest-first.

        Args:
            query: Filters and pagination.

        Returns:
            A list of AuditLogEntry objects.
        """
        ...


class UsageLedgerRepository(Protocol):
    """Per-user, per-day usage rows, incremented additively."""

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
        Atomically add usage to a user's row for a day.

        The row is inserted when absent, otherwise its counters are added to
        in place. Concurrent increments must never lose an update.

        Args:
            user_id: The user identifier.
            day: The day as ``YYYY-MM-DD``.
            tokens: Tokens to add.
            cost: Cost (USD) to add.
            executions: Execution count to add.

        Returns:
            The row after the increment.
        """
        ...

    async def list(
        self,
        user_id: str,
        *,
        since_day: Optional[str] = None,
        until_day: Optional[str] = None,
    ) -> list[UsageDaily]:
        """
        List a user's rows ordered by day ascending.

        Args:
            user_id: The user identifier.
            since_day: Inclusive lower bound (``YYYY-MM-DD``).
            until_day: Inclusive upper bound (``YYYY-MM-DD``).

        Returns:
            A list of UsageDaily rows.
        """
        ...


class BudgetSettingsRepository(Protocol):
    """Per-user budget ceilings."""

    async def get(self, user_id: str) -> Optional[BudgetSettings]:
        """
        Retrieve the user's budget settings.

        Args:
            user_id: The user identifier.

        Returns:
            BudgetSettings if configured, else None (unlimited).
        """
        ...

    async def upsert(self, settings: BudgetSettings) -> None:
        """
        Insert or replace the user's budget settings.

        Args:
            settings: The settings to store.
        """
        ...


class AgentRepository(Protocol):
    """Agent profiles that executions are started for."""

    async def create(self, agent: AgentProfile) -> None:
        """
        Persist a new agent profile.

        Args:
            agent: The agent profile to store.
        """
        ...

    async def get(self, agent_id: str) -> Optional[AgentProfile]:
        """
        Retrieve an agent profile by its ID.

        Args:
            agent_id: The agent identifier.

        Returns:
            The AgentProfile if found, else None.
        """
        ...

    async def list(self, user_id: str) -> list[AgentProfile]:
        """
        List the agent profiles owned by a user.

        Args:
            user_id: The user identifier.

        Returns:
            A list of AgentProfile objects.
        """
        ...
