from __future__ import annotations

"""SQLAlchemy ORM models for engine persistence.

These ORM models define the SQL schema used by the SQL repository
implementation in ``hero_engine.agent_core.repos.sql``.

Design
------

The schema is optimized for crash recovery and auditability:

- Executions store their step ledger and rollback journal inline, so a
  single row is enough to resume a run. A ``version`` column backs
  optimistic concurrency.
- Checkpoints are immutable snapshots.
- Audit log rows are append-only.
- Usage rows are keyed by ``(user_id, day)`` and only ever incremented.

Structured columns use JSONB on PostgreSQL and plain JSON elsewhere (SQLite
in tests). Table names are prefixed with ``he_`` to avoid collisions in
shared databases.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class ExecutionRow(Base):
    """Row model for ``he_executions``.

    Key fields:

    - ``status``: lifecycle state (idle/running/paused/awaiting_confirmation/
      complete/failed).
    - ``steps``: the ordered step ledger as JSON.
    - ``rollback_journal``: file snapshots and database changes recorded by
      executed steps.
    - ``version``: incremented on every write.
    """

    __tablename__ = "he_executions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    agent_id: Mapped[str] = mapped_column(String(64))
    agent_type: Mapped[str] = mapped_column(String(32))
    project_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    goal: Mapped[str] = mapped_column(Text)
    context: Mapped[Dict[str, Any]] = mapped_column(JsonColumn, default=dict)

    status: Mapped[str] = mapped_column(String(32), index=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    failure_detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    current_step: Mapped[int] = mapped_column(Integer, default=0)
    steps: Mapped[List[Dict[str, Any]]] = mapped_column(JsonColumn, default=list)

    tokens_used: Mapped[int] = mapped_column(Integer, default=0)
    cost_incurred: Mapped[float] = mapped_column(Float, default=0.0)
    budget_limit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_steps: Mapped[int] = mapped_column(Integer)

    modified_files: Mapped[List[str]] = mapped_column(JsonColumn, default=list)
    rollback_journal: Mapped[Dict[str, Any]] = mapped_column(JsonColumn, default=dict)

    version: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class CheckpointRow(Base):
    """Row model for ``he_checkpoints``."""

    __tablename__ = "he_checkpoints"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    execution_id: Mapped[str] = mapped_column(String(64), index=True)

    step_number: Mapped[int] = mapped_column(Integer)
    description: Mapped[str] = mapped_column(Text, default="")
    state: Mapped[Dict[str, Any]] = mapped_column(JsonColumn)
    rollback_data: Mapped[Dict[str, Any]] = mapped_column(JsonColumn, default=dict)
    automatic: Mapped[bool] = mapped_column(Boolean, default=False)

    tokens_used: Mapped[int] = mapped_column(Integer, default=0)
    cost_incurred: Mapped[float] = mapped_column(Float, default=0.0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class HookRow(Base):
    """Row model for ``he_hooks``.

    Holds user-defined hooks and persisted overrides of built-in hooks
    (for example a disabled built-in guard).
    """

    __tablename__ = "he_hooks"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(String(128))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    hook_type: Mapped[str] = mapped_column(String(32), index=True)
    action_type: Mapped[str] = mapped_column(String(16))
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    priority: Mapped[int] = mapped_column(Integer, default=50)

    condition: Mapped[Optional[Dict[str, Any]]] = mapped_column(JsonColumn, nullable=True)
    action: Mapped[Dict[str, Any]] = mapped_column(JsonColumn, default=dict)

    project_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    origin: Mapped[str] = mapped_column(String(16))
    registration_seq: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AuditLogRow(Base):
    """Row model for ``he_audit_logs``.

    Append-only record of tool calls, safety checks, hook results and state
    changes.
    """

    __tablename__ = "he_audit_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    execution_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    action: Mapped[str] = mapped_column(String(128))
    category: Mapped[str] = mapped_column(String(16), index=True)
    severity: Mapped[str] = mapped_column(String(16))

    details: Mapped[Dict[str, Any]] = mapped_column(JsonColumn, default=dict)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # ``metadata`` is reserved on declarative classes
    metadata_: Mapped[Dict[str, Any]] = mapped_column("metadata", JsonColumn, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class UsageDailyRow(Base):
    """Row model for ``he_usage_daily``.

    One row per user per day; counters are incremented in place.
    """

    __tablename__ = "he_usage_daily"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    day: Mapped[str] = mapped_column(String(10), primary_key=True)

    tokens_used: Mapped[int] = mapped_column(Integer, default=0)
    cost: Mapped[float] = mapped_column(Float, default=0.0)
    execution_count: Mapped[int] = mapped_column(Integer, default=0)


class BudgetSettingsRow(Base):
    """Row model for ``he_budget_settings``."""

    __tablename__ = "he_budget_settings"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    daily_limit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    monthly_limit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AgentRow(Base):
    """Row model for ``he_agents``."""

    __tablename__ = "he_agents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    name: Mapped[str] = mapped_column(String(128))
    agent_type: Mapped[str] = mapped_column(String(32))

    max_steps: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    budget_limit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    autonomy_profile: Mapped[str] = mapped_column(String(32))
    system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
