"""Repository interfaces and implementations for engine persistence.

The repository layer is the persistence boundary for the execution engine.

Responsibilities
----------------

- Provide a small set of async repository interfaces (Protocols) that the
  engine depends on.
- Persist durable, auditable records of an execution:

  - execution status, step ledger and rollback journal,
  - immutable checkpoints for rollback,
  - hook definitions,
  - the append-only audit log,
  - per-user daily usage rows and budget ceilings,
  - agent profiles.

Design notes
------------

The engine is written against interfaces so it can be used with:

- a SQL database (async SQLAlchemy implementation in ``repos.sql``),
- in-memory repositories (``repos.memory``) for tests and embedding.

The SQL implementation commits at repository-method boundaries, so each
persisted artifact is durable when the method returns.
"""

from .interfaces import (
    AgentRepository,
    AuditLogRepository,
    BudgetSettingsRepository,
    CheckpointRepository,
    ExecutionRepository,
    HookRepository,
    UsageLedgerRepository,
)

__all__ = [
    "AgentRepository",
    "AuditLogRepository",
    "BudgetSettingsRepository",
    "CheckpointRepository",
    "ExecutionRepository",
    "HookRepository",
    "UsageLedgerRepository",
]
