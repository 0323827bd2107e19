"""Hero Agent Engine.

This package contains the execution engine used to let autonomous software
agents (planner, coder, tester, ops, researcher) carry out multi-step tasks
against a user's project under explicit safety controls.

High-level architecture
-----------------------

The codebase is organized around three guarantees:

- **Every step is gated**: before an action runs, the budget gate, the
  ``pre_execution`` hook chain and the safety checker are consulted. Actions
  classified sensitive suspend the run until a human approves or rejects.
- **Every run is resumable**: the execution record (step ledger included) is
  persisted on each mutation, and checkpoints are written before risky steps
  so a run can be rolled back to any prior point.
- **Every decision is auditable**: state changes, step results, safety checks
  and hook results are written to an append-only audit log from which a run
  can be replayed.

Core subpackages
----------------

- ``hero_engine.agent_core``:

  - A LangGraph-based step loop driven by a planning oracle.
  - The hook registry and pipeline (guards, transforms, notifiers, loggers).
  - The checkpoint manager, budget gate, audit logger and replay tools.
  - Repository interfaces with SQL and in-memory implementations.

- ``hero_engine.server``:

  - A FastAPI application exposing the engine over HTTP and Server-Sent
    Events.

Typical workflow
----------------

Most integrations should use
``hero_engine.agent_core.service.ExecutionService``:

1. Start an execution for an agent with a goal.
2. Observe it via ``get_state`` or a streaming subscription.
3. Approve or reject steps that wait for confirmation.
4. Roll back to a checkpoint when a run went somewhere it should not have.
"""

__version__ = "0.1.0"
