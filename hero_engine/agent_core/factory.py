from __future__ import annotations

"""Convenience factories for wiring the agent core.

This module builds an ``ExecutionEngine`` and an ``ExecutionService`` from a
repository bundle (SQL or in-memory) plus the oracles and tunables a
deployment chooses.

The intent is to keep application wiring and tests concise, while still
allowing advanced deployments to provide their own executor, oracles and
reversers.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from .audit.logger import AuditLogger
from .budget.gate import BudgetGate, PricingConfig
from .capabilities.base import ActionExecutor
from .capabilities.registry import CapabilityRegistry
from .checkpoints.manager import DEFAULT_RETENTION, CheckpointManager
from .checkpoints.reversers import DbChangeReverser, FileRestorer, LocalFileRestorer
from .hooks.notifier import HttpNotifier, Notifier
from .hooks.pipeline import HookPipeline
from .hooks.registry import HookRegistry
from .oracles.base import JudgmentOracle, PlanningOracle
from .oracles.scripted import ScriptedPlanningOracle
from .policy.models import SafetyPolicy
from .policy.safety import SafetyChecker
from .repos.memory import InMemoryRepoBundle
from .repos.sql import SqlRepoBundle
from .runtime.engine import ExecutionEngine
from .runtime.events import ExecutionEventBus
from .runtime.models import EngineConfig, EngineDeps
from .service import ExecutionService

RepoBundle = Union[SqlRepoBundle, InMemoryRepoBundle]


@dataclass(frozen=True)
class EngineComponents:
    """Everything ``build_engine`` wired, for callers that need the parts."""

    engine: ExecutionEngine
    registry: HookRegistry
    capabilities: Optional[CapabilityRegistry]


def build_engine(
    *,
    repos: RepoBundle,
    planner: Optional[PlanningOracle] = None,
    judgment: Optional[JudgmentOracle] = None,
    executor: Optional[ActionExecutor] = None,
    notifier: Optional[Notifier] = None,
    safety_policy: Optional[SafetyPolicy] = None,
    workspace_root: Optional[Path] = None,
    config: Optional[EngineConfig] = None,
    retention: int = DEFAULT_RETENTION,
    pricing: Optional[PricingConfig] = None,
    file_restorer: Optional[FileRestorer] = None,
    db_reverser: Optional[DbChangeReverser] = None,
    events: Optional[ExecutionEventBus] = None,
) -> EngineComponents:
    """
    Construct an ``ExecutionEngine`` and its collaborators.

    Defaults:

    - planner: ``ScriptedPlanningOracle`` (replays ``context["plan"]``).
    - judgment: the pipeline's rule-based ``PatternJudgmentOracle``.
    - executor: ``CapabilityRegistry.with_builtins`` over ``workspace_root``.
    - file restorer: ``LocalFileRestorer`` over ``workspace_root`` when given.

    The hook registry is returned unloaded; call ``await registry.load()``
    (or ``populate_builtins()``) before driving executions.
    """
    audit = AuditLogger(repos.audit_logs)
    registry = HookRegistry(repos.hooks)
    pipeline = HookPipeline(registry, judgment=judgment, notifier=notifier or HttpNotifier(), audit=audit)

    capabilities: Optional[CapabilityRegistry] = None
    if executor is None:
        capabilities = CapabilityRegistry.with_builtins(workspace_root=workspace_root)
        executor = capabilities
    if file_restorer is None and workspace_root is not None:
        file_restorer = LocalFileRestorer(workspace_root)

    deps = EngineDeps(
        executions=repos.executions,
        checkpoints=CheckpointManager(
            repos.checkpoints,
            file_restorer=file_restorer,
            db_reverser=db_reverser,
            retention=retention,
        ),
        hooks=pipeline,
        budget=BudgetGate(repos.usage, repos.budgets, pricing=pricing),
        audit=audit,
        planner=planner or ScriptedPlanningOracle(),
        executor=executor,
        safety=SafetyChecker(safety_policy),
        events=events or ExecutionEventBus(),
        agents=repos.agents,
    )
    return EngineComponents(
        engine=ExecutionEngine(deps=deps, config=config),
        registry=registry,
        capabilities=capabilities,
    )


def build_service(*, repos: RepoBundle, **engine_kwargs: Any) -> ExecutionService:
    """Build an ``ExecutionService`` over a freshly wired engine."""
    parts = build_engine(repos=repos, **engine_kwargs)
    return ExecutionService(engine=parts.engine, hooks=parts.registry, agents=repos.agents)
