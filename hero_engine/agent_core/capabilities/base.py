from __future__ import annotations

"""Capability protocol and execution data models.

A capability is the concrete execution unit behind a planned step's
``action`` name.

The runtime engine hands each approved step to an ``ActionExecutor``; the
default executor is ``CapabilityRegistry``, which resolves the action name to
a registered capability and runs it with a ``CapabilityContext``.

Capabilities should:

- return structured outputs in ``CapabilityResult.output``,
- report the files they touched together with their prior content so the
  engine can journal rollback data,
- avoid performing safety decisions themselves (the engine classifies every
  step before it reaches the executor).
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from ..schemas.domain import DbChange, Execution, FileSnapshot, Step


@dataclass(frozen=True)
class CapabilityContext:
    """Execution context passed to capability implementations.

    Attributes
    ----------
    execution:
        The execution the step belongs to.
    step:
        The step being executed.
    workspace_root:
        Directory that file and command capabilities are confined to.
    """

    execution: Execution
    step: Step
    workspace_root: Optional[Path] = None


@dataclass
class CapabilityResult:
    """Structured capability execution result."""

    ok: bool
    output: Dict[str, Any]
    files_changed: List[str] = field(default_factory=list)
    file_sizes: Dict[str, int] = field(default_factory=dict)
    file_snapshots: List[FileSnapshot] = field(default_factory=list)
    db_changes: List[DbChange] = field(default_factory=list)

    @classmethod
    def failure(cls, error: str, **output: Any) -> "CapabilityResult":
        return cls(ok=False, output={"error": error, **output})


class Capability(Protocol):
    """Protocol for capability implementations."""

    name: str

    async def execute(self, ctx: CapabilityContext, *, args: Dict[str, Any]) -> CapabilityResult: ...


class ActionExecutor(Protocol):
    """Runs one approved step. The engine's only door to side effects."""

    async def execute(self, execution: Execution, step: Step) -> CapabilityResult:
        """
        Execute a step.

        Args:
            execution: The owning execution.
            step: The step to run; ``step.action`` names the capability and
                ``step.input`` carries its arguments.

        Returns:
            CapabilityResult. ``ok=False`` marks the step failed without
            failing the execution.
        """
        ...
