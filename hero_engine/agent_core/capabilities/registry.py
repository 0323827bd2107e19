from __future__ import annotations

"""Capability registry.

The registry maps an action name to an executable capability implementation
and acts as the engine's ``ActionExecutor``.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from ..schemas.domain import Execution, Step
from .base import Capability, CapabilityContext, CapabilityResult
from .builtin import DeleteFileCapability, ReadFileCapability, RunCommandCapability, WriteFileCapability

logger = logging.getLogger(__name__)


class CapabilityRegistry:
    """
    In-memory mapping of action names to implementations.

    Notes:
        - ``register`` overwrites any existing mapping for the action name.
        - ``get`` will raise ``KeyError`` if the capability is missing.
        - ``execute`` never raises for an unknown action; it reports a failed
          result so the planner can see the error on the next step.
    """

    def __init__(self, *, workspace_root: Optional[Path] = None) -> None:
        self._caps: Dict[str, Capability] = {}
        self._workspace_root = workspace_root

    @classmethod
    def with_builtins(cls, *, workspace_root: Optional[Path] = None) -> "CapabilityRegistry":
        """Registry preloaded with the workspace file and command capabilities."""
        registry = cls(workspace_root=workspace_root)
        for cap in (ReadFileCapability(), WriteFileCapability(), DeleteFileCapability(), RunCommandCapability()):
            registry.register(cap)
        return registry

    def register(self, cap: Capability) -> None:
        self._caps[cap.name] = cap

    def get(self, name: str) -> Capability:
        return self._caps[name]

    def has(self, name: str) -> bool:
        return name in self._caps

    def names(self) -> List[str]:
        return sorted(self._caps)

    async def execute(self, execution: Execution, step: Step) -> CapabilityResult:
        """Resolve ``step.action`` and run it with ``step.input`` as arguments."""
        if not self.has(step.action):
            return CapabilityResult.failure(f"unknown action: {step.action}")
        ctx = CapabilityContext(execution=execution, step=step, workspace_root=self._workspace_root)
        logger.debug("Executing %s for execution %s step %d", step.action, execution.id, step.number)
        return await self.get(step.action).execute(ctx, args=dict(step.input))
