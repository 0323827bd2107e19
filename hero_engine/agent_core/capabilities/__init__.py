"""Action capabilities executed by the runtime engine."""

from .base import ActionExecutor, Capability, CapabilityContext, CapabilityResult
from .builtin import (
    DeleteFileCapability,
    ReadFileCapability,
    RunCommandCapability,
    WorkspaceViolation,
    WriteFileCapability,
    resolve_in_workspace,
)
from .registry import CapabilityRegistry

__all__ = [
    "ActionExecutor",
    "Capability",
    "CapabilityContext",
    "CapabilityRegistry",
    "CapabilityResult",
    "DeleteFileCapability",
    "ReadFileCapability",
    "RunCommandCapability",
    "WorkspaceViolation",
    "WriteFileCapability",
    "resolve_in_workspace",
]
