"""Execution checkpoints and rollback."""

from .manager import DEFAULT_RETENTION, CheckpointManager, RollbackPreview, RollbackResult
from .reversers import DbChangeReverser, FileRestorer, LocalFileRestorer

__all__ = [
    "DEFAULT_RETENTION",
    "CheckpointManager",
    "DbChangeReverser",
    "FileRestorer",
    "LocalFileRestorer",
    "RollbackPreview",
    "RollbackResult",
]
