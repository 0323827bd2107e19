from __future__ import annotations

"""Checkpoint manager.

A checkpoint is an immutable snapshot of an execution at a step boundary:
cursor, step ledger, context, modified files and the rollback journal up to
that step. Rolling back to a checkpoint:

1. reverses, newest-first, every journal entry recorded *after* the
   checkpoint's step, followed by the checkpoint's own explicit payload;
2. restores the snapshot onto the execution;
3. removes the checkpoints taken after the target step.

The manager mutates the ``Execution`` it is given but never persists it or
changes its status; the engine owns the execution lock, the save and the
``paused`` transition.

Retention keeps the newest ``retention`` automatic checkpoints of an
execution plus every manual one.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..errors import InvalidState, NotFound, PersistenceFailure
from ..repos.interfaces import CheckpointRepository
from ..schemas.base import BaseSchema
from ..schemas.domain import (
    Checkpoint,
    CheckpointState,
    DbChange,
    Execution,
    FileSnapshot,
    RollbackData,
    Step,
)
from .reversers import DbChangeReverser, FileRestorer

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = 20


class RollbackPreview(BaseSchema):
    checkpoint_id: str
    step_number: int
    steps_to_revert: int
    checkpoints_to_remove: int
    files_to_restore: List[str]
    target_state: CheckpointState


@dataclass
class RollbackResult:
    checkpoint: Checkpoint
    discarded_steps: List[Step] = field(default_factory=list)
    reversed_files: List[str] = field(default_factory=list)
    reversed_db_changes: int = 0
    removed_checkpoints: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"Rolled back to step {self.checkpoint.step_number}"


def _entries_after(journal: RollbackData, step_number: int) -> RollbackData:
    return RollbackData(
        file_snapshots=[s for s in journal.file_snapshots if (s.step_number or 0) > step_number],
        db_changes=[c for c in journal.db_changes if (c.step_number or 0) > step_number],
    )


def _entries_upto(journal: RollbackData, step_number: int) -> RollbackData:
    return RollbackData(
        file_snapshots=[s for s in journal.file_snapshots if (s.step_number or 0) <= step_number],
        db_changes=[c for c in journal.db_changes if (c.step_number or 0) <= step_number],
    )


class CheckpointManager:
    """Create, list, prune and restore checkpoints.

    Args:
        repository: Checkpoint store.
        file_restorer: Undoes file effects. Without one, file entries are
            reported as errors on the rollback result.
        db_reverser: Undoes database effects. Same fallback as files.
        retention: Number of automatic checkpoints kept per execution.
    """

    def __init__(
        self,
        repository: CheckpointRepository,
        *,
        file_restorer: Optional[FileRestorer] = None,
        db_reverser: Optional[DbChangeReverser] = None,
        retention: int = DEFAULT_RETENTION,
    ) -> None:
        self._repository = repository
        self._file_restorer = file_restorer
        self._db_reverser = db_reverser
        self._retention = retention

    @staticmethod
    def snapshot(execution: Execution, step_number: Optional[int] = None) -> CheckpointState:
        """Capture the execution as of ``step_number`` (default: its cursor)."""
        upto = execution.current_step if step_number is None else step_number
        return CheckpointState(
            status=execution.status,
            current_step=upto,
            steps=[s.model_copy(deep=True) for s in execution.steps if s.number <= upto],
            context=dict(execution.context),
            modified_files=list(execution.modified_files),
            rollback_journal=_entries_upto(execution.rollback_journal, upto),
        )

    async def create(
        self,
        execution: Execution,
        *,
        description: str = "",
        step_number: Optional[int] = None,
        state: Optional[CheckpointState] = None,
        rollback_data: Optional[RollbackData] = None,
        automatic: bool = False,
    ) -> Checkpoint:
        """
        Store a checkpoint of ``execution``.

        Args:
            execution: The execution to snapshot.
            description: Human-readable label.
            step_number: Step boundary the checkpoint represents; defaults to
                the execution's cursor.
            state: Explicit snapshot; captured from the execution when omitted.
            rollback_data: Extra effects to reverse when rolling back to this
                checkpoint.
            automatic: Whether the engine (rather than a user) created it.

        Raises:
            PersistenceFailure: The checkpoint could not be written.
        """
        number = execution.current_step if step_number is None else step_number
        checkpoint = Checkpoint(
            execution_id=execution.id,
            step_number=number,
            description=description or f"Checkpoint at step {number}",
            state=state or self.snapshot(execution, number),
            rollback_data=rollback_data or RollbackData(),
            automatic=automatic,
            tokens_used=execution.tokens_used,
            cost_incurred=execution.cost_incurred,
        )
        try:
            await self._repository.create(checkpoint)
        except Exception as exc:
            raise PersistenceFailure(f"Failed to write checkpoint for execution '{execution.id}': {exc}") from exc
        logger.info(
            "Checkpoint %s created for execution %s at step %d (automatic=%s)",
            checkpoint.id,
            execution.id,
            number,
            automatic,
        )
        if automatic:
            await self._prune(execution.id)
        return checkpoint

    async def list(self, execution_id: str) -> List[Checkpoint]:
        return await self._repository.list(execution_id)

    async def get_latest(self, execution_id: str) -> Optional[Checkpoint]:
        checkpoints = await self._repository.list(execution_id)
        return checkpoints[0] if checkpoints else None

    async def get(self, checkpoint_id: str, *, execution_id: Optional[str] = None) -> Checkpoint:
        checkpoint = await self._repository.get(checkpoint_id)
        if checkpoint is None or (execution_id is not None and checkpoint.execution_id != execution_id):
            raise NotFound("Checkpoint", checkpoint_id)
        return checkpoint

    async def previous(self, execution_id: str) -> Checkpoint:
        """The checkpoint before the latest one."""
        checkpoints = await self._repository.list(execution_id)
        if len(checkpoints) < 2:
            raise InvalidState("No previous checkpoint available")
        return checkpoints[1]

    async def delete(self, checkpoint_id: str) -> bool:
        return await self._repository.delete(checkpoint_id)

    async def preview(self, execution: Execution, checkpoint: Checkpoint) -> RollbackPreview:
        newer = [c for c in await self._repository.list(execution.id) if c.step_number > checkpoint.step_number]
        pending = _entries_after(execution.rollback_journal, checkpoint.step_number)
        files = [s.path for s in pending.file_snapshots] + [s.path for s in checkpoint.rollback_data.file_snapshots]
        return RollbackPreview(
            checkpoint_id=checkpoint.id,
            step_number=checkpoint.step_number,
            steps_to_revert=sum(1 for s in execution.steps if s.number > checkpoint.step_number),
            checkpoints_to_remove=len(newer),
            files_to_restore=list(dict.fromkeys(files)),
            target_state=checkpoint.state,
        )

    async def restore(self, execution: Execution, checkpoint: Checkpoint) -> RollbackResult:
        """
        Reverse effects and restore ``checkpoint`` onto ``execution`` in place.

        Reversal errors do not abort the rollback; they are collected on the
        result and logged.
        """
        result = RollbackResult(
            checkpoint=checkpoint,
            discarded_steps=[s for s in execution.steps if s.number > checkpoint.step_number],
        )
        pending = _entries_after(execution.rollback_journal, checkpoint.step_number)
        for snapshot in [*reversed(pending.file_snapshots), *reversed(checkpoint.rollback_data.file_snapshots)]:
            await self._restore_file(snapshot, result)
        for change in [*reversed(pending.db_changes), *reversed(checkpoint.rollback_data.db_changes)]:
            await self._reverse_db(change, result)

        state = checkpoint.state
        execution.current_step = state.current_step
        execution.steps = [s.model_copy(deep=True) for s in state.steps]
        execution.context = dict(state.context)
        execution.modified_files = list(state.modified_files)
        execution.rollback_journal = state.rollback_journal.model_copy(deep=True)
        execution.failure_reason = None
        execution.failure_detail = None
        execution.completed_at = None

        for newer in await self._repository.list(execution.id):
            if newer.step_number > checkpoint.step_number and await self._repository.delete(newer.id):
                result.removed_checkpoints.append(newer.id)

        logger.info(
            "Execution %s rolled back to step %d (%d steps discarded, %d errors)",
            execution.id,
            checkpoint.step_number,
            len(result.discarded_steps),
            len(result.errors),
        )
        return result

    async def _restore_file(self, snapshot: FileSnapshot, result: RollbackResult) -> None:
        if self._file_restorer is None:
            result.errors.append(f"No file restorer configured for {snapshot.path}")
            return
        try:
            await self._file_restorer.restore(snapshot)
            result.reversed_files.append(snapshot.path)
        except Exception as exc:
            logger.warning("Failed to restore %s: %s", snapshot.path, exc)
            result.errors.append(f"{snapshot.path}: {exc}")

    async def _reverse_db(self, change: DbChange, result: RollbackResult) -> None:
        if self._db_reverser is None:
            result.errors.append(f"No database reverser configured for {change.table}")
            return
        try:
            await self._db_reverser.reverse(change)
            result.reversed_db_changes += 1
        except Exception as exc:
            logger.warning("Failed to reverse %s change on %s: %s", change.operation, change.table, exc)
            result.errors.append(f"{change.table}: {exc}")

    async def _prune(self, execution_id: str) -> None:
        automatic = [c for c in await self._repository.list(execution_id) if c.automatic]
        for stale in automatic[self._retention :]:
            await self._repository.delete(stale.id)
            logger.debug("Pruned checkpoint %s of execution %s", stale.id, execution_id)
