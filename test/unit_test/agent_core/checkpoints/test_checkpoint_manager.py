from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from hero_engine.agent_core.capabilities.registry import CapabilityRegistry
from hero_engine.agent_core.checkpoints.manager import CheckpointManager
from hero_engine.agent_core.checkpoints.reversers import LocalFileRestorer
from hero_engine.agent_core.errors import InvalidState, NotFound, PersistenceFailure
from hero_engine.agent_core.repos.memory import InMemoryCheckpointRepository
from hero_engine.agent_core.schemas.domain import (
    Checkpoint,
    DbChange,
    Execution,
    ExecutionStatus,
    FailureReason,
    FileAction,
    FileSnapshot,
    RollbackData,
    Step,
    StepStatus,
)

pytestmark = pytest.mark.asyncio


class RecordingReverser:
    def __init__(self) -> None:
        self.changes: List[DbChange] = []

    async def reverse(self, change: DbChange) -> None:
        self.changes.append(change)


class BrokenRestorer:
    async def restore(self, snapshot: FileSnapshot) -> None:
        raise OSError("read-only file system")


class BrokenRepository(InMemoryCheckpointRepository):
    async def create(self, checkpoint: Checkpoint) -> None:
        raise RuntimeError("database is locked")


@pytest.fixture
def repository() -> InMemoryCheckpointRepository:
    return InMemoryCheckpointRepository()


@pytest.fixture
def execution() -> Execution:
    return Execution(user_id="u1", agent_id="a1", goal="refactor", status=ExecutionStatus.paused)


def _complete(number: int, action: str) -> Step:
    return Step(number=number, action=action, status=StepStatus.complete)


def _three_steps(execution: Execution, workspace: Path) -> None:
    """Step 1 creates a.txt, step 2 rewrites it, step 3 deletes b.txt."""
    (workspace / "a.txt").write_text("v2")
    execution.steps = [_complete(1, "write_file"), _complete(2, "write_file"), _complete(3, "delete_file")]
    execution.current_step = 3
    execution.modified_files = ["a.txt", "b.txt"]
    execution.rollback_journal = RollbackData(
        file_snapshots=[
            FileSnapshot(path="a.txt", content=None, action=FileAction.create, step_number=1),
            FileSnapshot(path="a.txt", content="v1", action=FileAction.modify, step_number=2),
            FileSnapshot(path="b.txt", content="B", action=FileAction.delete, step_number=3),
        ],
        db_changes=[DbChange(table="users", operation="update", key={"id": 1}, before={"name": "x"}, step_number=3)],
    )


class TestCreate:
    async def test_snapshot_up_to_the_step(self, repository: InMemoryCheckpointRepository, execution: Execution, tmp_path: Path) -> None:
        _three_steps(execution, tmp_path)
        manager = CheckpointManager(repository)
        checkpoint = await manager.create(execution, step_number=1)

        assert checkpoint.description == "Checkpoint at step 1"
        assert checkpoint.state.current_step == 1
        assert [s.number for s in checkpoint.state.steps] == [1]
        assert len(checkpoint.state.rollback_journal.file_snapshots) == 1
        assert checkpoint.state.rollback_journal.db_changes == []
        assert (await manager.get(checkpoint.id)).id == checkpoint.id

    async def test_defaults_to_the_cursor(self, repository: InMemoryCheckpointRepository, execution: Execution, tmp_path: Path) -> None:
        _three_steps(execution, tmp_path)
        checkpoint = await CheckpointManager(repository).create(execution, description="manual save")
        assert checkpoint.step_number == 3
        assert checkpoint.description == "manual save"
        assert not checkpoint.automatic

    async def test_write_failure(self, execution: Execution) -> None:
        with pytest.raises(PersistenceFailure, match="database is locked"):
            await CheckpointManager(BrokenRepository()).create(execution)

    async def test_retention_keeps_manual_checkpoints(self, repository: InMemoryCheckpointRepository, execution: Execution) -> None:
        manager = CheckpointManager(repository, retention=3)
        manual = await manager.create(execution, step_number=0, description="baseline")
        for n in range(1, 6):
            await manager.create(execution, step_number=n, automatic=True)

        kept = await manager.list(execution.id)
        assert [c.step_number for c in kept] == [5, 4, 3, 0]
        assert kept[-1].id == manual.id

    async def test_default_retention_is_twenty(self, repository: InMemoryCheckpointRepository, execution: Execution) -> None:
        manager = CheckpointManager(repository)
        for n in range(25):
            await manager.create(execution, step_number=n, automatic=True)
        assert len(await manager.list(execution.id)) == 20


class TestLookup:
    async def test_foreign_checkpoint_is_not_found(self, repository: InMemoryCheckpointRepository, execution: Execution) -> None:
        manager = CheckpointManager(repository)
        checkpoint = await manager.create(execution)
        with pytest.raises(NotFound):
            await manager.get(checkpoint.id, execution_id="another-execution")
        with pytest.raises(NotFound):
            await manager.get("missing")

    async def test_latest_and_previous(self, repository: InMemoryCheckpointRepository, execution: Execution) -> None:
        manager = CheckpointManager(repository)
        assert await manager.get_latest(execution.id) is None
        first = await manager.create(execution, step_number=1)
        with pytest.raises(InvalidState):
            await manager.previous(execution.id)
        second = await manager.create(execution, step_number=2)

        assert (await manager.get_latest(execution.id)).id == second.id
        assert (await manager.previous(execution.id)).id == first.id


class TestRestore:
    async def test_reverses_newer_effects(self, repository: InMemoryCheckpointRepository, execution: Execution, tmp_path: Path) -> None:
        _three_steps(execution, tmp_path)
        reverser = RecordingReverser()
        manager = CheckpointManager(repository, file_restorer=LocalFileRestorer(tmp_path), db_reverser=reverser)
        target = await manager.create(execution, step_number=1)
        newer = await manager.create(execution, step_number=3)
        execution.failure_reason = FailureReason.rejected
        execution.failure_detail = "nope"

        result = await manager.restore(execution, target)

        assert result.reversed_files == ["b.txt", "a.txt"]
        assert (tmp_path / "a.txt").read_text() == "v1"
        assert (tmp_path / "b.txt").read_text() == "B"
        assert [c.table for c in reverser.changes] == ["users"]
        assert result.reversed_db_changes == 1
        assert [s.number for s in result.discarded_steps] == [2, 3]
        assert result.removed_checkpoints == [newer.id]
        assert result.errors == []
        assert result.message == "Rolled back to step 1"

        assert execution.current_step == 1
        assert [s.number for s in execution.steps] == [1]
        assert len(execution.rollback_journal.file_snapshots) == 1
        assert execution.failure_reason is None
        assert execution.failure_detail is None
        # The manager never changes the status; the engine owns that.
        assert execution.status == ExecutionStatus.paused
        assert [c.id for c in await manager.list(execution.id)] == [target.id]

    async def test_checkpoint_payload_is_reversed_last(self, repository: InMemoryCheckpointRepository, execution: Execution, tmp_path: Path) -> None:
        (tmp_path / "extra.txt").write_text("generated")
        manager = CheckpointManager(repository, file_restorer=LocalFileRestorer(tmp_path))
        checkpoint = await manager.create(
            execution,
            rollback_data=RollbackData(file_snapshots=[FileSnapshot(path="extra.txt", action=FileAction.create)]),
        )
        result = await manager.restore(execution, checkpoint)
        assert result.reversed_files == ["extra.txt"]
        assert not (tmp_path / "extra.txt").exists()

    async def test_errors_do_not_abort(self, repository: InMemoryCheckpointRepository, execution: Execution, tmp_path: Path) -> None:
        _three_steps(execution, tmp_path)
        manager = CheckpointManager(repository, file_restorer=BrokenRestorer())
        target = await manager.create(execution, step_number=0)

        result = await manager.restore(execution, target)
        assert result.reversed_files == []
        assert "b.txt: read-only file system" in result.errors
        assert "No database reverser configured for users" in result.errors
        assert execution.current_step == 0
        assert execution.steps == []

    async def test_preview(self, repository: InMemoryCheckpointRepository, execution: Execution, tmp_path: Path) -> None:
        _three_steps(execution, tmp_path)
        manager = CheckpointManager(repository)
        target = await manager.create(execution, step_number=1)
        await manager.create(execution, step_number=2)
        await manager.create(execution, step_number=3)

        preview = await manager.preview(execution, target)
        assert preview.steps_to_revert == 2
        assert preview.checkpoints_to_remove == 2
        assert preview.files_to_restore == ["a.txt", "b.txt"]
        assert preview.target_state.current_step == 1
        # Previewing changes nothing.
        assert execution.current_step == 3
        assert (tmp_path / "a.txt").read_text() == "v2"


class TestExactRestore:
    async def test_binary_file_round_trip(self, repository: InMemoryCheckpointRepository, execution: Execution, tmp_path: Path) -> None:
        payload = bytes(range(256))
        (tmp_path / "img.bin").write_bytes(payload)
        manager = CheckpointManager(repository, file_restorer=LocalFileRestorer(tmp_path))
        target = await manager.create(execution, step_number=0)

        deleted = await CapabilityRegistry.with_builtins(workspace_root=tmp_path).execute(
            execution, Step(number=1, action="delete_file", input={"path": "img.bin"})
        )
        assert not (tmp_path / "img.bin").exists()
        # Journals are stored as JSON.
        snapshot = FileSnapshot.model_validate_json(deleted.file_snapshots[0].model_dump_json())
        execution.steps = [_complete(1, "delete_file")]
        execution.current_step = 1
        execution.rollback_journal = RollbackData(file_snapshots=[snapshot.model_copy(update={"step_number": 1})])

        result = await manager.restore(execution, target)

        assert result.errors == []
        assert result.reversed_files == ["img.bin"]
        assert (tmp_path / "img.bin").read_bytes() == payload

    async def test_utf8_snapshot_restores_exact_bytes(self, tmp_path: Path) -> None:
        (tmp_path / "notes.txt").write_bytes(b"caf\xc3\xa9\r\n")
        snapshot = FileSnapshot.capture("notes.txt", b"caf\xc3\xa9\r\n", FileAction.modify)
        (tmp_path / "notes.txt").write_text("rewritten")

        await LocalFileRestorer(tmp_path).restore(snapshot)

        assert snapshot.content == "café\r\n"
        assert (tmp_path / "notes.txt").read_bytes() == b"caf\xc3\xa9\r\n"
