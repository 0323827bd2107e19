"""
Checkpoint Endpoints.

Checkpoints are immutable snapshots of an execution's step ledger and
rollback data. Rolling back restores the snapshot, undoes the side effects
recorded after it and leaves the execution ``paused``.

Routes are nested under ``/executions/{execution_id}/checkpoints``.
"""

from typing import List, Optional

from fastapi import APIRouter, Response

from hero_engine.agent_core.checkpoints.manager import RollbackPreview
from hero_engine.agent_core.schemas.domain import Checkpoint
from hero_engine.agent_core.service import ExecutionState
from hero_engine.server.schemas import CheckpointCreate, RollbackResponse
from hero_engine.server.services.deps import CurrentUser, ServiceDep

router = APIRouter()


@router.get("/", response_model=List[Checkpoint], summary="List Checkpoints")
async def list_checkpoints(execution_id: str, service: ServiceDep, user_id: CurrentUser):
    """Checkpoints of an execution, newest first."""
    return await service.list_checkpoints(execution_id, user_id)


@router.post("/", response_model=Checkpoint, status_code=201, summary="Create Checkpoint")
async def create_checkpoint(
    execution_id: str, service: ServiceDep, user_id: CurrentUser, body: Optional[CheckpointCreate] = None
):
    return await service.create_checkpoint(execution_id, user_id, description=(body or CheckpointCreate()).description)


@router.get("/latest", response_model=Checkpoint, summary="Get Latest Checkpoint")
async def latest_checkpoint(execution_id: str, service: ServiceDep, user_id: CurrentUser):
    return await service.latest_checkpoint(execution_id, user_id)


@router.post("/previous/rollback", response_model=RollbackResponse, summary="Roll Back to Previous Checkpoint")
async def rollback_to_previous(execution_id: str, service: ServiceDep, user_id: CurrentUser):
    """Roll back to the checkpoint before the latest one."""
    execution, result = await service.rollback_to_previous(execution_id, user_id)
    return RollbackResponse.of(ExecutionState.of(execution), result)


@router.get("/{checkpoint_id}", response_model=Checkpoint, summary="Get Checkpoint")
async def get_checkpoint(execution_id: str, checkpoint_id: str, service: ServiceDep, user_id: CurrentUser):
    return await service.get_checkpoint(execution_id, checkpoint_id, user_id)


@router.get("/{checkpoint_id}/preview", response_model=RollbackPreview, summary="Preview Rollback")
async def preview_rollback(execution_id: str, checkpoint_id: str, service: ServiceDep, user_id: CurrentUser):
    """What a rollback to the checkpoint would revert, without changing anything."""
    return await service.preview_rollback(execution_id, checkpoint_id, user_id)


@router.post("/{checkpoint_id}/rollback", response_model=RollbackResponse, summary="Roll Back to Checkpoint")
async def rollback(execution_id: str, checkpoint_id: str, service: ServiceDep, user_id: CurrentUser):
    execution, result = await service.rollback(execution_id, checkpoint_id, user_id)
    return RollbackResponse.of(ExecutionState.of(execution), result)


@router.delete("/{checkpoint_id}", status_code=204, summary="Delete Checkpoint")
async def delete_checkpoint(execution_id: str, checkpoint_id: str, service: ServiceDep, user_id: CurrentUser):
    await service.delete_checkpoint(execution_id, checkpoint_id, user_id)
    return Response(status_code=204)
