"""
Hooks API Endpoints.

Manage the lifecycle interceptors that run around every step: list, inspect,
create, update, toggle, delete and dry-run hooks.

Built-in hooks (ids prefixed ``builtin:``) can only be toggled; deleting or
editing them answers 403. User-defined hooks can only be changed by the user
who created them.
"""

from typing import List, Optional

from fastapi import APIRouter, Response

from hero_engine.agent_core.hooks.registry import HookCreate, HookUpdate
from hero_engine.agent_core.schemas.domain import Hook, HookContext, HookResult, HookType
from hero_engine.core.logging_config import get_logger
from hero_engine.server.schemas import HookToggle
from hero_engine.server.services.deps import CurrentUser, ServiceDep

logger = get_logger(__name__)
router = APIRouter()


@router.get(
    "/",
    response_model=List[Hook],
    summary="List Hooks",
    description="List hooks in execution order (priority, then registration order).",
)
async def list_hooks(
    service: ServiceDep,
    user_id: CurrentUser,
    hook_type: Optional[HookType] = None,
    project_id: Optional[str] = None,
):
    return service.list_hooks(hook_type=hook_type, project_id=project_id)


@router.post("/", response_model=Hook, status_code=201, summary="Create Hook")
async def create_hook(body: HookCreate, service: ServiceDep, user_id: CurrentUser):
    logger.info(f"User {user_id} registering hook {body.name} ({body.hook_type.value}/{body.action_type.value})")
    return await service.create_hook(body, user_id)


@router.get("/{hook_id}", response_model=Hook, summary="Get Hook", responses={404: {"description": "Hook not found"}})
async def get_hook(hook_id: str, service: ServiceDep, user_id: CurrentUser):
    return service.get_hook(hook_id)


@router.patch("/{hook_id}", response_model=Hook, summary="Update Hook")
async def update_hook(hook_id: str, body: HookUpdate, service: ServiceDep, user_id: CurrentUser):
    return await service.update_hook(hook_id, body, user_id)


@router.post("/{hook_id}/toggle", response_model=Hook, summary="Enable or Disable Hook")
async def toggle_hook(hook_id: str, service: ServiceDep, user_id: CurrentUser, body: Optional[HookToggle] = None):
    return await service.toggle_hook(hook_id, user_id, (body or HookToggle()).enabled)


@router.delete("/{hook_id}", status_code=204, summary="Delete Hook")
async def delete_hook(hook_id: str, service: ServiceDep, user_id: CurrentUser):
    await service.delete_hook(hook_id, user_id)
    return Response(status_code=204)


@router.post("/{hook_id}/test", response_model=HookResult, summary="Test Hook")
async def test_hook(hook_id: str, context: HookContext, service: ServiceDep, user_id: CurrentUser):
    """Run one hook against the given context without touching any execution."""
    return await service.test_hook(hook_id, context, user_id)
