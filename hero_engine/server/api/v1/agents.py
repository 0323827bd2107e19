"""
Agent Profile Endpoints.

Agents are the profiles executions are started for: type, step ceiling,
default budget, autonomy profile and system prompt.
"""

from typing import List

from fastapi import APIRouter

from hero_engine.agent_core.schemas.domain import AgentProfile
from hero_engine.agent_core.service import AgentCreate
from hero_engine.server.services.deps import CurrentUser, ServiceDep

router = APIRouter()


@router.post("/", response_model=AgentProfile, status_code=201, summary="Create Agent")
async def create_agent(body: AgentCreate, service: ServiceDep, user_id: CurrentUser):
    return await service.create_agent(body, user_id)


@router.get("/", response_model=List[AgentProfile], summary="List Agents")
async def list_agents(service: ServiceDep, user_id: CurrentUser):
    return await service.list_agents(user_id)


@router.get("/{agent_id}", response_model=AgentProfile, summary="Get Agent", responses={404: {"description": "Agent not found"}})
async def get_agent(agent_id: str, service: ServiceDep, user_id: CurrentUser):
    return await service.get_agent(agent_id, user_id)
