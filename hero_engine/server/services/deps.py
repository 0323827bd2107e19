"""
API Dependencies.

Provides the ``ExecutionService`` and the calling user's identity to API
endpoints. The caller is identified by the ``X-User-Id`` header; an
authenticating proxy in front of the server is expected to set it.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException

from hero_engine.agent_core.service import ExecutionService
from hero_engine.server.services.engine import get_execution_service

ServiceDep = Annotated[ExecutionService, Depends(get_execution_service)]


async def get_current_user(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Resolve the calling user from the ``X-User-Id`` header."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


CurrentUser = Annotated[str, Depends(get_current_user)]
