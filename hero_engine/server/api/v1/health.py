"""
Health Check Endpoints.

This module provides the engine status endpoints (health, version) used for
monitoring and deployment verification. Neither needs a caller identity.
"""

from fastapi import APIRouter

from hero_engine import __version__
from hero_engine.server.core.config import settings
from hero_engine.server.services.deps import ServiceDep

router = APIRouter()


@router.get(
    "/health",
    summary="Health Check",
    description="Check that the engine is up and report its live load.",
    response_description="Status object with the number of background step loops and enabled hooks.",
)
async def health_check(service: ServiceDep):
    """
    Health check endpoint.

    ``background_loops`` counts executions currently driven by this process;
    ``hooks_enabled`` counts the enabled hooks, built-ins included.
    """
    return {
        "status": "ok",
        "background_loops": service.background_loops,
        "hooks_enabled": sum(1 for hook in service.list_hooks() if hook.enabled),
    }


@router.get(
    "/version",
    summary="Get Version",
    description="Retrieve the engine version and the execution settings it runs with.",
    response_description="Version object.",
)
async def version():
    return {
        "version": __version__,
        "schema_version": "v1",
        "recovery_mode": settings.recovery_mode,
        "checkpoint_retention": settings.checkpoint_retention,
        "max_steps": settings.max_steps,
    }
