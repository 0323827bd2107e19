from httpx import AsyncClient

from hero_engine import __version__
from hero_engine.agent_core.service import ExecutionService
from hero_engine.server.core.config import settings


async def test_health(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "background_loops": 0, "hooks_enabled": 4}


async def test_health_counts_enabled_hooks(client: AsyncClient, service: ExecutionService) -> None:
    await service.hooks.toggle("builtin:completion_logger", False)
    assert (await client.get("/health")).json()["hooks_enabled"] == 3


async def test_version(client: AsyncClient) -> None:
    assert (await client.get("/version")).json() == {
        "version": __version__,
        "schema_version": "v1",
        "recovery_mode": settings.recovery_mode,
        "checkpoint_retention": settings.checkpoint_retention,
        "max_steps": settings.max_steps,
    }


async def test_health_needs_no_user(client: AsyncClient) -> None:
    assert (await client.get("/health", headers={"X-User-Id": ""})).status_code == 200


async def test_openapi_is_served_under_the_prefix(client: AsyncClient) -> None:
    schema = (await client.get("/api/v1/openapi.json")).json()
    assert schema["info"]["title"] == "Hero Agent Engine"
    assert "/api/v1/executions/{execution_id}/checkpoints/{checkpoint_id}/rollback" in schema["paths"]
