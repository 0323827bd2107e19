import os
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Use in-memory SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Set test database URL before importing app
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from hero_engine.agent_core.factory import build_service  # noqa: E402
from hero_engine.agent_core.repos.memory import build_memory_repos  # noqa: E402
from hero_engine.agent_core.service import ExecutionService  # noqa: E402

OWNER = "user-1"


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest_asyncio.fixture(name="service")
async def service_fixture(workspace: Path) -> AsyncGenerator[ExecutionService, None]:
    """An execution service over in-memory repositories with the built-in hooks."""
    service = build_service(repos=build_memory_repos(), workspace_root=workspace)
    service.hooks.populate_builtins()
    yield service
    await service.aclose()


@pytest_asyncio.fixture(name="client")
async def client_fixture(service: ExecutionService) -> AsyncGenerator[AsyncClient, None]:
    """An async HTTP client acting as ``OWNER``, wired to the test service.

    ``ASGITransport`` does not send lifespan events, so startup recovery and
    table creation are not run.
    """
    from hero_engine.server.main import app
    from hero_engine.server.services.engine import get_execution_service

    app.dependency_overrides[get_execution_service] = lambda: service
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://localhost",
            headers={"X-User-Id": OWNER},
        ) as client:
            yield client
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture(name="agent_id")
async def agent_id_fixture(client: AsyncClient) -> str:
    response = await client.post("/api/v1/agents/", json={"name": "coder", "agent_type": "coder", "max_steps": 5})
    assert response.status_code == 201
    return response.json()["id"]
