"""
Unit tests for the Audit Log endpoint.
"""

from httpx import AsyncClient

BASE = "/api/v1/audit"


async def _run(client: AsyncClient, agent_id: str) -> str:
    response = await client.post(
        "/api/v1/executions/",
        json={
            "agent_id": agent_id,
            "goal": "g",
            "context": {"plan": [{"action": "write_file", "input": {"path": "a.txt", "content": "x"}}]},
            "wait": True,
        },
    )
    return response.json()["execution_id"]


async def test_entries_of_an_execution(client: AsyncClient, agent_id: str) -> None:
    execution_id = await _run(client, agent_id)

    entries = (await client.get(f"{BASE}/", params={"execution_id": execution_id})).json()
    assert entries
    assert {e["execution_id"] for e in entries} == {execution_id}
    assert all(e["user_id"] == "user-1" for e in entries)
    # Newest first.
    assert entries == sorted(entries, key=lambda e: e["created_at"], reverse=True)


async def test_filters(client: AsyncClient, agent_id: str) -> None:
    execution_id = await _run(client, agent_id)

    tools = (await client.get(f"{BASE}/", params={"execution_id": execution_id, "category": "tool"})).json()
    assert [e["action"] for e in tools] == ["tool_call"]

    finished = (await client.get(f"{BASE}/", params={"action": "execution:complete"})).json()
    assert [e["execution_id"] for e in finished] == [execution_id]

    limited = (await client.get(f"{BASE}/", params={"execution_id": execution_id, "limit": 1})).json()
    assert len(limited) == 1


async def test_scoped_to_the_caller(client: AsyncClient, agent_id: str) -> None:
    await _run(client, agent_id)
    assert (await client.get(f"{BASE}/", headers={"X-User-Id": "user-2"})).json() == []


async def test_invalid_category(client: AsyncClient) -> None:
    assert (await client.get(f"{BASE}/", params={"category": "nope"})).status_code == 422
