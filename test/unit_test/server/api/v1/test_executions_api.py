"""
Unit tests for the Executions API endpoints.

Tests cover:
- Starting executions inline and in the background
- Listing, inspecting and ownership checks
- Pause/stop conflicts on settled executions
- Approve, reject and skip of a waiting step
- Replay, Markdown export, comparison and the SSE stream
"""

import json
from pathlib import Path
from typing import Any, Dict, List

from httpx import AsyncClient

from hero_engine.agent_core.service import ExecutionService

BASE = "/api/v1/executions"


def _write(path: str) -> Dict[str, Any]:
    return {"action": "write_file", "input": {"path": path, "content": "hi"}}


def _delete(path: str) -> Dict[str, Any]:
    return {"action": "delete_file", "input": {"path": path}}


async def _start(client: AsyncClient, agent_id: str, plan: List[Dict[str, Any]], **extra: Any) -> Dict[str, Any]:
    body = {"agent_id": agent_id, "goal": "Tidy the workspace", "context": {"plan": plan}, "wait": True, **extra}
    response = await client.post(f"{BASE}/", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestStartExecution:
    async def test_start_and_wait(self, client: AsyncClient, agent_id: str, workspace: Path) -> None:
        started = await _start(client, agent_id, [_write("a.txt")])
        assert started["status"] == "complete"
        assert (workspace / "a.txt").read_text() == "hi"

        state = (await client.get(f"{BASE}/{started['execution_id']}")).json()
        assert state["current_step"] == 1
        assert state["max_steps"] == 5
        assert [s["action"] for s in state["steps"]] == ["write_file"]

    async def test_start_in_background(self, client: AsyncClient, agent_id: str, service: ExecutionService) -> None:
        response = await client.post(
            f"{BASE}/", json={"agent_id": agent_id, "goal": "Write", "context": {"plan": [_write("a.txt")]}}
        )
        assert response.status_code == 201
        assert response.json()["status"] == "running"

        await service.wait_idle()
        state = (await client.get(f"{BASE}/{response.json()['execution_id']}")).json()
        assert state["status"] == "complete"

    async def test_unknown_agent(self, client: AsyncClient) -> None:
        response = await client.post(f"{BASE}/", json={"agent_id": "missing", "goal": "g"})
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    async def test_empty_goal_is_rejected(self, client: AsyncClient, agent_id: str) -> None:
        response = await client.post(f"{BASE}/", json={"agent_id": agent_id, "goal": ""})
        assert response.status_code == 422

    async def test_missing_user_header(self, client: AsyncClient, agent_id: str) -> None:
        response = await client.post(f"{BASE}/", json={"agent_id": agent_id, "goal": "g"}, headers={"X-User-Id": ""})
        assert response.status_code == 401
        assert response.json()["detail"] == "Missing X-User-Id header"


class TestInspectExecutions:
    async def test_list_filters_by_status(self, client: AsyncClient, agent_id: str) -> None:
        done = await _start(client, agent_id, [_write("a.txt")])
        waiting = await _start(client, agent_id, [_delete("a.txt")])
        assert waiting["status"] == "awaiting_confirmation"

        everything = (await client.get(f"{BASE}/")).json()
        assert {e["execution_id"] for e in everything} == {done["execution_id"], waiting["execution_id"]}

        completed = (await client.get(f"{BASE}/", params={"status": "complete"})).json()
        assert [e["execution_id"] for e in completed] == [done["execution_id"]]

    async def test_other_users_are_forbidden(self, client: AsyncClient, agent_id: str) -> None:
        started = await _start(client, agent_id, [])
        response = await client.get(f"{BASE}/{started['execution_id']}", headers={"X-User-Id": "user-2"})
        assert response.status_code == 403
        assert response.json() == {"detail": "You do not have access to this execution", "code": "forbidden"}

        assert (await client.get(f"{BASE}/", headers={"X-User-Id": "user-2"})).json() == []

    async def test_unknown_execution(self, client: AsyncClient) -> None:
        assert (await client.get(f"{BASE}/missing")).status_code == 404


class TestCommands:
    async def test_settled_executions_cannot_be_paused_or_stopped(self, client: AsyncClient, agent_id: str) -> None:
        started = await _start(client, agent_id, [_write("a.txt")])
        execution_id = started["execution_id"]

        for command in ("pause", "stop"):
            response = await client.post(f"{BASE}/{execution_id}/{command}")
            assert response.status_code == 409
            assert response.json()["code"] == "invalid_transition"

    async def test_stop_waiting_execution(self, client: AsyncClient, agent_id: str) -> None:
        started = await _start(client, agent_id, [_delete("a.txt")])
        state = (await client.post(f"{BASE}/{started['execution_id']}/stop")).json()
        assert state["status"] == "failed"
        assert state["failure_reason"] == "cancelled"

    async def test_approve_runs_the_waiting_step(self, client: AsyncClient, agent_id: str, workspace: Path) -> None:
        (workspace / "a.txt").write_text("old")
        started = await _start(client, agent_id, [_delete("a.txt")])

        response = await client.post(f"{BASE}/{started['execution_id']}/approve", json={"reason": "ok", "wait": True})
        assert response.status_code == 200
        assert response.json()["status"] == "complete"
        assert not (workspace / "a.txt").exists()

    async def test_reject_fails_the_execution(self, client: AsyncClient, agent_id: str) -> None:
        started = await _start(client, agent_id, [_delete("a.txt")])
        state = (await client.post(f"{BASE}/{started['execution_id']}/reject", json={"reason": "no"})).json()
        assert state["status"] == "failed"
        assert state["failure_reason"] == "rejected"

    async def test_skip_without_body(self, client: AsyncClient, agent_id: str, service: ExecutionService) -> None:
        started = await _start(client, agent_id, [_delete("a.txt"), _write("b.txt")])
        response = await client.post(f"{BASE}/{started['execution_id']}/skip")
        assert response.status_code == 200

        await service.wait_idle()
        state = (await client.get(f"{BASE}/{started['execution_id']}")).json()
        assert state["status"] == "complete"
        assert [s["status"] for s in state["steps"]] == ["skipped", "complete"]

    async def test_approve_without_waiting_step(self, client: AsyncClient, agent_id: str) -> None:
        started = await _start(client, agent_id, [_write("a.txt")])
        response = await client.post(f"{BASE}/{started['execution_id']}/approve")
        assert response.status_code == 409


class TestReplay:
    async def test_replay_and_markdown(self, client: AsyncClient, agent_id: str) -> None:
        started = await _start(client, agent_id, [_write("a.txt")])
        execution_id = started["execution_id"]

        replay = (await client.get(f"{BASE}/{execution_id}/replay")).json()
        assert replay["summary"]["completed_steps"] == 1
        assert replay["timeline"][0]["type"] == "execution_start"

        markdown = await client.get(f"{BASE}/{execution_id}/replay/markdown")
        assert markdown.headers["content-type"].startswith("text/markdown")
        assert markdown.text.startswith(f"# Execution Replay {execution_id}")

    async def test_compare(self, client: AsyncClient, agent_id: str) -> None:
        base = await _start(client, agent_id, [_write("a.txt")])
        other = await _start(client, agent_id, [_write("b.txt"), {"action": "read_file", "input": {"path": "b.txt"}}])

        diff = (
            await client.get(
                f"{BASE}/compare", params={"base": base["execution_id"], "other": other["execution_id"]}
            )
        ).json()
        assert [s["action"] for s in diff["added"]] == ["read_file"]
        assert len(diff["modified"]) == 1
        assert diff["removed"] == []


async def test_event_stream_of_a_settled_execution(client: AsyncClient, agent_id: str) -> None:
    started = await _start(client, agent_id, [_write("a.txt")])

    response = await client.get(f"{BASE}/{started['execution_id']}/events")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")

    lines = [line for line in response.text.splitlines() if line.startswith(("event:", "data:"))]
    assert lines[0] == "event: snapshot"
    snapshot = json.loads(lines[1][len("data:") :].strip())
    assert snapshot["status"] == "complete"
    assert snapshot["execution_id"] == started["execution_id"]
