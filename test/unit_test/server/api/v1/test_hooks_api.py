"""
Unit tests for the Hooks API endpoints.

Tests cover:
- Listing built-in hooks in execution order and filtering by type
- Creating, updating, toggling and deleting user hooks
- Built-in hooks being toggle-only
- Dry-running a hook against a context
"""

from typing import Any, Dict

from httpx import AsyncClient

BASE = "/api/v1/hooks"

LOG_HOOK: Dict[str, Any] = {"name": "audit errors", "hook_type": "on_error", "action_type": "log", "priority": 10}


class TestListHooks:
    async def test_builtins_in_order(self, client: AsyncClient) -> None:
        hooks = (await client.get(f"{BASE}/")).json()
        assert [h["name"] for h in hooks] == [
            "security_guard",
            "force_push_guard",
            "large_file_notifier",
            "completion_logger",
        ]
        assert all(h["origin"] == "builtin" for h in hooks)

    async def test_filter_by_type(self, client: AsyncClient) -> None:
        hooks = (await client.get(f"{BASE}/", params={"hook_type": "on_file_change"})).json()
        assert [h["id"] for h in hooks] == ["builtin:force_push_guard", "builtin:large_file_notifier"]

    async def test_unknown_hook(self, client: AsyncClient) -> None:
        assert (await client.get(f"{BASE}/missing")).status_code == 404


class TestUserHooks:
    async def test_lifecycle(self, client: AsyncClient) -> None:
        created = await client.post(f"{BASE}/", json=LOG_HOOK)
        assert created.status_code == 201
        hook = created.json()
        assert hook["user_id"] == "user-1"
        assert hook["origin"] == "user"
        assert hook["enabled"] is True

        updated = (await client.patch(f"{BASE}/{hook['id']}", json={"priority": 90})).json()
        assert updated["priority"] == 90

        toggled = (await client.post(f"{BASE}/{hook['id']}/toggle")).json()
        assert toggled["enabled"] is False
        toggled = (await client.post(f"{BASE}/{hook['id']}/toggle", json={"enabled": False})).json()
        assert toggled["enabled"] is False

        assert (await client.delete(f"{BASE}/{hook['id']}")).status_code == 204
        assert (await client.get(f"{BASE}/{hook['id']}")).status_code == 404

    async def test_only_the_creator_may_change_it(self, client: AsyncClient) -> None:
        hook = (await client.post(f"{BASE}/", json=LOG_HOOK)).json()
        stranger = {"X-User-Id": "user-2"}

        assert (await client.patch(f"{BASE}/{hook['id']}", json={"priority": 1}, headers=stranger)).status_code == 403
        assert (await client.delete(f"{BASE}/{hook['id']}", headers=stranger)).status_code == 403

    async def test_invalid_payload(self, client: AsyncClient) -> None:
        response = await client.post(f"{BASE}/", json={**LOG_HOOK, "priority": 500})
        assert response.status_code == 422

    async def test_malformed_message_pattern(self, client: AsyncClient) -> None:
        response = await client.post(f"{BASE}/", json={**LOG_HOOK, "condition": {"message_patterns": ["(unclosed"]}})
        assert response.status_code == 422
        assert all(h["name"] != LOG_HOOK["name"] for h in (await client.get(f"{BASE}/")).json())


class TestBuiltinHooks:
    async def test_toggle(self, client: AsyncClient) -> None:
        hook = (await client.post(f"{BASE}/builtin:completion_logger/toggle", json={"enabled": False})).json()
        assert hook["enabled"] is False

    async def test_cannot_be_edited_or_deleted(self, client: AsyncClient) -> None:
        patched = await client.patch(f"{BASE}/builtin:security_guard", json={"priority": 99})
        assert patched.status_code == 403
        assert patched.json()["code"] == "forbidden"
        assert (await client.delete(f"{BASE}/builtin:security_guard")).status_code == 403


class TestDryRun:
    async def test_guard_blocks(self, client: AsyncClient) -> None:
        response = await client.post(
            f"{BASE}/builtin:force_push_guard/test", json={"message": "git push --force origin main"}
        )
        assert response.status_code == 200
        result = response.json()
        assert result["blocked"] is True
        assert result["blocked_reason"] == "Force push is not allowed. Please use regular push."

    async def test_guard_passes(self, client: AsyncClient) -> None:
        result = (await client.post(f"{BASE}/builtin:security_guard/test", json={"message": "add tests"})).json()
        assert result["blocked"] is False
        assert result["logs"] == ["Validation passed"]
