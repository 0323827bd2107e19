from __future__ import annotations

import asyncio

import pytest
from pydantic import ValidationError

from hero_engine.agent_core.errors import Forbidden, NotFound
from hero_engine.agent_core.hooks.registry import HookCreate, HookRegistry, HookUpdate
from hero_engine.agent_core.repos.memory import InMemoryHookRepository
from hero_engine.agent_core.schemas.domain import (
    Hook,
    HookAction,
    HookActionType,
    HookOrigin,
    HookType,
)

pytestmark = pytest.mark.asyncio


def _create(name: str, hook_type: HookType = HookType.on_file_change, **kwargs) -> HookCreate:
    kwargs.setdefault("action_type", HookActionType.log)
    return HookCreate(name=name, hook_type=hook_type, **kwargs)


class SlowHookRepository(InMemoryHookRepository):
    async def upsert(self, hook: Hook) -> None:
        await asyncio.sleep(0.01)
        await super().upsert(hook)


@pytest.fixture
def repository() -> InMemoryHookRepository:
    return InMemoryHookRepository()


@pytest.fixture
def registry(repository: InMemoryHookRepository) -> HookRegistry:
    reg = HookRegistry(repository)
    reg.populate_builtins()
    return reg


class TestBuiltins:
    async def test_builtins_are_registered_in_priority_order(self, registry: HookRegistry) -> None:
        assert [h.name for h in registry.list()] == [
            "security_guard",
            "force_push_guard",
            "large_file_notifier",
            "completion_logger",
        ]
        assert all(h.origin == HookOrigin.builtin for h in registry.list())

    async def test_populate_is_idempotent(self, registry: HookRegistry) -> None:
        registry.populate_builtins()
        assert len(registry.list()) == 4

    async def test_builtins_can_be_toggled(self, registry: HookRegistry) -> None:
        hook = await registry.toggle("builtin:force_push_guard")
        assert hook.enabled is False
        assert registry.select(HookType.on_file_change, project_id=None)[0].name == "large_file_notifier"

        hook = await registry.toggle("builtin:force_push_guard", True)
        assert hook.enabled is True

    async def test_builtins_reject_other_changes(self, registry: HookRegistry) -> None:
        with pytest.raises(Forbidden):
            await registry.update("builtin:security_guard", HookUpdate(priority=99))
        assert registry.get("builtin:security_guard").priority == 0

    async def test_builtins_cannot_be_deleted(self, registry: HookRegistry) -> None:
        with pytest.raises(Forbidden, match="Disable them instead"):
            await registry.delete("builtin:completion_logger")

    async def test_reserved_namespace(self, registry: HookRegistry) -> None:
        hook = Hook(id="builtin:mine", name="mine", hook_type=HookType.on_error, action_type=HookActionType.log)
        with pytest.raises(Forbidden):
            await registry.add(hook)


class TestUserHooks:
    async def test_register_persists_and_orders(
        self, registry: HookRegistry, repository: InMemoryHookRepository
    ) -> None:
        first = await registry.register(_create("first"), user_id="user-1")
        second = await registry.register(_create("second"), user_id="user-1")

        assert first.origin == HookOrigin.user
        assert first.user_id == "user-1"
        assert second.registration_seq == first.registration_seq + 1
        # Equal priority falls back to registration order.
        assert [h.name for h in registry.list(hook_type=HookType.on_file_change)] == [
            "force_push_guard",
            "large_file_notifier",
            "first",
            "second",
        ]
        assert {h.id for h in await repository.list()} == {first.id, second.id}

    async def test_priority_beats_registration_order(self, registry: HookRegistry) -> None:
        await registry.register(_create("late", HookType.on_error, priority=90))
        await registry.register(_create("early", HookType.on_error, priority=10))
        assert [h.name for h in registry.list(hook_type=HookType.on_error)] == ["early", "late"]

    async def test_select_filters_disabled_and_foreign_projects(self, registry: HookRegistry) -> None:
        await registry.register(_create("global", HookType.on_error))
        await registry.register(_create("scoped", HookType.on_error, project_id="p1"))
        await registry.register(_create("off", HookType.on_error, enabled=False))

        assert [h.name for h in registry.select(HookType.on_error, project_id="p1")] == ["global", "scoped"]
        assert [h.name for h in registry.select(HookType.on_error, project_id="p2")] == ["global"]
        assert [h.name for h in registry.select(HookType.on_error, project_id=None)] == ["global"]
        assert len(registry.list(hook_type=HookType.on_error, project_id="p2")) == 2

    async def test_update_keeps_identity(self, registry: HookRegistry, repository: InMemoryHookRepository) -> None:
        hook = await registry.register(_create("audit", HookType.on_error))
        updated = await registry.update(
            hook.id,
            HookUpdate(name="audit-v2", action=HookAction(log_template="{{error}}", log_level="error")),
        )
        assert updated.id == hook.id
        assert updated.registration_seq == hook.registration_seq
        assert updated.name == "audit-v2"
        assert updated.updated_at >= hook.updated_at
        assert (await repository.list())[0].name == "audit-v2"

    async def test_delete(self, registry: HookRegistry, repository: InMemoryHookRepository) -> None:
        hook = await registry.register(_create("temp"))
        await registry.delete(hook.id)
        with pytest.raises(NotFound):
            registry.get(hook.id)
        assert await repository.list() == []

    async def test_unknown_hook(self, registry: HookRegistry) -> None:
        with pytest.raises(NotFound):
            await registry.update("nope", HookUpdate(enabled=False))
        with pytest.raises(NotFound):
            await registry.delete("nope")

    async def test_invalid_message_pattern_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Invalid message pattern"):
            _create("bad", condition={"message_patterns": ["(unclosed"]})
        with pytest.raises(ValidationError, match="Invalid message pattern"):
            HookUpdate(condition={"message_patterns": ["[a-"]})

    async def test_concurrent_toggles_each_flip_once(self) -> None:
        registry = HookRegistry(SlowHookRepository())
        hook = await registry.register(_create("flappy"))

        # The update holds the lock while both toggles queue up behind it.
        await asyncio.gather(
            registry.update(hook.id, HookUpdate(priority=10)),
            registry.toggle(hook.id),
            registry.toggle(hook.id),
        )

        assert registry.get(hook.id).enabled is True
        assert registry.get(hook.id).priority == 10


async def test_load_overlays_stored_rows(repository: InMemoryHookRepository) -> None:
    await repository.upsert(
        Hook(
            id="builtin:force_push_guard",
            name="renamed",
            hook_type=HookType.on_file_change,
            action_type=HookActionType.guard,
            enabled=False,
            origin=HookOrigin.builtin,
            registration_seq=2,
        )
    )
    await repository.upsert(
        Hook(name="mine", hook_type=HookType.on_error, action_type=HookActionType.log, registration_seq=7)
    )

    registry = HookRegistry(repository)
    await registry.load()

    guard = registry.get("builtin:force_push_guard")
    assert guard.enabled is False
    assert guard.name == "force_push_guard"
    assert [h.name for h in registry.list(hook_type=HookType.on_error)] == ["mine"]

    added = await registry.register(_create("next", HookType.on_error))
    assert added.registration_seq == 8


async def test_load_without_repository() -> None:
    registry = HookRegistry()
    await registry.load()
    assert len(registry.list()) == 4
