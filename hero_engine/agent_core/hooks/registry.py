from __future__ import annotations

"""Hook registry.

``HookRegistry`` holds the process-wide set of lifecycle interceptors. It is
an ordinary object with an explicit lifecycle rather than a singleton:

1. ``populate_builtins()`` (or ``load()`` when a repository is attached)
   registers the built-in guards at startup.
2. ``register``/``update``/``toggle``/``delete`` change the set at runtime.

Reads work on the in-memory map and never await. Writes are serialized by an
``asyncio.Lock`` and written through to the optional ``HookRepository`` so
user hooks (and disabled built-ins) survive restarts.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import Field

from ..errors import Forbidden, NotFound
from ..repos.interfaces import HookRepository
from ..schemas.base import BaseSchema
from ..schemas.domain import Hook, HookAction, HookActionType, HookCondition, HookOrigin, HookType
from .builtin import BUILTIN_PREFIX, builtin_hooks, is_builtin_id

logger = logging.getLogger(__name__)


class HookCreate(BaseSchema):
    name: str = Field(min_length=1, max_length=128)
    description: Optional[str] = None
    hook_type: HookType
    action_type: HookActionType
    enabled: bool = True
    priority: int = Field(default=50, ge=0, le=100)
    condition: Optional[HookCondition] = None
    action: HookAction = Field(default_factory=HookAction)
    project_id: Optional[str] = None


class HookUpdate(BaseSchema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    description: Optional[str] = None
    hook_type: Optional[HookType] = None
    action_type: Optional[HookActionType] = None
    enabled: Optional[bool] = None
    priority: Optional[int] = Field(default=None, ge=0, le=100)
    condition: Optional[HookCondition] = None
    action: Optional[HookAction] = None
    project_id: Optional[str] = None


# Fields a built-in hook accepts changes to.
_BUILTIN_MUTABLE = frozenset({"enabled"})


class HookRegistry:
    """Process-wide hook set with deterministic ordering.

    Hooks are ordered by ``(priority, registration_seq)``; ``registration_seq``
    is assigned on first registration and never changes.
    """

    def __init__(self, repository: Optional[HookRepository] = None) -> None:
        self._repository = repository
        self._hooks: Dict[str, Hook] = {}
        self._next_seq = 1
        self._lock = asyncio.Lock()

    def _put(self, hook: Hook) -> Hook:
        if hook.registration_seq <= 0:
            hook = hook.model_copy(update={"registration_seq": self._next_seq})
        self._next_seq = max(self._next_seq, hook.registration_seq + 1)
        self._hooks[hook.id] = hook
        return hook

    def populate_builtins(self) -> None:
        """Register the built-in hooks that are not registered yet."""
        for hook in builtin_hooks():
            if hook.id not in self._hooks:
                self._put(hook)

    async def load(self) -> None:
        """
        Populate built-ins and overlay the hooks stored in the repository.

        Stored rows for built-in ids only contribute their ``enabled`` flag, so
        upgrades to a built-in's definition take effect on restart.
        """
        self.populate_builtins()
        if self._repository is None:
            return
        for stored in await self._repository.list():
            if is_builtin_id(stored.id):
                current = self._hooks.get(stored.id)
                if current is not None:
                    self._hooks[stored.id] = current.model_copy(update={"enabled": stored.enabled})
                continue
            self._put(stored)
        logger.info("Loaded %d hooks", len(self._hooks))

    def list(
        self,
        *,
        hook_type: Optional[HookType] = None,
        project_id: Optional[str] = None,
    ) -> List[Hook]:
        """
        List hooks in execution order.

        Args:
            hook_type: Only hooks of this lifecycle type.
            project_id: Only hooks that apply to this project (global hooks
                included).

        Returns:
            Hooks sorted by priority, then registration order.
        """
        hooks = [
            h
            for h in self._hooks.values()
            if (hook_type is None or h.hook_type == hook_type)
            and (project_id is None or h.project_id is None or h.project_id == project_id)
        ]
        return sorted(hooks, key=lambda h: (h.priority, h.registration_seq))

    def select(self, hook_type: HookType, *, project_id: Optional[str]) -> List[Hook]:
        """Return the enabled hooks that run for a lifecycle event."""
        return [
            h
            for h in self.list(hook_type=hook_type)
            if h.enabled and (h.project_id is None or h.project_id == project_id)
        ]

    def get(self, hook_id: str) -> Hook:
        hook = self._hooks.get(hook_id)
        if hook is None:
            raise NotFound("Hook", hook_id)
        return hook

    async def register(self, data: HookCreate, *, user_id: Optional[str] = None) -> Hook:
        """
        Register a user-defined hook.

        Args:
            data: The hook definition.
            user_id: The owner of the hook.

        Returns:
            The registered hook with its id and registration sequence.
        """
        async with self._lock:
            hook = self._put(Hook(origin=HookOrigin.user, user_id=user_id, **data.model_dump()))
            if self._repository is not None:
                await self._repository.upsert(hook)
        logger.info("Registered hook %s (%s/%s)", hook.name, hook.hook_type.value, hook.action_type.value)
        return hook

    async def add(self, hook: Hook) -> Hook:
        """Register a fully-formed hook; rejects the reserved id namespace."""
        if is_builtin_id(hook.id) or hook.origin == HookOrigin.builtin:
            raise Forbidden(f"Hook ids starting with '{BUILTIN_PREFIX}' are reserved")
        async with self._lock:
            hook = self._put(hook)
            if self._repository is not None:
                await self._repository.upsert(hook)
        return hook

    async def update(self, hook_id: str, changes: HookUpdate) -> Hook:
        """
        Apply a partial update to a hook.

        Raises:
            NotFound: Unknown hook id.
            Forbidden: A built-in hook was asked to change more than ``enabled``.
        """
        async with self._lock:
            return await self._apply(hook_id, changes.model_dump(exclude_unset=True))

    async def toggle(self, hook_id: str, enabled: Optional[bool] = None) -> Hook:
        """Flip (or set) a hook's enabled flag. Built-ins accept this."""
        async with self._lock:
            hook = self.get(hook_id)
            target = (not hook.enabled) if enabled is None else enabled
            return await self._apply(hook_id, {"enabled": target})

    async def _apply(self, hook_id: str, fields: Dict[str, Any]) -> Hook:
        # Caller holds the lock.
        hook = self.get(hook_id)
        if hook.origin == HookOrigin.builtin and set(fields) - _BUILTIN_MUTABLE:
            raise Forbidden("Built-in hooks can only be enabled or disabled")
        updated = Hook.model_validate(
            {**hook.model_dump(), **fields, "updated_at": datetime.now(timezone.utc)}
        )
        self._hooks[hook_id] = updated
        if self._repository is not None:
            await self._repository.upsert(updated)
        return updated

    async def delete(self, hook_id: str) -> None:
        """
        Delete a user-defined hook.

        Raises:
            NotFound: Unknown hook id.
            Forbidden: The hook is built-in.
        """
        async with self._lock:
            hook = self.get(hook_id)
            if hook.origin == HookOrigin.builtin or is_builtin_id(hook_id):
                raise Forbidden("Cannot delete built-in hooks. Disable them instead.")
            del self._hooks[hook_id]
            if self._repository is not None:
                await self._repository.delete(hook_id)
        logger.info("Deleted hook %s", hook_id)
