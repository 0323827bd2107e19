"""Lifecycle hooks.

Hooks intercept execution lifecycle events (``pre_execution``,
``post_execution``, ``on_file_change``, ``on_error``,
``on_approval_required``, ``on_checkpoint``). The registry holds them; the
pipeline runs them in priority order and short-circuits on the first block.
"""

from .builtin import BUILTIN_PREFIX, builtin_hooks, is_builtin_id
from .notifier import HttpNotifier, Notifier
from .pipeline import HookPipeline
from .registry import HookCreate, HookRegistry, HookUpdate

__all__ = [
    "BUILTIN_PREFIX",
    "HookCreate",
    "HookPipeline",
    "HookRegistry",
    "HookUpdate",
    "HttpNotifier",
    "Notifier",
    "builtin_hooks",
    "is_builtin_id",
]
