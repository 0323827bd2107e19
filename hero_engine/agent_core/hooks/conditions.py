"""Condition matching and template rendering for hooks."""

from __future__ import annotations

import re
from fnmatch import fnmatchcase
from typing import Optional

from ..schemas.domain import Hook, HookContext


def matches_condition(hook: Hook, context: HookContext) -> bool:
    """
    Check whether a hook's condition matches the context.

    Each clause only applies when the hook declares it *and* the context
    carries the data it inspects; an absent clause never excludes a hook.
    The one exception is ``min_file_bytes``: without file sizes there is
    nothing to prove a file is large, so the hook does not match.

    Args:
        hook: The hook being evaluated.
        context: The lifecycle context.

    Returns:
        True if every applicable clause matches.
    """
    cond = hook.condition
    if cond is None:
        return True

    if cond.agent_types:
        if context.agent_type is None or context.agent_type not in cond.agent_types:
            return False

    if cond.file_patterns and context.files:
        if not any(fnmatchcase(f, p) for f in context.files for p in cond.file_patterns):
            return False

    if cond.message_patterns and context.message:
        if not any(re.search(p, context.message, re.IGNORECASE) for p in cond.message_patterns):
            return False

    if cond.min_confidence is not None and context.confidence is not None:
        if context.confidence >= cond.min_confidence:
            return False

    if cond.min_file_bytes is not None:
        if not any(size >= cond.min_file_bytes for size in context.file_sizes.values()):
            return False

    return True


def _focus_file(hook: Hook, context: HookContext) -> Optional[str]:
    cond = hook.condition
    if cond is not None and cond.min_file_bytes is not None:
        for path, size in context.file_sizes.items():
            if size >= cond.min_file_bytes:
                return path
    return context.files[0] if context.files else None


def render_template(template: str, hook: Hook, context: HookContext, *, duration_ms: int = 0) -> str:
    """Interpolate ``{{placeholder}}`` variables from the hook and context."""
    agent_type = context.agent_type.value if context.agent_type is not None else "unknown"
    values = {
        "message": context.message or "",
        "files": ", ".join(context.files),
        "file": _focus_file(hook, context) or "unknown",
        "hookName": hook.name,
        "agentType": agent_type,
        "executionId": context.execution_id or "unknown",
        "durationMs": str(context.duration_ms if context.duration_ms is not None else duration_ms),
        "error": context.error or "",
    }
    out = template
    for key, value in values.items():
        out = out.replace("{{" + key + "}}", value)
    return out
