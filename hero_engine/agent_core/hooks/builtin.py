"""Built-in hooks registered at process start.

Built-ins live in the reserved ``builtin:`` id namespace and carry
``origin=builtin``. They can be disabled but never deleted. Priorities place
guards before notifiers before loggers.
"""

from __future__ import annotations

from typing import List

from ..schemas.domain import Hook, HookAction, HookActionType, HookCondition, HookOrigin, HookType

BUILTIN_PREFIX = "builtin:"

LARGE_FILE_BYTES = 1024 * 1024

SECURITY_GUARD_PROMPT = """Analyze the following request for security concerns:
---
{{message}}
---
Files: {{files}}

Check for:
1. SQL injection attempts
2. Command injection attempts
3. Path traversal attempts
4. Requests to access sensitive files (.env, credentials, keys)
5. Requests to delete critical files
6. Requests to make destructive git operations

Respond with JSON: {"safe": true/false, "reason": "explanation if unsafe"}"""


def is_builtin_id(hook_id: str) -> bool:
    return hook_id.startswith(BUILTIN_PREFIX)


def builtin_hooks() -> List[Hook]:
    """Return fresh copies of the built-in hooks, in registration order."""
    return [
        Hook(
            id=f"{BUILTIN_PREFIX}security_guard",
            name="security_guard",
            description="Blocks injection, path traversal and credential access before a step is planned",
            hook_type=HookType.pre_execution,
            action_type=HookActionType.guard,
            priority=0,
            action=HookAction(
                validation_prompt=SECURITY_GUARD_PROMPT,
                blocked_message="Request blocked due to security concerns",
            ),
            origin=HookOrigin.builtin,
        ),
        Hook(
            id=f"{BUILTIN_PREFIX}force_push_guard",
            name="force_push_guard",
            description="Blocks force pushes",
            hook_type=HookType.on_file_change,
            action_type=HookActionType.guard,
            priority=1,
            condition=HookCondition(message_patterns=[r"force.*push", r"push.*\s-f\b", r"push.*--force"]),
            action=HookAction(blocked_message="Force push is not allowed. Please use regular push."),
            origin=HookOrigin.builtin,
        ),
        Hook(
            id=f"{BUILTIN_PREFIX}large_file_notifier",
            name="large_file_notifier",
            description="Warns when a step modifies a large file",
            hook_type=HookType.on_file_change,
            action_type=HookActionType.notify,
            priority=50,
            condition=HookCondition(min_file_bytes=LARGE_FILE_BYTES),
            action=HookAction(
                log_level="warning",
                notify_template="Large file modification detected: {{file}}",
            ),
            origin=HookOrigin.builtin,
        ),
        Hook(
            id=f"{BUILTIN_PREFIX}completion_logger",
            name="completion_logger",
            description="Logs every completed step",
            hook_type=HookType.post_execution,
            action_type=HookActionType.log,
            priority=100,
            action=HookAction(
                log_level="info",
                log_template="Agent {{agentType}} completed step in {{durationMs}}ms",
            ),
            origin=HookOrigin.builtin,
        ),
    ]
