from __future__ import annotations

"""Hook pipeline.

``HookPipeline.run_hooks`` executes the hooks registered for one lifecycle
event, sequentially and in a total order (priority, then registration order).

Semantics
---------

- Hooks whose condition does not match are reported as skipped no-ops.
- ``guard``/``validate`` hooks ask the judgment oracle for a verdict. A
  negative verdict blocks and stops the chain immediately; no later hook runs.
  A ``guard`` without a validation template is a static rule: it blocks
  whenever its condition matches.
- ``transform`` hooks rewrite the context message; later hooks in the same
  invocation see the rewritten message.
- ``notify``, ``log`` and ``execute`` hooks never block.
- Failures are recorded on the result and do not block, except for ``guard``
  hooks, where a failure is treated as a block.

Each executed hook's result is forwarded to the audit logger when one is
attached.
"""

import logging
import time
from typing import TYPE_CHECKING, Optional

from ..oracles.base import JudgmentOracle
from ..oracles.patterns import PatternJudgmentOracle
from ..schemas.domain import (
    Hook,
    HookActionType,
    HookContext,
    HookPipelineResult,
    HookResult,
    HookType,
)
from .conditions import matches_condition, render_template
from .notifier import Notifier
from .registry import HookRegistry

if TYPE_CHECKING:
    from ..audit.logger import AuditLogger

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class HookPipeline:
    """Run registered hooks for lifecycle events.

    Args:
        registry: The hook registry to select hooks from.
        judgment: Oracle used by guard/validate/transform/execute hooks.
            Defaults to the rule-based ``PatternJudgmentOracle``.
        notifier: Delivers ``notify`` hooks that declare an endpoint.
        audit: Optional audit logger receiving every executed hook result.
    """

    def __init__(
        self,
        registry: HookRegistry,
        *,
        judgment: Optional[JudgmentOracle] = None,
        notifier: Optional[Notifier] = None,
        audit: Optional["AuditLogger"] = None,
    ) -> None:
        self._registry = registry
        self._judgment = judgment or PatternJudgmentOracle()
        self._notifier = notifier
        self._audit = audit

    @property
    def registry(self) -> HookRegistry:
        return self._registry

    async def run_hooks(self, hook_type: HookType, context: HookContext) -> HookPipelineResult:
        """
        Run every enabled hook of ``hook_type`` that applies to the context.

        Args:
            hook_type: The lifecycle event.
            context: The lifecycle context.

        Returns:
            HookPipelineResult with per-hook results and the block decision.
        """
        outcome = HookPipelineResult(hook_type=hook_type)
        ctx = context
        for hook in self._registry.select(hook_type, project_id=context.project_id):
            result = await self.execute_hook(hook, ctx)
            outcome.results.append(result)
            if not result.skipped and self._audit is not None:
                await self._audit.log_hook_result(hook, result, context=ctx)
            if result.transformed is not None:
                ctx = ctx.model_copy(update={"message": result.transformed})
                outcome.transformed = result.transformed
            if result.blocked:
                outcome.blocked = True
                outcome.blocked_reason = result.blocked_reason
                outcome.blocked_by = hook.name
                logger.warning(
                    "Hook %s blocked %s for execution %s: %s",
                    hook.name,
                    hook_type.value,
                    context.execution_id,
                    result.blocked_reason,
                )
                break
        return outcome

    async def test_hook(self, hook: Hook, context: HookContext) -> HookResult:
        """Run a single hook against a synthetic context, regardless of ``enabled``."""
        return await self.execute_hook(hook, context)

    async def execute_hook(self, hook: Hook, context: HookContext) -> HookResult:
        """
        Execute one hook.

        Args:
            hook: The hook to execute.
            context: The lifecycle context.

        Returns:
            HookResult describing what happened. Never raises.
        """
        started = time.perf_counter()

        def elapsed() -> int:
            return int((time.perf_counter() - started) * 1000)

        result = HookResult(hook_id=hook.id, hook_name=hook.name)
        action = hook.action
        try:
            if not matches_condition(hook, context):
                result.skipped = True
                result.logs.append("Condition not matched, skipping")
                result.duration_ms = elapsed()
                return result

            if hook.action_type in (HookActionType.guard, HookActionType.validate):
                if action.validation_prompt:
                    prompt = render_template(action.validation_prompt, hook, context)
                    subject = "\n".join(filter(None, [context.message or "", ", ".join(context.files)]))
                    judgment = await self._judgment.judge(prompt, subject=subject)
                    if not judgment.verdict:
                        result.blocked = True
                        result.blocked_reason = judgment.reason or action.blocked_message or f"Blocked by {hook.name}"
                        result.logs.append(f"Validation failed: {judgment.reason}")
                    else:
                        result.logs.append("Validation passed")
                elif hook.action_type == HookActionType.guard:
                    result.blocked = True
                    result.blocked_reason = action.blocked_message or f"Blocked by {hook.name}"
                    result.logs.append("Guard condition matched")

            elif hook.action_type == HookActionType.transform:
                if action.transform_prompt and context.message:
                    prompt = render_template(action.transform_prompt, hook, context)
                    result.transformed = await self._judgment.complete(prompt, subject=context.message)
                    result.logs.append("Message transformed")

            elif hook.action_type == HookActionType.notify:
                message = render_template(
                    action.notify_template or "Notification from hook: {{hookName}}", hook, context
                )
                if action.notify_endpoint and self._notifier is not None:
                    await self._notifier.notify(
                        action.notify_endpoint,
                        {
                            "hook": hook.name,
                            "hookType": hook.hook_type.value,
                            "executionId": context.execution_id,
                            "message": message,
                        },
                    )
                else:
                    logger.log(_LOG_LEVELS.get(action.log_level, logging.INFO), message)
                result.logs.append(f"Notification: {message}")

            elif hook.action_type == HookActionType.log:
                message = render_template(
                    action.log_template or "Hook {{hookName}} executed", hook, context, duration_ms=elapsed()
                )
                logger.log(_LOG_LEVELS.get(action.log_level, logging.INFO), message)
                result.logs.append(message)

            elif hook.action_type == HookActionType.execute:
                if action.execute_prompt:
                    prompt = render_template(action.execute_prompt, hook, context)
                    response = await self._judgment.complete(prompt, subject=context.message or "")
                    result.logs.append(f"Executed prompt, response length: {len(response)}")

        except Exception as exc:
            logger.warning("Hook %s failed: %s", hook.name, exc)
            result.success = False
            result.error = str(exc)
            if hook.action_type == HookActionType.guard:
                result.blocked = True
                result.blocked_reason = f"Guard '{hook.name}' could not complete its check: {exc}"

        result.duration_ms = elapsed()
        return result
