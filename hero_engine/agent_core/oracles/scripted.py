from __future__ import annotations

"""Deterministic planning oracle.

``ScriptedPlanningOracle`` is the planner used when no model is configured.
It replays a fixed list of actions, one per step, and signals completion
once the list is exhausted. The list comes from the execution context
(``context["plan"]``) when present, otherwise from the constructor.

Each plan entry is either an action name or a mapping with ``action`` and an
optional ``input`` object::

    {"plan": ["read_file", {"action": "write_file", "input": {"path": "a.txt", "content": "hi"}}]}

This is useful for tests and for deployments that drive the engine with
pre-computed plans.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from ..errors import OracleFailure
from .base import PlanningDecision, PlanningRequest

logger = logging.getLogger(__name__)

PlanEntry = Union[str, Dict[str, Any]]


class ScriptedPlanningOracle:
    """Planning oracle that replays a pre-computed plan.

    Args:
        plan: Default plan for executions whose context carries none.
        tokens_per_call: ``(input, output)`` tokens reported per decision so
            budget accounting stays observable without a model.
        summary: Completion summary reported once the plan is exhausted.
    """

    def __init__(
        self,
        plan: Optional[Sequence[PlanEntry]] = None,
        *,
        tokens_per_call: tuple[int, int] = (0, 0),
        summary: str = "Plan complete",
    ) -> None:
        self._plan: List[PlanEntry] = list(plan or [])
        self._tokens = tokens_per_call
        self._summary = summary

    def _plan_for(self, request: PlanningRequest) -> List[PlanEntry]:
        plan = request.context.get("plan")
        if plan is None:
            return self._plan
        if not isinstance(plan, list):
            raise OracleFailure("Execution context 'plan' must be a list")
        return plan

    async def next_action(self, request: PlanningRequest) -> PlanningDecision:
        plan = self._plan_for(request)
        input_tokens, output_tokens = self._tokens
        index = len(request.history)
        if index >= len(plan):
            return PlanningDecision.complete(self._summary, input_tokens=input_tokens, output_tokens=output_tokens)

        entry = plan[index]
        if isinstance(entry, str):
            return PlanningDecision.next(entry, input_tokens=input_tokens, output_tokens=output_tokens)
        if isinstance(entry, dict) and entry.get("action"):
            args = entry.get("input") or {}
            if not isinstance(args, dict):
                raise OracleFailure(f"Plan entry {index + 1} has a non-object input")
            logger.debug("Scripted plan step %d: %s", index + 1, entry["action"])
            return PlanningDecision.next(
                str(entry["action"]),
                args,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                confidence=entry.get("confidence"),
            )
        raise OracleFailure(f"Plan entry {index + 1} is not an action")
