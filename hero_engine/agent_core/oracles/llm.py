from __future__ import annotations

"""Pydantic AI backed oracles.

These adapters implement ``PlanningOracle`` and ``JudgmentOracle`` on top of
``pydantic_ai.Agent``. Any model accepted by Pydantic AI works, including
model name strings such as ``"openai:gpt-4o"`` and test models.

Errors raised by the model call are wrapped in ``OracleFailure``. Retrying is
left to the caller.
"""

import json
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from pydantic_ai import Agent

from ..errors import OracleFailure
from .base import Judgment, PlannedAction, PlanningDecision, PlanningRequest

logger = logging.getLogger(__name__)

_PLANNER_PROMPT = (
    "You are the step planner of an autonomous software engineering agent. "
    "Given a goal and the steps taken so far, return either the single next action "
    "(an action name plus a JSON input object) or done=true when the goal is met. "
    "Prefer small, reversible actions."
)

_JUDGE_PROMPT = (
    "You are a security reviewer for an autonomous software engineering agent. "
    "Answer strictly with the requested structured verdict."
)


class _PlanOutput(BaseModel):
    done: bool = False
    action: Optional[str] = None
    input: Dict[str, Any] = Field(default_factory=dict)
    rationale: Optional[str] = None
    summary: Optional[str] = None


class _Verdict(BaseModel):
    safe: bool
    reason: str = ""


def _usage_tokens(result: Any) -> tuple[int, int]:
    usage = result.usage()
    input_tokens = getattr(usage, "input_tokens", None)
    if input_tokens is None:
        input_tokens = getattr(usage, "request_tokens", 0)
    output_tokens = getattr(usage, "output_tokens", None)
    if output_tokens is None:
        output_tokens = getattr(usage, "response_tokens", 0)
    return int(input_tokens or 0), int(output_tokens or 0)


def _render_history(request: PlanningRequest) -> str:
    if not request.history:
        return "(no steps yet)"
    lines = []
    for step in request.history:
        output = json.dumps(step.output, default=str)[:400] if step.output is not None else "null"
        lines.append(f"{step.number}. {step.action} {json.dumps(step.input, default=str)} -> {step.status.value}: {output}")
    return "\n".join(lines)


class PydanticAIPlanningOracle:
    """Planning oracle that asks a Pydantic AI agent for the next action."""

    def __init__(self, model: Any, *, system_prompt: Optional[str] = None) -> None:
        self._agent: Agent = Agent(
            model,
            output_type=_PlanOutput,
            system_prompt=system_prompt or _PLANNER_PROMPT,
        )

    async def next_action(self, request: PlanningRequest) -> PlanningDecision:
        prompt = (
            f"agent_type={request.agent_type.value}\n"
            f"goal={request.goal}\n"
            f"context={json.dumps(request.context, default=str)}\n"
            f"steps so far:\n{_render_history(request)}\n"
        )
        if request.system_prompt:
            prompt = f"{request.system_prompt}\n\n{prompt}"
        try:
            result = await self._agent.run(prompt)
        except Exception as exc:
            raise OracleFailure(f"Planning oracle failed: {exc}") from exc

        input_tokens, output_tokens = _usage_tokens(result)
        out: _PlanOutput = result.output
        if out.done or not out.action:
            return PlanningDecision.complete(out.summary, input_tokens=input_tokens, output_tokens=output_tokens)
        return PlanningDecision(
            action=PlannedAction(action=out.action, input=out.input, rationale=out.rationale),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


class PydanticAIJudgmentOracle:
    """Judgment oracle that asks a Pydantic AI agent for a safe/unsafe verdict."""

    def __init__(self, model: Any) -> None:
        self._judge: Agent = Agent(model, output_type=_Verdict, system_prompt=_JUDGE_PROMPT)
        self._writer: Agent = Agent(model, output_type=str)

    async def judge(self, prompt: str, *, subject: str) -> Judgment:
        try:
            result = await self._judge.run(prompt)
        except Exception as exc:
            raise OracleFailure(f"Judgment oracle failed: {exc}") from exc
        input_tokens, output_tokens = _usage_tokens(result)
        verdict: _Verdict = result.output
        logger.debug("Judgment verdict safe=%s reason=%s", verdict.safe, verdict.reason)
        return Judgment(
            verdict=verdict.safe,
            reason=verdict.reason,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    async def complete(self, prompt: str, *, subject: str) -> str:
        try:
            result = await self._writer.run(prompt)
        except Exception as exc:
            raise OracleFailure(f"Rewrite oracle failed: {exc}") from exc
        return str(result.output)
