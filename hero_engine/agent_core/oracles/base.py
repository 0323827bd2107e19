from __future__ import annotations

"""Collaborator contracts for the model-backed oracles.

The engine never talks to a language model directly. It depends on two
narrow Protocols:

- ``PlanningOracle``: goal + step history -> next action or completion.
- ``JudgmentOracle``: prompt -> boolean verdict + reason, used by
  ``guard``/``validate`` hooks; also rewrites text for ``transform`` and
  ``execute`` hooks.

Both report token counts so the budget gate can bill them.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from pydantic import Field

from ..schemas.base import BaseSchema
from ..schemas.domain import AgentType, Step


class PlannedAction(BaseSchema):
    """The next action proposed by a planning oracle."""

    action: str = Field(min_length=1)
    input: Dict[str, Any] = Field(default_factory=dict)
    rationale: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


@dataclass(frozen=True)
class PlanningRequest:
    goal: str
    agent_type: AgentType
    history: List[Step] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)
    system_prompt: Optional[str] = None


@dataclass(frozen=True)
class PlanningDecision:
    """
    Planning oracle response.

    Attributes:
        action: The next action, or None when ``done`` is True.
        done: Completion signal; the execution transitions to ``complete``.
        summary: Optional closing summary when done.
        input_tokens: Prompt tokens billed for this call.
        output_tokens: Completion tokens billed for this call.
    """

    action: Optional[PlannedAction] = None
    done: bool = False
    summary: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0

    @classmethod
    def complete(cls, summary: Optional[str] = None, *, input_tokens: int = 0, output_tokens: int = 0) -> "PlanningDecision":
        return cls(done=True, summary=summary, input_tokens=input_tokens, output_tokens=output_tokens)

    @classmethod
    def next(
        cls,
        action: str,
        input: Optional[Dict[str, Any]] = None,
        *,
        input_tokens: int = 0,
        output_tokens: int = 0,
        confidence: Optional[float] = None,
    ) -> "PlanningDecision":
        return cls(
            action=PlannedAction(action=action, input=input or {}, confidence=confidence),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


@dataclass(frozen=True)
class Judgment:
    verdict: bool
    reason: str = ""
    input_tokens: int = 0
    output_tokens: int = 0


class PlanningOracle(Protocol):
    async def next_action(self, request: PlanningRequest) -> PlanningDecision:
        """
        Propose the next action for an execution.

        Args:
            request: Goal, agent type, step history and free-form context.

        Returns:
            A PlanningDecision carrying either an action or the completion signal.

        Raises:
            OracleFailure: The underlying model call failed.
        """
        ...


class JudgmentOracle(Protocol):
    async def judge(self, prompt: str, *, subject: str) -> Judgment:
        """
        Decide whether ``subject`` is safe according to ``prompt``.

        Args:
            prompt: The rendered validation template.
            subject: The raw content under judgment (usually the context message).

        Returns:
            A Judgment with the boolean verdict and a human-readable reason.
        """
        ...

    async def complete(self, prompt: str, *, subject: str) -> str:
        """
        Rewrite ``subject`` following ``prompt``.

        Args:
            prompt: The rendered transform/execute template.
            subject: The raw content being rewritten.

        Returns:
            The rewritten text.
        """
        ...
