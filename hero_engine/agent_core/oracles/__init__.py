"""Planning and judgment oracles.

The engine treats the language model as an opaque collaborator. This package
defines the contracts (``base``), the rule-based judgment oracle and the
scripted planning oracle used when no model is configured (``patterns``,
``scripted``) and Pydantic AI adapters (``llm``).
"""

from .base import Judgment, JudgmentOracle, PlannedAction, PlanningDecision, PlanningOracle, PlanningRequest
from .patterns import PatternJudgmentOracle
from .scripted import ScriptedPlanningOracle

__all__ = [
    "Judgment",
    "JudgmentOracle",
    "PatternJudgmentOracle",
    "PlannedAction",
    "PlanningDecision",
    "PlanningOracle",
    "PlanningRequest",
    "ScriptedPlanningOracle",
]
