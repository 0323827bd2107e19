from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import Field

from ..schemas.base import BaseSchema
from ..schemas.domain import RISK_ORDER, AutonomyProfile, RiskLevel, StepSafety


class SafetyRuleType(str, Enum):
    """
    What happens when a rule's pattern matches an action.

    Attributes:
        allow: Explicitly allowed; stops rule evaluation for that action.
        deny: The action is blocked outright.
        confirm: The action needs human confirmation before it runs.
    """

    allow = "allow"
    deny = "deny"
    confirm = "confirm"


class SafetyRuleCategory(str, Enum):
    file = "file"
    terminal = "terminal"
    network = "network"
    system = "system"
    custom = "custom"


class SafetyRule(BaseSchema):
    """
    A glob rule matched against action descriptors.

    Patterns are anchored and case-insensitive: ``**`` matches anything,
    ``*`` matches anything but ``/`` and ``?`` matches a single character.
    ``risky`` marks actions that warrant an automatic checkpoint before they
    run (deletes, force operations, schema and dependency changes).
    """

    id: str
    type: SafetyRuleType
    pattern: str
    description: str
    category: SafetyRuleCategory = SafetyRuleCategory.custom
    risky: bool = False


class SafetyPolicy(BaseSchema):
    """
    Configuration for the safety checker.

    ``custom_rules`` are evaluated before the built-in defaults, so they can
    override them.
    """

    autonomy_profile: AutonomyProfile = AutonomyProfile.balanced
    require_confirmation_at_or_above: RiskLevel = RiskLevel.critical
    checkpoint_at_or_above: RiskLevel = RiskLevel.high
    custom_rules: list[SafetyRule] = Field(default_factory=list)


@dataclass(frozen=True)
class SafetyVerdict:
    """
    Result of classifying one proposed action.

    Attributes:
        allowed: False when a deny rule matched.
        requires_confirmation: Whether the step must wait for a human.
        risky: Whether an automatic checkpoint is taken before the step.
        risk_level: The assessed risk level.
        reason: Human-readable reason from the deciding rule.
        matched_rule: Id of the deciding rule, if any.
        descriptor: The action descriptor the deciding rule matched.
    """

    allowed: bool
    requires_confirmation: bool
    risky: bool
    risk_level: RiskLevel
    reason: Optional[str] = None
    matched_rule: Optional[str] = None
    descriptor: Optional[str] = None

    def to_step_safety(self) -> StepSafety:
        return StepSafety(
            allowed=self.allowed,
            risk_level=self.risk_level,
            risky=self.risky,
            sensitive=self.requires_confirmation,
            reason=self.reason,
            matched_rule=self.matched_rule,
        )


def risk_ge(a: RiskLevel, b: RiskLevel) -> bool:
    """Check if risk level 'a' is greater than or equal to 'b'."""
    return RISK_ORDER[a] >= RISK_ORDER[b]


def risk_requires_confirmation(
    risk: RiskLevel,
    *,
    rule_type: Optional[SafetyRuleType],
    profile: AutonomyProfile,
    policy: SafetyPolicy,
) -> bool:
    """
    Determine if a step must wait for human confirmation.

    Args:
        risk: The assessed risk level of the action.
        rule_type: The type of the deciding rule, if any matched.
        profile: The autonomy profile of the agent running the step.
        policy: The safety policy configuration.

    Returns:
        True if confirmation is required, False otherwise.
    """
    if profile == AutonomyProfile.strict:
        return True
    if profile == AutonomyProfile.unrestricted:
        return risk_ge(risk, RiskLevel.critical)
    if rule_type == SafetyRuleType.confirm:
        return True
    return risk_ge(risk, policy.require_confirmation_at_or_above)
