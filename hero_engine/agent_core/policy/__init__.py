"""Safety policy for proposed steps.

The policy layer decides, for every step the planning oracle proposes,
whether it may run, whether it must wait for human confirmation and whether
an automatic checkpoint is taken before it runs.
"""

from .models import SafetyPolicy, SafetyRule, SafetyRuleCategory, SafetyRuleType, SafetyVerdict
from .safety import DEFAULT_RULES, SafetyChecker, describe_action, glob_match

__all__ = [
    "DEFAULT_RULES",
    "SafetyChecker",
    "SafetyPolicy",
    "SafetyRule",
    "SafetyRuleCategory",
    "SafetyRuleType",
    "SafetyVerdict",
    "describe_action",
    "glob_match",
]
