from __future__ import annotations

"""Safety classification for proposed steps.

``SafetyChecker`` is the runtime authority the step loop consults after the
planning oracle proposes an action and before anything runs.

Design goals
------------

- Keep allow/deny/confirm decisions outside of prompts, in predictable glob
  rules rather than model judgment.
- Classify every step along three axes:

  - allowed or denied,
  - sensitive (must wait for human confirmation),
  - risky (an automatic checkpoint is written before it runs).

- Let operators add custom rules that take precedence over the defaults.

An action is matched through one or more *descriptors*: the action name
itself, the command it runs, and verb-prefixed paths such as
``delete:src/app.py`` or ``edit:config/config.yaml``.
"""

import re
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional

from ..schemas.domain import RISK_ORDER, AutonomyProfile, RiskLevel
from .models import (
    SafetyPolicy,
    SafetyRule,
    SafetyRuleCategory,
    SafetyRuleType,
    SafetyVerdict,
    risk_requires_confirmation,
)

_SECRET_PATTERNS = (
    re.compile(r"sk-[A-Za-z0-9]{10,}"),
    re.compile(r"ghp_[A-Za-z0-9]{10,}"),
    re.compile(r"xoxb-[A-Za-z0-9-]{10,}"),
    re.compile(r"AKIA[0-9A-Z]{16}"),
)

_deny = SafetyRuleType.deny
_confirm = SafetyRuleType.confirm
_file = SafetyRuleCategory.file
_terminal = SafetyRuleCategory.terminal
_network = SafetyRuleCategory.network
_system = SafetyRuleCategory.system

DEFAULT_RULES: tuple[SafetyRule, ...] = (
    # File operations
    SafetyRule(id="deny-system-files", type=_deny, pattern="/etc/**", description="System configuration files are off-limits", category=_file),
    SafetyRule(id="deny-root-files", type=_deny, pattern="/root/**", description="Root user files are off-limits", category=_file),
    SafetyRule(id="deny-env-files", type=_deny, pattern="**/.env*", description="Environment files require manual editing", category=_file),
    SafetyRule(id="deny-ssh-keys", type=_deny, pattern="**/.ssh/**", description="SSH keys are off-limits", category=_file),
    SafetyRule(id="deny-git-internal", type=_deny, pattern="**/.git/**", description="Git internal files should not be modified directly", category=_file),
    SafetyRule(id="confirm-delete", type=_confirm, pattern="delete:**", description="File deletion requires confirmation", category=_file, risky=True),
    SafetyRule(id="confirm-config-edit", type=_confirm, pattern="edit:**/config.*", description="Configuration file changes require confirmation", category=_file),
    # Terminal operations
    SafetyRule(id="deny-sudo", type=_deny, pattern="sudo *", description="Sudo commands are not allowed", category=_terminal),
    SafetyRule(id="deny-su", type=_deny, pattern="su *", description="User switching is not allowed", category=_terminal),
    SafetyRule(id="deny-rm-rf-root", type=_deny, pattern="rm -rf /", description="Deleting root is absolutely forbidden", category=_terminal),
    SafetyRule(id="deny-rm-rf", type=_deny, pattern="rm -rf **", description="Recursive force delete is not allowed", category=_terminal),
    SafetyRule(id="deny-chmod-777", type=_deny, pattern="chmod 777 **", description="World-writable permissions are not allowed", category=_terminal),
    SafetyRule(id="deny-curl-pipe-bash", type=_deny, pattern="curl ** | bash", description="Piping curl to bash is not allowed", category=_terminal),
    SafetyRule(id="deny-wget-pipe-bash", type=_deny, pattern="wget ** | bash", description="Piping wget to bash is not allowed", category=_terminal),
    SafetyRule(id="confirm-npm-install", type=_confirm, pattern="npm install **", description="Package installation requires confirmation", category=_terminal, risky=True),
    SafetyRule(id="confirm-pnpm-add", type=_confirm, pattern="pnpm add **", description="Package installation requires confirmation", category=_terminal, risky=True),
    SafetyRule(id="confirm-yarn-add", type=_confirm, pattern="yarn add **", description="Package installation requires confirmation", category=_terminal, risky=True),
    SafetyRule(id="confirm-pip-install", type=_confirm, pattern="pip install **", description="Package installation requires confirmation", category=_terminal, risky=True),
    SafetyRule(id="confirm-migration", type=_confirm, pattern="** migrat**", description="Schema migrations require confirmation", category=_terminal, risky=True),
    SafetyRule(id="confirm-git-push", type=_confirm, pattern="git push**", description="Git push requires confirmation", category=_terminal),
    SafetyRule(id="confirm-git-force", type=_confirm, pattern="git ** --force**", description="Force operations require confirmation", category=_terminal, risky=True),
    # Network operations
    SafetyRule(id="deny-localhost-admin", type=_deny, pattern="fetch:**localhost**/admin**", description="Admin endpoints are off-limits", category=_network),
    SafetyRule(id="confirm-external-fetch", type=_confirm, pattern="fetch:http**", description="External API calls require confirmation", category=_network),
    # System operations
    SafetyRule(id="deny-shutdown", type=_deny, pattern="shutdown**", description="System shutdown is not allowed", category=_system),
    SafetyRule(id="deny-reboot", type=_deny, pattern="reboot**", description="System reboot is not allowed", category=_system),
    SafetyRule(id="deny-kill-all", type=_deny, pattern="killall **", description="Killing all processes is not allowed", category=_system),
)

# Verb prefixes for path-carrying actions, used to build descriptors.
_PATH_VERBS: Dict[str, str] = {
    "delete_file": "delete",
    "remove_file": "delete",
    "write_file": "edit",
    "edit_file": "edit",
    "create_file": "edit",
    "read_file": "read",
}

_FORCE_PATTERN = re.compile(r"(--force\b|\s-f\b|--force-with-lease)")


@lru_cache(maxsize=512)
def _compile_glob(pattern: str) -> re.Pattern[str]:
    out: List[str] = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "*":
            if pattern[i : i + 2] == "**":
                out.append(".*")
                i += 2
                continue
            out.append("[^/]*")
        elif ch == "?":
            out.append(".")
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("^" + "".join(out) + "$", re.IGNORECASE | re.DOTALL)


def glob_match(value: str, pattern: str) -> bool:
    """Match ``value`` against a safety glob pattern."""
    return _compile_glob(pattern).match(value) is not None


def describe_action(action: str, args: Optional[Dict[str, Any]] = None) -> List[str]:
    """
    Build the descriptors an action is matched through.

    Args:
        action: The action name proposed by the planning oracle. It may be a
            capability name (``run_command``) or a raw command line.
        args: The structured input of the step.

    Returns:
        De-duplicated descriptors, the action name first.
    """
    args = args or {}
    descriptors: List[str] = [action.strip()]

    command = args.get("command") or args.get("cmd")
    if command:
        descriptors.append(str(command).strip())

    path = args.get("path") or args.get("file")
    if path:
        path = str(path)
        descriptors.append(path)
        verb = _PATH_VERBS.get(action)
        if verb:
            descriptors.append(f"{verb}:{path}")

    url = args.get("url")
    if url:
        descriptors.append(f"fetch:{url}")

    seen: set[str] = set()
    return [d for d in descriptors if d and not (d in seen or seen.add(d))]


def _risk_for(descriptor: str, rule: Optional[SafetyRule]) -> RiskLevel:
    if rule is None:
        return RiskLevel.low
    if rule.category == SafetyRuleCategory.system:
        return RiskLevel.critical
    if "rm -rf" in descriptor:
        return RiskLevel.critical
    if _FORCE_PATTERN.search(descriptor):
        return RiskLevel.high
    if rule.category == SafetyRuleCategory.terminal and rule.type == SafetyRuleType.deny:
        return RiskLevel.high
    if rule.type == SafetyRuleType.confirm:
        return RiskLevel.medium
    return RiskLevel.low


_TYPE_SEVERITY = {None: 0, SafetyRuleType.allow: 0, SafetyRuleType.confirm: 1, SafetyRuleType.deny: 2}


class SafetyChecker:
    """Classify proposed actions against deny/confirm/allow rules.

    ``SafetyChecker`` is configured by ``SafetyPolicy``. Each descriptor of an
    action is checked against the rules in order (custom rules first) and the
    first matching rule decides for that descriptor. The most severe outcome
    across descriptors wins: deny over confirm over allow.
    """

    def __init__(self, policy: Optional[SafetyPolicy] = None) -> None:
        self._policy = policy or SafetyPolicy()

    @property
    def policy(self) -> SafetyPolicy:
        return self._policy

    @property
    def rules(self) -> List[SafetyRule]:
        return [*self._policy.custom_rules, *DEFAULT_RULES]

    def match(self, descriptor: str) -> Optional[SafetyRule]:
        """Return the first rule matching a descriptor, if any."""
        for rule in self.rules:
            if glob_match(descriptor, rule.pattern):
                return rule
        return None

    def classify(
        self,
        action: str,
        args: Optional[Dict[str, Any]] = None,
        *,
        profile: Optional[AutonomyProfile] = None,
    ) -> SafetyVerdict:
        """
        Classify an action proposed for a step.

        Args:
            action: The proposed action name or command line.
            args: The structured step input.
            profile: Autonomy profile of the agent; defaults to the policy's.

        Returns:
            A SafetyVerdict. Denied actions never require confirmation.
        """
        profile = profile or self._policy.autonomy_profile
        deciding: Optional[SafetyRule] = None
        deciding_descriptor: Optional[str] = None
        risk = RiskLevel.low
        risky = False

        for descriptor in describe_action(action, args):
            rule = self.match(descriptor)
            level = _risk_for(descriptor, rule)
            if RISK_ORDER[level] > RISK_ORDER[risk]:
                risk = level
            if rule is not None and (rule.risky or _FORCE_PATTERN.search(descriptor)):
                risky = True
            current = deciding.type if deciding else None
            if rule is not None and _TYPE_SEVERITY[rule.type] > _TYPE_SEVERITY[current]:
                deciding, deciding_descriptor = rule, descriptor
            elif deciding is None and rule is not None:
                deciding, deciding_descriptor = rule, descriptor

        if RISK_ORDER[risk] >= RISK_ORDER[self._policy.checkpoint_at_or_above]:
            risky = True

        if deciding is not None and deciding.type == SafetyRuleType.deny:
            return SafetyVerdict(
                allowed=False,
                requires_confirmation=False,
                risky=risky,
                risk_level=risk,
                reason=deciding.description,
                matched_rule=deciding.id,
                descriptor=deciding_descriptor,
            )

        require = risk_requires_confirmation(
            risk,
            rule_type=deciding.type if deciding else None,
            profile=profile,
            policy=self._policy,
        )
        reason = deciding.description if deciding is not None and deciding.type != SafetyRuleType.allow else None
        if require and reason is None:
            reason = f"{profile.value} autonomy requires confirmation for {risk.value} risk actions"
        return SafetyVerdict(
            allowed=True,
            requires_confirmation=require,
            risky=risky,
            risk_level=risk,
            reason=reason,
            matched_rule=deciding.id if deciding else None,
            descriptor=deciding_descriptor,
        )

    def classify_many(self, actions: Iterable[str]) -> Dict[str, SafetyVerdict]:
        return {a: self.classify(a) for a in actions}

    def redact(self, text: str) -> str:
        """
        Redact known secrets from text.

        Args:
            text: The input text.

        Returns:
            The sanitized text with secrets replaced by '<redacted>'.
        """
        out = text
        for pat in _SECRET_PATTERNS:
            out = pat.sub("<redacted>", out)
        return out
