from __future__ import annotations

"""Rule-based judgment oracle.

``PatternJudgmentOracle`` is the default judgment oracle when no model is
configured. It answers guard prompts by scanning the subject for three
families of patterns: prompt/command/SQL injection, path traversal, and
credential access. Rewrites return the subject unchanged.
"""

import re
from typing import Dict, Sequence, Tuple

from .base import Judgment

DEFAULT_PATTERNS: Dict[str, Tuple[str, ...]] = {
    "injection": (
        r"ignore\s+(all\s+)?(previous|prior)\s+instructions",
        r"reveal\s+(the\s+)?system\s+prompt",
        r";\s*(rm|curl|wget|nc)\s",
        r"\$\([^)]*\)",
        r"`[^`]*(rm|curl|wget)[^`]*`",
        r"'\s*or\s+'?1'?\s*=\s*'?1",
        r"\bunion\s+select\b",
        r"\bdrop\s+table\b",
    ),
    "path traversal": (
        r"\.\./",
        r"\.\.\\",
        r"%2e%2e(%2f|/|%5c)",
    ),
    "credential access": (
        r"(^|[\s/])\.env\b",
        r"\bid_(rsa|ed25519|ecdsa)\b",
        r"\.ssh/",
        r"/etc/(passwd|shadow)",
        r"\.aws/credentials",
        r"aws_secret_access_key",
        r"private[_ ]key",
    ),
}


class PatternJudgmentOracle:
    """Deterministic judgment oracle backed by regular expressions."""

    def __init__(self, patterns: Dict[str, Sequence[str]] | None = None) -> None:
        source = patterns if patterns is not None else DEFAULT_PATTERNS
        self._patterns = {
            family: tuple(re.compile(p, re.IGNORECASE) for p in expressions) for family, expressions in source.items()
        }

    async def judge(self, prompt: str, *, subject: str) -> Judgment:
        for family, expressions in self._patterns.items():
            for expression in expressions:
                if expression.search(subject or ""):
                    return Judgment(verdict=False, reason=f"Potential {family} detected")
        return Judgment(verdict=True, reason="No unsafe patterns detected")

    async def complete(self, prompt: str, *, subject: str) -> str:
        return subject
