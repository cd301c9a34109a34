"""Built-in Guardrails

Text checks that work for every payload kind: goals, final answers, tool
arguments (checked as their JSON rendering) and tool outputs.
"""

import json
import logging
import re
from abc import abstractmethod
from typing import Dict, Iterable, List, Optional, Pattern, Union

from stepwright.models.guardrails import GuardrailContext, GuardrailResult, ToolGuardrailData
from stepwright.services.guardrails.base import (
    InputGuardrail,
    OutputGuardrail,
    ToolInputGuardrail,
    ToolOutputGuardrail,
)


logger = logging.getLogger(__name__)


SENSITIVE_DATA_PATTERNS: Dict[str, str] = {
    "credit_card": r"\b\d{4}[-\s]\d{4}[-\s]\d{4}[-\s]\d{4}\b",
    "ssn": r"\b\d{3}-\d{2}-\d{4}\b",
    "email": r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}",
}


class TextGuardrail(InputGuardrail, OutputGuardrail, ToolInputGuardrail, ToolOutputGuardrail):
    """Applies one ``check(text)`` to every payload kind."""

    @abstractmethod
    def check(self, text: str) -> GuardrailResult:
        pass

    async def validate_input(self, text: str, context: Optional[GuardrailContext] = None) -> GuardrailResult:
        return self.check(text)

    async def validate_output(self, text: str, producer: str,
                              context: Optional[GuardrailContext] = None) -> GuardrailResult:
        return self.check(text)

    async def validate_tool_input(self, data: ToolGuardrailData) -> GuardrailResult:
        return self.check(json.dumps(data.arguments, default=str, sort_keys=True))

    async def validate_tool_output(self, data: ToolGuardrailData, output: str) -> GuardrailResult:
        return self.check(output)


class MaxLengthGuardrail(TextGuardrail):
    """Rejects text longer than ``max_length`` characters."""

    def __init__(self, max_length: int, name: str = "max_length"):
        if max_length < 1:
            raise ValueError("max_length must be at least 1")
        self.max_length = max_length
        self.name = name

    def check(self, text: str) -> GuardrailResult:
        length = len(text)
        if length > self.max_length:
            return GuardrailResult.tripwire(
                f"Text length {length} exceeds maximum of {self.max_length} characters",
                output_info={"length": length, "max_length": self.max_length},
            )
        return GuardrailResult.passed(metadata={"length": length})


class BlockedPatternGuardrail(TextGuardrail):
    """Rejects text matching any of the given regular expressions."""

    def __init__(self, patterns: Iterable[Union[str, Pattern]], name: str = "blocked_patterns",
                 case_sensitive: bool = False):
        flags = 0 if case_sensitive else re.IGNORECASE
        self.patterns: List[Pattern] = [
            p if isinstance(p, re.Pattern) else re.compile(p, flags) for p in patterns
        ]
        self.name = name

    def check(self, text: str) -> GuardrailResult:
        matched = [p.pattern for p in self.patterns if p.search(text)]
        if matched:
            return GuardrailResult.tripwire(
                f"Text matches {len(matched)} blocked pattern(s)",
                output_info={"matched_patterns": matched},
            )
        return GuardrailResult.passed()


class SensitiveDataGuardrail(TextGuardrail):
    """Rejects text containing credit card numbers, SSNs or email addresses.

    ``categories`` restricts the check to a subset of ``SENSITIVE_DATA_PATTERNS``.
    Matched values are never echoed back; only category counts are reported.
    """

    def __init__(self, categories: Optional[Iterable[str]] = None, name: str = "sensitive_data"):
        selected = list(categories) if categories is not None else list(SENSITIVE_DATA_PATTERNS)
        unknown = [c for c in selected if c not in SENSITIVE_DATA_PATTERNS]
        if unknown:
            raise ValueError(f"Unknown sensitive data categories: {', '.join(unknown)}")
        self.patterns = {c: re.compile(SENSITIVE_DATA_PATTERNS[c]) for c in selected}
        self.name = name

    def check(self, text: str) -> GuardrailResult:
        detections = {
            category: len(pattern.findall(text))
            for category, pattern in self.patterns.items()
        }
        detections = {c: n for c, n in detections.items() if n}
        if detections:
            logger.debug(f"Sensitive data detected: {detections}")
            return GuardrailResult.tripwire(
                f"Sensitive data detected: {', '.join(sorted(detections))}",
                output_info={"detections": detections},
            )
        return GuardrailResult.passed()
