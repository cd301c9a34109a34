"""
Test module for stepwright.services.guardrails.builtin
"""

import pytest

from stepwright.models.guardrails import ToolGuardrailData
from stepwright.services.guardrails.builtin import (
    BlockedPatternGuardrail,
    MaxLengthGuardrail,
    SensitiveDataGuardrail,
)


class TestMaxLengthGuardrail:

    @pytest.mark.asyncio
    async def test_within_limit_passes(self):
        result = await MaxLengthGuardrail(10).validate_input("short")
        assert not result.tripwire_triggered
        assert result.metadata == {"length": 5}

    @pytest.mark.asyncio
    async def test_over_limit_trips(self):
        result = await MaxLengthGuardrail(3, name="tiny").validate_input("too long")
        assert result.tripwire_triggered
        assert result.output_info == {"length": 8, "max_length": 3}
        assert "exceeds maximum of 3" in result.message

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            MaxLengthGuardrail(0)


class TestBlockedPatternGuardrail:

    @pytest.mark.asyncio
    async def test_case_insensitive_by_default(self):
        guardrail = BlockedPatternGuardrail([r"drop\s+table"])
        result = await guardrail.validate_output("please DROP  TABLE users", "engine")
        assert result.tripwire_triggered
        assert result.output_info == {"matched_patterns": [r"drop\s+table"]}

    @pytest.mark.asyncio
    async def test_case_sensitive(self):
        guardrail = BlockedPatternGuardrail(["Secret"], case_sensitive=True)
        assert not (await guardrail.validate_input("secret")).tripwire_triggered
        assert (await guardrail.validate_input("Secret")).tripwire_triggered

    @pytest.mark.asyncio
    async def test_tool_arguments_are_checked_as_json(self):
        guardrail = BlockedPatternGuardrail(["rm -rf"])
        data = ToolGuardrailData(tool_name="shell", arguments={"command": "rm -rf /"})
        assert (await guardrail.validate_tool_input(data)).tripwire_triggered


class TestSensitiveDataGuardrail:

    @pytest.mark.asyncio
    async def test_detects_each_category_without_echoing_values(self):
        text = "Mail jane@example.com, SSN 123-45-6789, card 4111 1111 1111 1111"
        result = await SensitiveDataGuardrail().validate_tool_output(ToolGuardrailData(tool_name="db"), text)
        assert result.tripwire_triggered
        assert result.output_info == {"detections": {"email": 1, "ssn": 1, "credit_card": 1}}
        assert "jane@example.com" not in result.message

    @pytest.mark.asyncio
    async def test_clean_text_passes(self):
        assert not (await SensitiveDataGuardrail().validate_input("nothing to see")).tripwire_triggered

    @pytest.mark.asyncio
    async def test_category_subset(self):
        guardrail = SensitiveDataGuardrail(categories=["ssn"])
        assert not (await guardrail.validate_input("jane@example.com")).tripwire_triggered

    def test_unknown_category(self):
        with pytest.raises(ValueError, match="passport"):
            SensitiveDataGuardrail(categories=["passport"])
