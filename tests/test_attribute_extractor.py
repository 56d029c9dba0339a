"""
Tests for attribute extraction, validation and the correction retry.
"""

import pytest

from decision_matrix import DEFAULT_ATTRIBUTES, CategoricalValue, NumericValue
from errors import CapabilityUnavailable, ExtractionError, MalformedCapabilityOutput
from nodes.attribute_extractor import (
    build_extraction_prompt,
    extract_attributes,
    extract_attributes_by_keywords,
    validate_extraction_output,
)


DESCRIPTION = "Clerks re-key supplier purchase orders from email into SAP"


@pytest.fixture
def attributes(rpa_matrix):
    return list(rpa_matrix.attributes)


# ============================================================================
# Output Validation
# ============================================================================

class TestValidateExtractionOutput:
    """Tests for checking raw output against attribute definitions."""

    def test_nested_shape(self, attributes):
        values, problems = validate_extraction_output({
            "volume": {"value": "High", "confidence": 0.9, "source_span": "300 a day"},
            "manual_hours_per_week": {"value": "35", "confidence": 0.6},
        }, attributes)

        assert problems == []
        assert values["volume"].value == CategoricalValue("high")
        assert values["volume"].source_span == "300 a day"
        assert values["manual_hours_per_week"].value == NumericValue(35.0)

    def test_flat_shape_and_wrapper(self, attributes):
        values, problems = validate_extraction_output(
            {"attributes": {"volume": "low", "judgment_required": "no"}}, attributes
        )

        assert problems == []
        assert values["volume"].raw == "low"
        assert values["judgment_required"].raw is False

    def test_unknown_values_are_omitted(self, attributes):
        values, problems = validate_extraction_output(
            {"volume": "unknown", "risk": {"value": None}}, attributes
        )

        assert values == {}
        assert problems == []

    def test_key_spellings_are_normalised(self, attributes):
        values, problems = validate_extraction_output(
            {"Judgment Required": True, "manualHoursPerWeek": 12}, attributes
        )

        assert problems == []
        assert set(values) == {"judgment_required", "manual_hours_per_week"}

    def test_problems_are_reported(self, attributes):
        values, problems = validate_extraction_output({
            "volume": "astronomical",
            "manual_hours_per_week": "lots",
            "invented": "x",
            "risk": "low",
        }, attributes)

        assert list(values) == ["risk"]
        assert len(problems) == 3

    def test_confidence_is_clamped(self, attributes):
        values, _ = validate_extraction_output({"volume": {"value": "high", "confidence": 4}}, attributes)
        assert values["volume"].confidence == 1.0

    def test_non_object_output(self, attributes):
        values, problems = validate_extraction_output(["high"], attributes)
        assert values == {}
        assert len(problems) == 1


# ============================================================================
# Extraction With Retry
# ============================================================================

class TestExtractAttributes:
    """Tests for the extract -> correct -> partial result flow."""

    def test_clean_output_needs_one_call(self, scripted, attributes):
        capability = scripted([], extractions=[{"volume": "high", "risk": "low"}])

        values = extract_attributes(DESCRIPTION, [], attributes, capability)

        assert {k: v.raw for k, v in values.items()} == {"volume": "high", "risk": "low"}
        assert capability.corrections == [None]

    def test_retries_once_with_correction(self, scripted, attributes):
        capability = scripted([], extractions=[
            {"volume": "gigantic", "risk": "low"},
            {"volume": "high", "risk": "low"},
        ])

        values = extract_attributes(DESCRIPTION, [], attributes, capability)

        assert values["volume"].raw == "high"
        assert len(capability.corrections) == 2
        assert "gigantic" in capability.corrections[1]

    def test_partial_result_after_second_failure(self, scripted, attributes):
        capability = scripted([], extractions=[
            {"volume": "gigantic", "risk": "low"},
            {"volume": "gigantic", "judgment_required": True},
        ])

        values = extract_attributes(DESCRIPTION, [], attributes, capability)

        assert set(values) == {"risk", "judgment_required"}
        assert capability.calls["extract_attributes"] == 2

    def test_second_attempt_wins_on_conflict(self, scripted, attributes):
        capability = scripted([], extractions=[
            {"volume": "gigantic", "risk": "high"},
            {"risk": "low"},
        ])

        values = extract_attributes(DESCRIPTION, [], attributes, capability)

        assert values["risk"].raw == "low"

    def test_strict_mode_raises(self, scripted, attributes):
        capability = scripted([], extractions=[{"volume": "gigantic"}])

        with pytest.raises(ExtractionError):
            extract_attributes(DESCRIPTION, [], attributes, capability, strict=True)

    def test_malformed_output_counts_as_a_problem(self, scripted, attributes):
        capability = scripted([], extractions=[
            MalformedCapabilityOutput("extract_attributes", "not JSON"),
            {"volume": "high"},
        ])

        values = extract_attributes(DESCRIPTION, [], attributes, capability)

        assert values["volume"].raw == "high"
        assert "not JSON" in capability.corrections[1]

    def test_unreachable_capability_raises_extraction_error(self, scripted, attributes):
        capability = scripted([], extractions=[
            CapabilityUnavailable("extract_attributes", "timed out", attempts=3),
        ])

        with pytest.raises(ExtractionError) as exc:
            extract_attributes(DESCRIPTION, [], attributes, capability)

        assert exc.value.attempts == 3

    def test_no_attributes(self, scripted):
        capability = scripted([])

        assert extract_attributes(DESCRIPTION, [], [], capability) == {}
        assert capability.calls["extract_attributes"] == 0


# ============================================================================
# Prompt & Keyword Extraction
# ============================================================================

class TestExtractionPrompt:
    def test_lists_attributes_and_correction(self, attributes):
        prompt = build_extraction_prompt(
            DESCRIPTION,
            [{"question": "How many?", "answer": "300 a day"}],
            attributes,
            correction="- 'volume' value 'gigantic' is not allowed",
        )

        assert "- volume (categorical): one of high, medium, low" in prompt
        assert "300 a day" in prompt
        assert "FIX THEM" in prompt


class TestKeywordExtraction:
    """The offline extractor produces the raw capability shape."""

    def test_detects_signals(self):
        output = extract_attributes_by_keywords(
            "We get hundreds of paper invoices every day; it is low risk and rule-based.",
            [{"question": "How long does it take?", "answer": "About 30 hours per week across 12 staff"}],
            DEFAULT_ATTRIBUTES,
        )

        assert output["volume"]["value"] == "high"
        assert output["frequency"]["value"] == "daily"
        assert output["current_state"]["value"] == "paper"
        assert output["risk"]["value"] == "low"
        assert output["judgment_required"]["value"] is False
        assert output["user_count"]["value"] == "6-20"
        assert output["manual_hours_per_week"]["value"] == 30.0

    def test_output_validates_against_definitions(self):
        output = extract_attributes_by_keywords("Something vague", [], DEFAULT_ATTRIBUTES)

        values, problems = validate_extraction_output(output, DEFAULT_ATTRIBUTES)

        assert problems == []
        assert values == {}
