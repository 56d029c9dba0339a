"""
Tests for the baseline classifier node.

Covers confidence routing (clarify / manual_review / auto_classify),
description quality assessment, response parsing and the keyword
classifier used by the offline capability binding.
"""

import pytest

from decision_matrix import TransformationCategory
from errors import MalformedCapabilityOutput
from nodes.classifier import (
    AUTO_CLASSIFY_THRESHOLD,
    MANUAL_REVIEW_THRESHOLD,
    BaselineClassification,
    Classification,
    ClassifierConfig,
    ConfidenceAction,
    DescriptionQuality,
    KEYWORD_PATTERNS,
    assess_description_quality,
    build_classification_prompt,
    classification_from_payload,
    classify_by_keywords,
    determine_action,
)


DETAILED_PARAGRAPH = (
    "Every day our accounts payable team manually keys about 300 supplier invoices from email into SAP. "
    "The process involves four approval steps across two departments and is slow and error-prone. "
    "The goal is to save around 40 hours a week and reduce cost; the main risk is compliance with audit rules. "
    "The finance manager is the sponsor and the budget is approved. "
)

GOOD_DESCRIPTION = DETAILED_PARAGRAPH * 2
MARGINAL_DESCRIPTION = DETAILED_PARAGRAPH
POOR_DESCRIPTION = "We process invoices."


def qa(n):
    return [{"question": f"Question {i}?", "answer": f"Answer {i}"} for i in range(n)]


# ============================================================================
# Enum & Result Tests
# ============================================================================

class TestConfidenceAction:
    """Tests for the ConfidenceAction enum."""

    def test_from_string_variants(self):
        """Test spacing and dashes are tolerated."""
        assert ConfidenceAction.from_string("Manual Review") == ConfidenceAction.MANUAL_REVIEW
        assert ConfidenceAction.from_string("auto-classify") == ConfidenceAction.AUTO_CLASSIFY
        assert ConfidenceAction.from_string("clarify") == ConfidenceAction.CLARIFY

    def test_from_string_invalid(self):
        """Test unknown actions are rejected."""
        with pytest.raises(ValueError):
            ConfidenceAction.from_string("escalate")


class TestBaselineClassification:
    """Tests for the BaselineClassification dataclass."""

    def test_to_dict_includes_action(self):
        baseline = BaselineClassification(
            Classification(TransformationCategory.RPA, 0.81234, "Repetitive data entry"),
            ConfidenceAction.CLARIFY,
        )

        result = baseline.to_dict()

        assert result["category"] == "RPA"
        assert result["confidence"] == 0.8123
        assert result["action"] == "clarify"

    def test_from_dict(self):
        baseline = BaselineClassification.from_dict(
            {"category": "AI Agent", "confidence": 0.7, "rationale": "Needs judgment", "action": "auto_classify"}
        )

        assert baseline.category == TransformationCategory.AI_AGENT
        assert baseline.confidence == 0.7
        assert baseline.action == ConfidenceAction.AUTO_CLASSIFY


# ============================================================================
# ClassifierConfig Tests
# ============================================================================

class TestClassifierConfig:
    """Tests for the ClassifierConfig dataclass."""

    def test_default_config(self):
        """Test default configuration values."""
        config = ClassifierConfig()
        assert config.llm_provider == "openai"
        assert config.llm_model == "gpt-4o-mini"
        assert config.llm_temperature == 0.0
        assert config.manual_review_threshold == MANUAL_REVIEW_THRESHOLD == 0.5
        assert config.auto_classify_threshold == AUTO_CLASSIFY_THRESHOLD == 0.98
        assert config.use_mock is False

    def test_from_env(self, monkeypatch):
        """Test configuration is read from the environment."""
        monkeypatch.setenv("CLASSIFIER_LLM_PROVIDER", "anthropic")
        monkeypatch.setenv("CLASSIFIER_LLM_MODEL", "claude-3-5-haiku-latest")
        monkeypatch.setenv("AUTO_CLASSIFY_THRESHOLD", "0.9")
        monkeypatch.setenv("USE_MOCK_CLASSIFIER", "TRUE")

        config = ClassifierConfig.from_env()

        assert config.llm_provider == "anthropic"
        assert config.llm_model == "claude-3-5-haiku-latest"
        assert config.auto_classify_threshold == 0.9
        assert config.use_mock is True


# ============================================================================
# Description Quality Tests
# ============================================================================

class TestDescriptionQuality:
    """Tests for the discovery-information check."""

    def test_short_description_is_poor(self):
        assert assess_description_quality(POOR_DESCRIPTION) == DescriptionQuality.POOR

    def test_long_description_without_strategy_is_poor(self):
        """Test that length alone does not make a description good."""
        text = "We enter the data manually into the system every week, which involves many steps. " * 5
        assert assess_description_quality(text) == DescriptionQuality.POOR

    def test_medium_description_is_marginal(self):
        assert assess_description_quality(MARGINAL_DESCRIPTION) == DescriptionQuality.MARGINAL

    def test_detailed_description_is_good(self):
        assert assess_description_quality(GOOD_DESCRIPTION) == DescriptionQuality.GOOD

    def test_explored_after_three_turns(self):
        """Test that three answered turns count as enough exploration."""
        assert assess_description_quality(POOR_DESCRIPTION, qa(3)) == DescriptionQuality.GOOD


# ============================================================================
# Action Determination Tests
# ============================================================================

class TestDetermineAction:
    """Tests for routing a baseline classification."""

    def test_low_confidence_goes_to_manual_review(self):
        assert determine_action(0.4, GOOD_DESCRIPTION) == ConfidenceAction.MANUAL_REVIEW

    def test_review_threshold_is_exclusive(self):
        assert determine_action(0.5, POOR_DESCRIPTION) == ConfidenceAction.CLARIFY

    def test_poor_description_is_clarified_even_when_confident(self):
        assert determine_action(0.99, POOR_DESCRIPTION) == ConfidenceAction.CLARIFY

    def test_marginal_description_is_clarified(self):
        assert determine_action(0.99, MARGINAL_DESCRIPTION) == ConfidenceAction.CLARIFY

    def test_good_description_and_high_confidence(self):
        assert determine_action(0.98, GOOD_DESCRIPTION) == ConfidenceAction.AUTO_CLASSIFY

    def test_good_description_below_auto_threshold(self):
        assert determine_action(0.9, GOOD_DESCRIPTION) == ConfidenceAction.CLARIFY

    def test_answers_unlock_auto_classify(self):
        assert determine_action(0.99, POOR_DESCRIPTION, qa(3)) == ConfidenceAction.AUTO_CLASSIFY

    def test_custom_thresholds(self):
        config = ClassifierConfig(manual_review_threshold=0.3, auto_classify_threshold=0.8)

        assert determine_action(0.4, GOOD_DESCRIPTION, config=config) == ConfidenceAction.CLARIFY
        assert determine_action(0.85, GOOD_DESCRIPTION, config=config) == ConfidenceAction.AUTO_CLASSIFY


# ============================================================================
# Prompt & Parsing Tests
# ============================================================================

class TestClassificationPrompt:
    def test_includes_conversation(self):
        prompt = build_classification_prompt(POOR_DESCRIPTION, [{"question": "How many?", "answer": "300"}])

        assert "PROCESS DESCRIPTION:\nWe process invoices." in prompt
        assert "Q1: How many?\nA1: 300" in prompt
        assert "SUMMARY" not in prompt

    def test_summary_and_recent_turns(self):
        prompt = build_classification_prompt(POOR_DESCRIPTION, qa(2), context_summary="- 300 invoices a day")

        assert "SUMMARY OF EARLIER CONVERSATION:\n- 300 invoices a day" in prompt
        assert "RECENT CONVERSATION:" in prompt


class TestClassificationFromPayload:
    """Tests for validating model responses."""

    def test_valid_payload(self):
        result = classification_from_payload(
            {"category": "rpa", "confidence": 0.8, "rationale": "Rule-based copying"}
        )

        assert result.category == TransformationCategory.RPA
        assert result.confidence == 0.8
        assert result.rationale == "Rule-based copying"

    def test_camel_case_fields(self):
        result = classification_from_payload({
            "category": "Digitise",
            "confidence": 0.7,
            "categoryProgression": "Paper must go first",
            "futureOpportunities": "RPA afterwards",
        })

        assert result.category_progression == "Paper must go first"
        assert result.future_opportunities == "RPA afterwards"

    @pytest.mark.parametrize("payload", [
        {"category": "Outsource", "confidence": 0.8},
        {"category": "RPA", "confidence": 1.5},
        {"category": "RPA"},
        ["RPA", 0.8],
        "RPA",
    ])
    def test_malformed_payloads(self, payload):
        with pytest.raises(MalformedCapabilityOutput) as exc:
            classification_from_payload(payload)

        assert exc.value.capability == "classify"


# ============================================================================
# Keyword Classification Tests
# ============================================================================

class TestKeywordClassification:
    """Tests for keyword-based classification."""

    def test_classify_rpa(self):
        """Test copy/paste work is classified as RPA."""
        result = classify_by_keywords("Staff copy and paste order data between two systems")

        assert result.category == TransformationCategory.RPA
        assert result.confidence == pytest.approx(0.735)

    def test_classify_digitise(self):
        result = classify_by_keywords("Customers fill in printed forms that we scan")
        assert result.category == TransformationCategory.DIGITISE

    def test_classify_agentic(self):
        result = classify_by_keywords("We want it to run autonomously")

        assert result.category == TransformationCategory.AGENTIC_AI
        assert result.future_opportunities is None

    def test_answers_are_considered(self):
        result = classify_by_keywords(
            "A weekly report",
            [{"question": "Who uses it?", "answer": "Honestly no one reads it"}],
        )

        assert result.category == TransformationCategory.ELIMINATE

    def test_tie_prefers_earlier_category(self):
        """Test that equal scores resolve to the earlier category in the progression."""
        result = classify_by_keywords("There are too many approvals on paper")
        assert result.category == TransformationCategory.SIMPLIFY

    def test_no_match_defaults_to_digitise(self):
        result = classify_by_keywords("Lorem ipsum dolor sit amet")

        assert result.category == TransformationCategory.DIGITISE
        assert result.confidence == 0.55

    def test_confidence_grows_with_answers(self):
        assert classify_by_keywords("Lorem ipsum", qa(2)).confidence == pytest.approx(0.67)

    def test_confidence_is_capped(self):
        assert classify_by_keywords("Lorem ipsum", qa(10)).confidence == 0.99

    def test_case_insensitive(self):
        lower = classify_by_keywords("we do data entry all day")
        upper = classify_by_keywords("WE DO DATA ENTRY ALL DAY")
        assert lower == upper

    def test_every_category_has_patterns(self):
        assert set(KEYWORD_PATTERNS) == set(TransformationCategory)
        for patterns in KEYWORD_PATTERNS.values():
            for pattern, weight in patterns:
                assert isinstance(pattern, str)
                assert 0.0 <= weight <= 1.0
