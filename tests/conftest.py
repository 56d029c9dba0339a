"""
Shared fixtures: a scripted capability binding and small matrices.
"""

from typing import Any, Dict, List, Optional

import pytest

from decision_matrix import (
    ActionType,
    Attribute,
    AttributeType,
    Condition,
    ConditionOperator,
    DecisionMatrix,
    Rule,
    RuleAction,
    TransformationCategory,
)
from llm_capabilities import LLMCapabilities
from matrix_storage import InMemoryMatrixStore
from nodes.classifier import BaselineClassification, Classification, ConfidenceAction


def baseline(category: str, confidence: float, action: str, rationale: str = "Baseline rationale") -> BaselineClassification:
    return BaselineClassification(
        classification=Classification(
            category=TransformationCategory.from_string(category),
            confidence=confidence,
            rationale=rationale,
        ),
        action=ConfidenceAction.from_string(action),
    )


class ScriptedCapabilities(LLMCapabilities):
    """
    Capabilities that replay scripted responses.

    Classification and question responses are consumed in order; the last
    one repeats once the script runs out. Items that are exceptions are
    raised instead of returned.
    """

    def __init__(
        self,
        classifications: List[Any],
        questions: Optional[List[Any]] = None,
        extractions: Optional[List[Any]] = None,
        summary: Any = "Summary of earlier answers",
    ):
        self.classifications = list(classifications)
        self.questions = list(questions or [[]])
        self.extractions = list(extractions or [{}])
        self.summary = summary
        self.calls: Dict[str, int] = {"classify": 0, "generate_questions": 0, "extract_attributes": 0, "summarize": 0}
        self.classify_histories: List[List[Dict[str, str]]] = []
        self.corrections: List[Optional[str]] = []

    def _next(self, script: List[Any], name: str) -> Any:
        index = min(self.calls[name], len(script) - 1)
        self.calls[name] += 1
        item = script[index]
        if isinstance(item, BaseException):
            raise item
        if callable(item) and not isinstance(item, (list, dict)):
            return item()
        return item

    def classify(self, description, qa_history, model_config=None, context_summary=None):
        self.classify_histories.append([dict(t) for t in qa_history])
        return self._next(self.classifications, "classify")

    def generate_questions(self, description, classification, qa_history, model_config=None, context_summary=None, asked_questions=()):
        return list(self._next(self.questions, "generate_questions"))

    def extract_attributes(self, description, qa_history, attribute_defs, model_config=None, correction=None):
        self.corrections.append(correction)
        return self._next(self.extractions, "extract_attributes")

    def summarize(self, qa_history, model_config=None):
        self.calls["summarize"] += 1
        if isinstance(self.summary, BaseException):
            raise self.summary
        return self.summary


@pytest.fixture
def scripted():
    """The ScriptedCapabilities class, for tests that build their own script."""
    return ScriptedCapabilities


@pytest.fixture
def make_baseline():
    return baseline


@pytest.fixture
def rpa_matrix() -> DecisionMatrix:
    """Volume/risk matrix with a single 'high volume + low risk -> RPA' override."""
    return DecisionMatrix(
        version="1.0",
        attributes=(
            Attribute("volume", AttributeType.CATEGORICAL, 0.8, ("high", "medium", "low")),
            Attribute("risk", AttributeType.CATEGORICAL, 0.8, ("critical", "high", "medium", "low")),
            Attribute("judgment_required", AttributeType.BOOLEAN, 0.6),
            Attribute("manual_hours_per_week", AttributeType.NUMERIC, 0.5),
        ),
        rules=(
            Rule(
                rule_id="high-volume-low-risk",
                name="High volume + low risk -> RPA",
                priority=80,
                conditions=(
                    Condition("volume", ConditionOperator.EQUALS, "high"),
                    Condition("risk", ConditionOperator.EQUALS, "low"),
                ),
                action=RuleAction(ActionType.OVERRIDE, "Rule-based volume work suits RPA",
                                  target_category=TransformationCategory.RPA),
            ),
            Rule(
                rule_id="judgment-needed",
                name="Judgment lowers confidence",
                priority=50,
                conditions=(Condition("judgment_required", ConditionOperator.EQUALS, True),),
                action=RuleAction(ActionType.ADJUST_CONFIDENCE, "Judgment adds uncertainty",
                                  confidence_delta=-0.2),
            ),
        ),
    )


@pytest.fixture
def matrix_store(rpa_matrix) -> InMemoryMatrixStore:
    store = InMemoryMatrixStore()
    store.publish(rpa_matrix, created_by="admin")
    return store
