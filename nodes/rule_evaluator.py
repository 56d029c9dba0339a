"""
Rule Evaluator - applies a decision matrix to a baseline classification

Evaluation order:
1. Keep only active rules
2. Stable sort by priority, highest first (ties keep matrix order)
3. A rule triggers when every one of its conditions holds
4. Apply actions in that order: overrides replace the working category
   (so the last, lowest-priority override wins), confidence adjustments
   add up, and the final confidence is clamped to [0, 1] once at the end

Evaluation is pure and never raises for data-shape reasons.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from decision_matrix import ActionType, DecisionMatrix, Rule, TransformationCategory
from nodes.classifier import Classification
from nodes.condition_evaluator import evaluate_condition, unwrap_value

logger = logging.getLogger(__name__)

OVERRIDE_PREFIX = "Overridden by decision matrix rule"
ADJUST_PREFIX = "Confidence adjusted by decision matrix rule"


@dataclass(frozen=True)
class TriggeredRule:
    """A rule whose conditions all held, and what it did."""

    rule_id: str
    rule_name: str
    action_type: ActionType
    effect: str
    rationale: str
    target_category: Optional[TransformationCategory] = None
    confidence_delta: Optional[float] = None
    priority: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "action_type": self.action_type.value,
            "target_category": self.target_category.value if self.target_category else None,
            "confidence_delta": self.confidence_delta,
            "priority": self.priority,
            "effect": self.effect,
            "rationale": self.rationale,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TriggeredRule":
        target = data.get("target_category")
        return cls(
            rule_id=data["rule_id"],
            rule_name=data.get("rule_name", ""),
            action_type=ActionType(data["action_type"]),
            effect=data.get("effect", ""),
            rationale=data.get("rationale", ""),
            target_category=TransformationCategory.from_string(target) if target else None,
            confidence_delta=data.get("confidence_delta"),
            priority=int(data.get("priority", 0)),
        )


@dataclass(frozen=True)
class DecisionMatrixEvaluation:
    """The outcome of one matrix evaluation. Never mutated after creation."""

    matrix_version: str
    triggered_rules: Tuple[TriggeredRule, ...]
    original_classification: Classification
    final_classification: Classification
    overridden: bool
    extracted_attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def triggered_rule_ids(self) -> List[str]:
        return [r.rule_id for r in self.triggered_rules]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matrix_version": self.matrix_version,
            "triggered_rules": [r.to_dict() for r in self.triggered_rules],
            "original_classification": self.original_classification.to_dict(),
            "final_classification": self.final_classification.to_dict(),
            "overridden": self.overridden,
            "extracted_attributes": dict(self.extracted_attributes),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DecisionMatrixEvaluation":
        return cls(
            matrix_version=data["matrix_version"],
            triggered_rules=tuple(TriggeredRule.from_dict(r) for r in data.get("triggered_rules", [])),
            original_classification=Classification.from_dict(data["original_classification"]),
            final_classification=Classification.from_dict(data["final_classification"]),
            overridden=bool(data.get("overridden", False)),
            extracted_attributes=dict(data.get("extracted_attributes", {})),
        )


def _rule_matches(rule: Rule, matrix: DecisionMatrix, attribute_values: Mapping[str, Any]) -> bool:
    if not rule.conditions:
        return False

    for condition in rule.conditions:
        if matrix.get_attribute(condition.attribute) is None:
            logger.warning(
                f"Rule '{rule.name}' ({rule.rule_id}) references unknown attribute "
                f"'{condition.attribute}'; treating as non-matching"
            )
            return False
        if not evaluate_condition(condition, attribute_values):
            return False
    return True


def evaluate_matrix(
    matrix: DecisionMatrix,
    baseline: Classification,
    attribute_values: Mapping[str, Any],
) -> DecisionMatrixEvaluation:
    """
    Apply a decision matrix to a baseline classification.

    Args:
        matrix: The decision matrix to apply
        baseline: Baseline classification from the model
        attribute_values: Attribute name -> raw value, AttributeValue or
            ExtractedAttributeValue

    Returns:
        DecisionMatrixEvaluation with the triggered rules in application
        order and both the original and the final classification
    """
    active_rules = [rule for rule in matrix.rules if rule.active]
    # sorted() is stable, so equal priorities keep their matrix order
    ordered = sorted(active_rules, key=lambda rule: rule.priority, reverse=True)

    category = baseline.category
    confidence = baseline.confidence
    rationale_parts = [baseline.rationale] if baseline.rationale else []
    triggered: List[TriggeredRule] = []

    for rule in ordered:
        if not _rule_matches(rule, matrix, attribute_values):
            continue

        action = rule.action
        if action.type == ActionType.OVERRIDE and action.target_category is not None:
            effect = f"Category {category.value} -> {action.target_category.value}"
            category = action.target_category
            rationale_parts.append(f"{OVERRIDE_PREFIX}: {rule.name}. {action.rationale}".strip())
        elif action.type == ActionType.ADJUST_CONFIDENCE and action.confidence_delta is not None:
            effect = f"Confidence {action.confidence_delta:+.2f}"
            confidence += action.confidence_delta
            rationale_parts.append(f"{ADJUST_PREFIX}: {rule.name}. {action.rationale}".strip())
        else:
            logger.warning(f"Rule '{rule.name}' has an incomplete action; skipping")
            continue

        logger.info(f"Decision matrix rule triggered: {rule.name} ({effect})")
        triggered.append(TriggeredRule(
            rule_id=rule.rule_id,
            rule_name=rule.name,
            action_type=action.type,
            effect=effect,
            rationale=action.rationale,
            target_category=action.target_category,
            confidence_delta=action.confidence_delta,
            priority=rule.priority,
        ))

    final_confidence = min(1.0, max(0.0, confidence))

    final = Classification(
        category=category,
        confidence=final_confidence,
        rationale="\n\n".join(rationale_parts),
        category_progression=baseline.category_progression,
        future_opportunities=baseline.future_opportunities,
    )

    snapshot = {}
    for name, value in attribute_values.items():
        snapshot[name] = value.to_dict() if hasattr(value, "to_dict") else unwrap_value(value)

    return DecisionMatrixEvaluation(
        matrix_version=matrix.version,
        triggered_rules=tuple(triggered),
        original_classification=baseline,
        final_classification=final,
        overridden=category != baseline.category,
        extracted_attributes=snapshot,
    )
