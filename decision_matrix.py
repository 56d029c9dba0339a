"""
Decision Matrix - versioned attributes and prioritized rules

A decision matrix refines an AI-generated classification with rules an
administrator can audit. It holds:

- Attribute definitions (name, type, weight, allowed values) that the
  attribute extractor is asked to fill in
- Rules: AND-ed conditions over those attributes plus one action
  (override the category, or adjust the confidence)

Published matrices are immutable. Every edit goes through
validate_matrix() and produces a new version, so historical evaluations
keep pointing at the exact rules that produced them.

Also provides the typed attribute value model (numeric / categorical /
boolean) and a built-in default matrix.
"""

import re
import uuid
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from errors import InvalidMatrixDefinition

logger = logging.getLogger(__name__)


# ============================================================================
# Enums
# ============================================================================

class TransformationCategory(Enum):
    """
    The six transformation categories, in their evaluation order.

    The order is a progression from removing work to full autonomy:
    Eliminate -> Simplify -> Digitise -> RPA -> AI Agent -> Agentic AI.
    """
    ELIMINATE = "Eliminate"
    SIMPLIFY = "Simplify"
    DIGITISE = "Digitise"
    RPA = "RPA"
    AI_AGENT = "AI Agent"
    AGENTIC_AI = "Agentic AI"

    @classmethod
    def from_string(cls, value: Any) -> "TransformationCategory":
        """
        Convert a string to a category, tolerant of case and spacing.

        Raises:
            ValueError: if the value names none of the six categories
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, (list, tuple)) and value:
            # Models occasionally wrap the category in a list
            value = value[0]
        if not isinstance(value, str):
            raise ValueError(f"Invalid transformation category: {value!r}")

        key = re.sub(r"[\s_\-]+", "", value).lower()
        aliases = {
            "eliminate": cls.ELIMINATE,
            "simplify": cls.SIMPLIFY,
            "digitise": cls.DIGITISE,
            "digitize": cls.DIGITISE,
            "rpa": cls.RPA,
            "roboticprocessautomation": cls.RPA,
            "aiagent": cls.AI_AGENT,
            "agenticai": cls.AGENTIC_AI,
        }
        if key in aliases:
            return aliases[key]
        raise ValueError(f"Invalid transformation category: {value!r}")

    @classmethod
    def values(cls) -> List[str]:
        return [c.value for c in cls]


class AttributeType(Enum):
    NUMERIC = "numeric"
    CATEGORICAL = "categorical"
    BOOLEAN = "boolean"


class ConditionOperator(Enum):
    """Operators a rule condition may use."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    CONTAINS = "contains"
    IN = "in"
    NOT_IN = "not_in"

    @classmethod
    def from_string(cls, value: str) -> "ConditionOperator":
        """Accept both named operators and the symbolic form (==, >=, ...)."""
        symbols = {
            "==": cls.EQUALS,
            "=": cls.EQUALS,
            "!=": cls.NOT_EQUALS,
            ">": cls.GREATER_THAN,
            "<": cls.LESS_THAN,
            ">=": cls.GREATER_OR_EQUAL,
            "<=": cls.LESS_OR_EQUAL,
        }
        value = (value or "").strip()
        if value in symbols:
            return symbols[value]
        return cls(value.lower())

    @property
    def is_numeric(self) -> bool:
        return self in (
            ConditionOperator.GREATER_THAN,
            ConditionOperator.LESS_THAN,
            ConditionOperator.GREATER_OR_EQUAL,
            ConditionOperator.LESS_OR_EQUAL,
        )

    @property
    def expects_list(self) -> bool:
        return self in (ConditionOperator.IN, ConditionOperator.NOT_IN)


class ActionType(Enum):
    OVERRIDE = "override"
    ADJUST_CONFIDENCE = "adjust_confidence"


# ============================================================================
# Typed Attribute Values
# ============================================================================

# Values a model may use to say "I don't know"; these are omitted, not errors
UNKNOWN_MARKERS = {"", "unknown", "n/a", "na", "none", "null", "not specified", "unclear"}

TRUE_STRINGS = {"true", "yes", "y", "1"}
FALSE_STRINGS = {"false", "no", "n", "0"}


@dataclass(frozen=True)
class NumericValue:
    value: float
    type: AttributeType = field(default=AttributeType.NUMERIC, init=False)

    @property
    def raw(self) -> float:
        return self.value


@dataclass(frozen=True)
class CategoricalValue:
    value: str
    type: AttributeType = field(default=AttributeType.CATEGORICAL, init=False)

    @property
    def raw(self) -> str:
        return self.value


@dataclass(frozen=True)
class BooleanValue:
    value: bool
    type: AttributeType = field(default=AttributeType.BOOLEAN, init=False)

    @property
    def raw(self) -> bool:
        return self.value


AttributeValue = Union[NumericValue, CategoricalValue, BooleanValue]


@dataclass(frozen=True)
class ExtractedAttributeValue:
    """
    One attribute value pulled out of the conversation.

    `confidence` is extraction certainty, unrelated to classification
    confidence.
    """
    value: AttributeValue
    confidence: float = 1.0
    source_span: Optional[str] = None
    explanation: Optional[str] = None

    @property
    def raw(self) -> Any:
        return self.value.raw

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value.raw,
            "type": self.value.type.value,
            "confidence": round(self.confidence, 4),
            "source_span": self.source_span,
            "explanation": self.explanation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractedAttributeValue":
        attr_type = AttributeType(data.get("type", "categorical"))
        raw = data.get("value")
        value: AttributeValue
        if attr_type == AttributeType.NUMERIC:
            value = NumericValue(float(raw))
        elif attr_type == AttributeType.BOOLEAN:
            value = BooleanValue(bool(raw))
        else:
            value = CategoricalValue(str(raw))
        return cls(
            value=value,
            confidence=float(data.get("confidence", 1.0)),
            source_span=data.get("source_span"),
            explanation=data.get("explanation"),
        )


def is_unknown_value(raw: Any) -> bool:
    """True for None and for the textual 'unknown' markers models emit."""
    if raw is None:
        return True
    if isinstance(raw, str):
        return raw.strip().lower() in UNKNOWN_MARKERS
    return False


def parse_number(raw: Any) -> Optional[float]:
    """Parse a number, returning None rather than raising. Booleans are not numbers."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        cleaned = raw.strip().replace(",", "")
        if not cleaned:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def parse_boolean(raw: Any) -> Optional[bool]:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
    if isinstance(raw, (int, float)) and raw in (0, 1):
        return bool(raw)
    return None


# ============================================================================
# Matrix Building Blocks
# ============================================================================

@dataclass(frozen=True)
class Attribute:
    """An attribute the decision matrix reasons about."""
    name: str
    type: AttributeType
    weight: float = 0.5
    possible_values: Tuple[str, ...] = ()
    description: str = ""

    def coerce(self, raw: Any) -> Optional[AttributeValue]:
        """
        Convert raw model output into this attribute's typed value.

        Returns:
            The typed value, or None when the model reported the value
            as unknown

        Raises:
            ValueError: if the value does not fit the attribute type or
                its allowed values
        """
        if isinstance(raw, (NumericValue, CategoricalValue, BooleanValue)):
            raw = raw.raw
        if is_unknown_value(raw):
            return None

        if self.type == AttributeType.NUMERIC:
            number = parse_number(raw)
            if number is None:
                raise ValueError(f"'{self.name}' expects a number, got {raw!r}")
            return NumericValue(number)

        if self.type == AttributeType.BOOLEAN:
            flag = parse_boolean(raw)
            if flag is None:
                raise ValueError(f"'{self.name}' expects true/false, got {raw!r}")
            return BooleanValue(flag)

        text = str(raw).strip()
        if not self.possible_values:
            return CategoricalValue(text)
        for allowed in self.possible_values:
            if allowed.lower() == text.lower():
                return CategoricalValue(allowed)
        raise ValueError(
            f"'{self.name}' value {text!r} is not one of {list(self.possible_values)}"
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "type": self.type.value,
            "weight": self.weight,
            "description": self.description,
        }
        if self.possible_values:
            result["possible_values"] = list(self.possible_values)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attribute":
        possible = data.get("possible_values", data.get("possibleValues")) or ()
        return cls(
            name=data["name"],
            type=AttributeType(data.get("type", "categorical")),
            weight=float(data.get("weight", 0.5)),
            possible_values=tuple(str(v) for v in possible),
            description=data.get("description", ""),
        )


def _freeze(value: Any) -> Any:
    """Lists become tuples so conditions stay hashable and immutable."""
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class Condition:
    """attribute <operator> value; all conditions of a rule are AND-ed."""
    attribute: str
    operator: ConditionOperator
    value: Any = None

    def __post_init__(self):
        object.__setattr__(self, "value", _freeze(self.value))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attribute": self.attribute,
            "operator": self.operator.value,
            "value": _thaw(self.value),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        return cls(
            attribute=data["attribute"],
            operator=ConditionOperator.from_string(data.get("operator", "equals")),
            value=data.get("value"),
        )


@dataclass(frozen=True)
class RuleAction:
    type: ActionType
    rationale: str = ""
    target_category: Optional[TransformationCategory] = None
    confidence_delta: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": self.type.value, "rationale": self.rationale}
        if self.target_category is not None:
            result["target_category"] = self.target_category.value
        if self.confidence_delta is not None:
            result["confidence_delta"] = self.confidence_delta
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleAction":
        target = data.get("target_category", data.get("targetCategory"))
        delta = data.get("confidence_delta", data.get("confidenceAdjustment"))
        return cls(
            type=ActionType(data["type"]),
            rationale=data.get("rationale", ""),
            target_category=TransformationCategory.from_string(target) if target else None,
            confidence_delta=float(delta) if delta is not None else None,
        )


@dataclass(frozen=True)
class Rule:
    rule_id: str
    name: str
    conditions: Tuple[Condition, ...]
    action: RuleAction
    priority: int = 50
    active: bool = True
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "name": self.name,
            "description": self.description,
            "priority": self.priority,
            "active": self.active,
            "conditions": [c.to_dict() for c in self.conditions],
            "action": self.action.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rule":
        return cls(
            rule_id=data.get("rule_id", data.get("ruleId")) or str(uuid.uuid4()),
            name=data.get("name", ""),
            description=data.get("description", ""),
            priority=int(data.get("priority", 50)),
            active=data.get("active", True) is not False,
            conditions=tuple(Condition.from_dict(c) for c in data.get("conditions", [])),
            action=RuleAction.from_dict(data["action"]),
        )


@dataclass(frozen=True)
class DecisionMatrix:
    """
    A versioned, immutable set of attributes and rules.

    Drafts carry version "draft"; MatrixStore.publish() assigns the real
    version after validation.
    """
    version: str
    attributes: Tuple[Attribute, ...]
    rules: Tuple[Rule, ...]
    active: bool = True
    created_at: str = ""
    created_by: str = "admin"  # "ai", "admin", "system"
    description: str = ""

    def get_attribute(self, name: str) -> Optional[Attribute]:
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        return None

    @property
    def attribute_names(self) -> List[str]:
        return [a.name for a in self.attributes]

    def with_version(self, version: str, created_by: str) -> "DecisionMatrix":
        return replace(
            self,
            version=version,
            created_by=created_by,
            created_at=datetime.now(timezone.utc).isoformat(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "description": self.description,
            "active": self.active,
            "created_at": self.created_at,
            "created_by": self.created_by,
            "attributes": [a.to_dict() for a in self.attributes],
            "rules": [r.to_dict() for r in self.rules],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DecisionMatrix":
        return cls(
            version=str(data.get("version", "draft")),
            description=data.get("description", ""),
            active=data.get("active", True) is not False,
            created_at=data.get("created_at", data.get("createdAt", "")),
            created_by=data.get("created_by", data.get("createdBy", "admin")),
            attributes=tuple(Attribute.from_dict(a) for a in data.get("attributes", [])),
            rules=tuple(Rule.from_dict(r) for r in data.get("rules", [])),
        )


# ============================================================================
# Validation & Versioning
# ============================================================================

def validate_matrix(matrix: DecisionMatrix) -> None:
    """
    Check a matrix before it is published.

    Collects every problem rather than stopping at the first one.

    Raises:
        InvalidMatrixDefinition: if any problem was found
    """
    problems: List[str] = []

    seen_attributes = set()
    for attribute in matrix.attributes:
        if not attribute.name:
            problems.append("Attribute with empty name")
        if attribute.name in seen_attributes:
            problems.append(f"Duplicate attribute '{attribute.name}'")
        seen_attributes.add(attribute.name)
        if not 0.0 <= attribute.weight <= 1.0:
            problems.append(f"Attribute '{attribute.name}' weight {attribute.weight} outside [0, 1]")
        if attribute.type == AttributeType.CATEGORICAL and not attribute.possible_values:
            problems.append(f"Categorical attribute '{attribute.name}' has no possible values")

    seen_rules = set()
    for rule in matrix.rules:
        label = f"Rule '{rule.name or rule.rule_id}'"
        if rule.rule_id in seen_rules:
            problems.append(f"Duplicate rule id '{rule.rule_id}'")
        seen_rules.add(rule.rule_id)

        if not rule.conditions:
            problems.append(f"{label} has no conditions")

        for condition in rule.conditions:
            attribute = matrix.get_attribute(condition.attribute)
            if attribute is None:
                problems.append(f"{label} references unknown attribute '{condition.attribute}'")
                continue
            if condition.operator.expects_list and not isinstance(condition.value, tuple):
                problems.append(f"{label}: operator '{condition.operator.value}' needs a list value")
            if condition.operator.is_numeric and parse_number(condition.value) is None:
                problems.append(f"{label}: operator '{condition.operator.value}' needs a numeric value")
            if attribute.type == AttributeType.CATEGORICAL and condition.operator != ConditionOperator.CONTAINS:
                values = condition.value if isinstance(condition.value, tuple) else (condition.value,)
                allowed = {v.lower() for v in attribute.possible_values}
                invalid = [v for v in values if str(v).lower() not in allowed]
                if invalid:
                    problems.append(
                        f"{label} uses values {invalid} not allowed for '{attribute.name}'"
                    )

        action = rule.action
        if action.type == ActionType.OVERRIDE and action.target_category is None:
            problems.append(f"{label}: override action needs a target category")
        if action.type == ActionType.ADJUST_CONFIDENCE and action.confidence_delta is None:
            problems.append(f"{label}: adjust_confidence action needs a confidence delta")

    if problems:
        raise InvalidMatrixDefinition(problems)


def version_key(version: str) -> Tuple[int, ...]:
    """Sort key for dotted versions ("1.10" sorts after "1.9")."""
    parts = []
    for part in str(version).split("."):
        parts.append(int(part) if part.isdigit() else 0)
    return tuple(parts)


def next_version(latest: Optional[str]) -> str:
    """Increment the last component of the latest version; start at 1.0."""
    if not latest:
        return "1.0"
    parts = list(version_key(latest))
    parts[-1] += 1
    return ".".join(str(p) for p in parts)


# ============================================================================
# Generated Matrix Sanitizing
# ============================================================================

def sanitize_generated_matrix(data: Dict[str, Any]) -> DecisionMatrix:
    """
    Turn a model-generated matrix into a draft that can pass validation.

    Models invent attributes and values. Rather than rejecting the whole
    matrix, conditions with unknown attributes or disallowed values are
    dropped, rules left without conditions are dropped, invalid target
    categories become a zero adjustment, and priorities are clamped to
    0-100.
    """
    attributes = []
    for raw_attr in data.get("attributes", []):
        try:
            attribute = Attribute.from_dict(raw_attr)
        except (KeyError, ValueError) as e:
            logger.warning(f"Skipping generated attribute {raw_attr!r}: {e}")
            continue
        attributes.append(replace(attribute, weight=min(max(attribute.weight, 0.0), 1.0)))
    by_name = {a.name: a for a in attributes}

    rules = []
    for raw_rule in data.get("rules", []):
        name = raw_rule.get("name", "unnamed")
        conditions = []
        for raw_cond in raw_rule.get("conditions", []):
            attribute = by_name.get(raw_cond.get("attribute"))
            if attribute is None:
                logger.warning(f"Rule '{name}' references unknown attribute {raw_cond.get('attribute')!r}, dropping condition")
                continue
            try:
                condition = Condition.from_dict(raw_cond)
            except ValueError as e:
                logger.warning(f"Rule '{name}' has an invalid condition: {e}")
                continue
            if attribute.type == AttributeType.CATEGORICAL:
                values = condition.value if isinstance(condition.value, tuple) else (condition.value,)
                allowed = {v.lower() for v in attribute.possible_values}
                if any(str(v).lower() not in allowed for v in values):
                    logger.warning(f"Rule '{name}' uses disallowed values for '{attribute.name}', dropping condition")
                    continue
            conditions.append(condition)

        if not conditions:
            logger.warning(f"Rule '{name}' has no valid conditions, skipping rule")
            continue

        raw_action = dict(raw_rule.get("action") or {})
        try:
            action = RuleAction.from_dict(raw_action)
        except (KeyError, ValueError):
            logger.warning(f"Rule '{name}' has an invalid action, defaulting to a zero adjustment")
            action = RuleAction(
                type=ActionType.ADJUST_CONFIDENCE,
                confidence_delta=0.0,
                rationale=raw_action.get("rationale", ""),
            )
        if action.type == ActionType.ADJUST_CONFIDENCE and action.confidence_delta is None:
            action = replace(action, confidence_delta=0.0)

        rules.append(Rule(
            rule_id=raw_rule.get("rule_id", raw_rule.get("ruleId")) or str(uuid.uuid4()),
            name=name,
            description=raw_rule.get("description", ""),
            priority=max(0, min(100, int(raw_rule.get("priority") or 50))),
            active=raw_rule.get("active", True) is not False,
            conditions=tuple(conditions),
            action=action,
        ))

    logger.info(f"Sanitized generated matrix: {len(attributes)} attributes, {len(rules)} rules")
    return DecisionMatrix(
        version="draft",
        description=data.get("description") or "AI-generated baseline decision matrix",
        attributes=tuple(attributes),
        rules=tuple(rules),
        created_by="ai",
    )


# ============================================================================
# Default Matrix
# ============================================================================

def _categorical(name: str, values: List[str], weight: float, description: str) -> Attribute:
    return Attribute(
        name=name,
        type=AttributeType.CATEGORICAL,
        weight=weight,
        possible_values=tuple(values),
        description=description,
    )


DEFAULT_ATTRIBUTES: Tuple[Attribute, ...] = (
    _categorical("frequency", ["hourly", "daily", "weekly", "monthly", "quarterly", "annually", "ad-hoc"],
                 0.8, "How often the process runs"),
    _categorical("volume", ["high", "medium", "low"],
                 0.8, "Number of transactions or cases handled"),
    _categorical("business_value", ["critical", "high", "medium", "low"],
                 0.9, "Impact on revenue, customers or compliance"),
    _categorical("complexity", ["very_high", "high", "medium", "low", "very_low"],
                 0.7, "Steps, systems and decision points involved"),
    _categorical("risk", ["critical", "high", "medium", "low"],
                 0.8, "Impact if the process fails or is changed"),
    _categorical("user_count", ["1-5", "6-20", "21-50", "51-100", "100+"],
                 0.4, "People involved in or affected by the process"),
    _categorical("data_sensitivity", ["public", "internal", "confidential", "restricted"],
                 0.6, "Sensitivity of the data handled"),
    _categorical("current_state", ["paper", "manual", "digital", "automated"],
                 0.7, "How the process is run today"),
    Attribute("judgment_required", AttributeType.BOOLEAN, 0.7, (),
              "Whether steps need human judgment or interpretation"),
    Attribute("manual_hours_per_week", AttributeType.NUMERIC, 0.5, (),
              "Person-hours spent on the process each week"),
)


def _rule(rule_id: str, name: str, priority: int, conditions: List[Condition], action: RuleAction) -> Rule:
    return Rule(rule_id=rule_id, name=name, priority=priority,
                conditions=tuple(conditions), action=action, description=action.rationale)


_EQ = ConditionOperator.EQUALS
_IN = ConditionOperator.IN

DEFAULT_RULES: Tuple[Rule, ...] = (
    _rule("restricted-data-caution", "Sensitive data lowers confidence", 100,
          [Condition("data_sensitivity", _IN, ["confidential", "restricted"])],
          RuleAction(ActionType.ADJUST_CONFIDENCE, "Sensitive data needs extra review before automation",
                     confidence_delta=-0.15)),
    _rule("critical-risk-caution", "Critical risk lowers confidence", 95,
          [Condition("risk", _EQ, "critical")],
          RuleAction(ActionType.ADJUST_CONFIDENCE, "Critical-risk processes need careful validation",
                     confidence_delta=-0.1)),
    _rule("low-value-rare-eliminate", "Rare low-value work can be eliminated", 90,
          [Condition("business_value", _EQ, "low"), Condition("frequency", _IN, ["annually", "ad-hoc"])],
          RuleAction(ActionType.OVERRIDE, "Rarely run and low value: remove the process",
                     target_category=TransformationCategory.ELIMINATE)),
    _rule("high-volume-low-risk-rpa", "High volume + low risk favours RPA", 80,
          [Condition("volume", _EQ, "high"), Condition("risk", _EQ, "low")],
          RuleAction(ActionType.OVERRIDE, "High-volume, low-risk, rule-based work suits RPA",
                     target_category=TransformationCategory.RPA)),
    _rule("judgment-complex-ai-agent", "Judgment-heavy complex work favours AI Agent", 70,
          [Condition("judgment_required", _EQ, True), Condition("complexity", _IN, ["high", "very_high"])],
          RuleAction(ActionType.OVERRIDE, "Complex steps needing judgment suit an AI agent with oversight",
                     target_category=TransformationCategory.AI_AGENT)),
    _rule("paper-based-digitise", "Paper processes must be digitised first", 60,
          [Condition("current_state", _EQ, "paper")],
          RuleAction(ActionType.OVERRIDE, "Paper-based work must be digitised before it can be automated",
                     target_category=TransformationCategory.DIGITISE)),
    _rule("very-complex-many-users-simplify", "Sprawling processes need simplifying", 40,
          [Condition("complexity", _EQ, "very_high"), Condition("user_count", _EQ, "100+")],
          RuleAction(ActionType.ADJUST_CONFIDENCE, "Very complex, widely used processes should be simplified first",
                     confidence_delta=-0.05)),
    _rule("heavy-manual-effort", "Heavy manual effort strengthens the case", 20,
          [Condition("manual_hours_per_week", ConditionOperator.GREATER_OR_EQUAL, 40)],
          RuleAction(ActionType.ADJUST_CONFIDENCE, "A full-time equivalent of manual effort supports change",
                     confidence_delta=0.05)),
)

DEFAULT_DECISION_MATRIX = DecisionMatrix(
    version="draft",
    description="Built-in baseline decision matrix for transformation category classification",
    attributes=DEFAULT_ATTRIBUTES,
    rules=DEFAULT_RULES,
    created_by="system",
)
