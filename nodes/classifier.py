"""
Baseline Classifier - Transformation Category Classification

Classifies a free-text business process description into one of the six
transformation categories and decides what the workflow should do next:

- clarify:        ask the user more questions before committing
- manual_review:  confidence too low to classify automatically
- auto_classify:  confident enough to move on to attribute extraction

The decision combines the model's confidence with a deterministic check
of how much discovery information the description (plus answers so far)
contains. A thin description is always clarified, however confident the
model claims to be.

Also provides a keyword-based classifier used by the offline mock
capability binding.
"""

import os
import re
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from decision_matrix import TransformationCategory
from errors import MalformedCapabilityOutput

logger = logging.getLogger(__name__)


# ============================================================================
# Confidence Routing Constants
# ============================================================================

# Below this the baseline classifier recommends manual review
MANUAL_REVIEW_THRESHOLD = 0.50

# At or above this (with a good description) clarification is skipped
AUTO_CLASSIFY_THRESHOLD = 0.98

# Once this many Q&A turns exist the description is considered explored
EXPLORED_TURN_COUNT = 3


class ConfidenceAction(Enum):
    """What the workflow should do with a baseline classification."""
    CLARIFY = "clarify"
    MANUAL_REVIEW = "manual_review"
    AUTO_CLASSIFY = "auto_classify"

    @classmethod
    def from_string(cls, value: str) -> "ConfidenceAction":
        normalized = (value or "").strip().lower().replace("-", "_").replace(" ", "_")
        for action in cls:
            if action.value == normalized:
                return action
        raise ValueError(f"Invalid confidence action: {value!r}")


class DescriptionQuality(Enum):
    GOOD = "good"
    MARGINAL = "marginal"
    POOR = "poor"


# ============================================================================
# Classification Results
# ============================================================================

@dataclass(frozen=True)
class Classification:
    """A transformation category with confidence and reasoning."""

    category: TransformationCategory
    confidence: float  # 0.0 to 1.0
    rationale: str = ""
    category_progression: Optional[str] = None
    future_opportunities: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "confidence": round(self.confidence, 4),
            "rationale": self.rationale,
            "category_progression": self.category_progression,
            "future_opportunities": self.future_opportunities,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Classification":
        return cls(
            category=TransformationCategory.from_string(data["category"]),
            confidence=float(data.get("confidence", 0.0)),
            rationale=data.get("rationale", ""),
            category_progression=data.get("category_progression"),
            future_opportunities=data.get("future_opportunities"),
        )


@dataclass(frozen=True)
class BaselineClassification:
    """The model's classification plus the recommended next action."""

    classification: Classification
    action: ConfidenceAction

    @property
    def category(self) -> TransformationCategory:
        return self.classification.category

    @property
    def confidence(self) -> float:
        return self.classification.confidence

    @property
    def rationale(self) -> str:
        return self.classification.rationale

    def to_dict(self) -> Dict[str, Any]:
        result = self.classification.to_dict()
        result["action"] = self.action.value
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BaselineClassification":
        return cls(
            classification=Classification.from_dict(data),
            action=ConfidenceAction.from_string(data.get("action", "clarify")),
        )


# ============================================================================
# Classifier Configuration
# ============================================================================

@dataclass
class ClassifierConfig:
    """Configuration for baseline classification."""

    # LLM settings
    llm_provider: str = "openai"  # "openai", "anthropic"
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.0
    llm_max_tokens: int = 1000

    # Confidence routing
    manual_review_threshold: float = MANUAL_REVIEW_THRESHOLD
    auto_classify_threshold: float = AUTO_CLASSIFY_THRESHOLD

    # Mock mode for offline runs and tests
    use_mock: bool = False

    @classmethod
    def from_env(cls) -> "ClassifierConfig":
        return cls(
            llm_provider=os.getenv("CLASSIFIER_LLM_PROVIDER", "openai"),
            llm_model=os.getenv("CLASSIFIER_LLM_MODEL", "gpt-4o-mini"),
            llm_temperature=float(os.getenv("CLASSIFIER_LLM_TEMPERATURE", "0.0")),
            manual_review_threshold=float(os.getenv("MANUAL_REVIEW_THRESHOLD", str(MANUAL_REVIEW_THRESHOLD))),
            auto_classify_threshold=float(os.getenv("AUTO_CLASSIFY_THRESHOLD", str(AUTO_CLASSIFY_THRESHOLD))),
            use_mock=os.getenv("USE_MOCK_CLASSIFIER", "false").lower() == "true",
        )


# ============================================================================
# Description Quality & Action Determination
# ============================================================================

CORE_INDICATORS: Dict[str, str] = {
    "frequency": r"\b(daily|weekly|monthly|hourly|quarterly|annually|every|once|twice|times? per)\b",
    "volume": r"\b(\d+|many|few|several|multiple|hundreds?|thousands?|transactions|users|people)\b",
    "current_state": r"\b(currently|now|today|manual|manually|paper|digital|automated|system|tool|software|spreadsheet|excel|legacy|email)\b",
    "complexity": r"\b(steps?|process|workflow|involves?|requires?|needs?|systems?|departments?|approvals?)\b",
    "pain_points": r"\b(problem|issue|slow|error|mistake|difficult|time-consuming|inefficient|frustrating|pain|bottleneck)\b",
}

STRATEGIC_INDICATORS: Dict[str, str] = {
    "success_criteria": r"\b(success|outcome|goal|achieve|benefit|metric|kpi|target)\b",
    "value": r"\b(save|cost|money|revenue|value|hours|roi|investment)\b",
    "risk": r"\b(risk|constraint|blocker|dependency|security|compliance|safety)\b",
    "sponsorship": r"\b(sponsor|owner|stakeholder|manager|legal|budget|approved|buy-in)\b",
}


def assess_description_quality(
    description: str,
    qa_history: Sequence[Mapping[str, str]] = (),
) -> DescriptionQuality:
    """
    Judge how much discovery information is available.

    Poor: under 30 words, fewer than 3 core indicators, or no strategic
    indicator. Good: over 100 words with at least 4 core and 3 strategic
    indicators. Everything else is marginal. After a few Q&A turns the
    description is treated as good.
    """
    if len(qa_history) >= EXPLORED_TURN_COUNT:
        return DescriptionQuality.GOOD

    word_count = len(description.split())
    answers = " ".join(turn.get("answer", "") for turn in qa_history)
    all_text = f"{description} {answers}".lower()

    core_score = sum(1 for pattern in CORE_INDICATORS.values() if re.search(pattern, all_text))
    strategic_score = sum(1 for pattern in STRATEGIC_INDICATORS.values() if re.search(pattern, all_text))

    if word_count < 30 or core_score < 3 or strategic_score < 1:
        return DescriptionQuality.POOR
    if word_count > 100 and core_score >= 4 and strategic_score >= 3:
        return DescriptionQuality.GOOD
    return DescriptionQuality.MARGINAL


def determine_action(
    confidence: float,
    description: str,
    qa_history: Sequence[Mapping[str, str]] = (),
    config: Optional[ClassifierConfig] = None,
) -> ConfidenceAction:
    """
    Decide what to do with a baseline classification.

    Args:
        confidence: Model confidence (0-1)
        description: The process description
        qa_history: Q&A turns so far
        config: Thresholds to use

    Returns:
        manual_review below the review threshold; clarify for poor or
        marginal descriptions; auto_classify at or above the auto
        threshold; clarify otherwise
    """
    config = config or ClassifierConfig()

    if confidence < config.manual_review_threshold:
        return ConfidenceAction.MANUAL_REVIEW

    quality = assess_description_quality(description, qa_history)
    if quality in (DescriptionQuality.POOR, DescriptionQuality.MARGINAL):
        return ConfidenceAction.CLARIFY

    if confidence >= config.auto_classify_threshold:
        return ConfidenceAction.AUTO_CLASSIFY
    return ConfidenceAction.CLARIFY


# ============================================================================
# LLM Prompt & Response Parsing
# ============================================================================

CLASSIFICATION_SYSTEM_PROMPT = """You are an expert in business process transformation. Your job is to classify a business process into the transformation category that fits it best.

**Transformation Categories:**
1. **Eliminate**: Remove the process entirely because it adds no value
2. **Simplify**: Streamline the process by removing unnecessary steps
3. **Digitise**: Convert manual or paper-based steps to digital
4. **RPA**: Automate repetitive, rule-based tasks with Robotic Process Automation
5. **AI Agent**: Deploy AI to handle tasks requiring judgment or pattern recognition
6. **Agentic AI**: Implement autonomous AI systems that can make decisions and take actions

**Classification Guidelines:**
- Evaluate categories in the order listed above (Eliminate -> Simplify -> Digitise -> RPA -> AI Agent -> Agentic AI)
- Explain why the process fits the selected category and not the preceding ones
- Identify potential for progression to higher categories in the future
- Lower your confidence when key facts (frequency, volume, current state, risk, value) are missing

Respond in JSON format:
{
    "category": "<one of the six categories>",
    "confidence": <0.0-1.0>,
    "rationale": "<why this category was chosen>",
    "category_progression": "<why this category and not the preceding ones>",
    "future_opportunities": "<potential for progression to higher categories>"
}"""


def format_qa_history(qa_history: Sequence[Mapping[str, str]]) -> str:
    lines = []
    for index, turn in enumerate(qa_history, start=1):
        lines.append(f"Q{index}: {turn.get('question', '')}")
        lines.append(f"A{index}: {turn.get('answer', '')}")
    return "\n".join(lines)


def build_classification_prompt(
    description: str,
    qa_history: Sequence[Mapping[str, str]] = (),
    context_summary: Optional[str] = None,
) -> str:
    """Build the user prompt for a classification call."""
    prompt = f"PROCESS DESCRIPTION:\n{description}\n"
    if context_summary:
        prompt += f"\nSUMMARY OF EARLIER CONVERSATION:\n{context_summary}\n"
    if qa_history:
        heading = "RECENT CONVERSATION" if context_summary else "CONVERSATION"
        prompt += f"\n{heading}:\n{format_qa_history(qa_history)}\n"
    prompt += "\nClassify this process."
    return prompt


class ClassificationResponse(BaseModel):
    """Shape a classification response must have."""

    category: str
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str = ""
    category_progression: Optional[str] = None
    future_opportunities: Optional[str] = None

    @field_validator("category")
    @classmethod
    def check_category(cls, value: str) -> str:
        return TransformationCategory.from_string(value).value


def classification_from_payload(payload: Any) -> Classification:
    """
    Validate a parsed model response and convert it to a Classification.

    Accepts both snake_case and camelCase field names.

    Raises:
        MalformedCapabilityOutput: if the payload is not a valid classification
    """
    if not isinstance(payload, Mapping):
        raise MalformedCapabilityOutput("classify", "Response is not a JSON object", payload)

    data = dict(payload)
    data.setdefault("category_progression", data.pop("categoryProgression", None))
    data.setdefault("future_opportunities", data.pop("futureOpportunities", None))

    try:
        response = ClassificationResponse(**data)
    except ValidationError as e:
        raise MalformedCapabilityOutput("classify", f"Invalid classification: {e}", payload) from e

    return Classification(
        category=TransformationCategory.from_string(response.category),
        confidence=response.confidence,
        rationale=response.rationale,
        category_progression=response.category_progression,
        future_opportunities=response.future_opportunities,
    )


# ============================================================================
# Keyword-Based Classification
# ============================================================================

# Keyword patterns for each category with weights
KEYWORD_PATTERNS: Dict[TransformationCategory, List[Tuple[str, float]]] = {
    TransformationCategory.ELIMINATE: [
        (r"no\s+one\s+(reads|uses|looks\s+at)", 0.95),
        (r"(nobody|no\s+one)\s+(needs|cares)", 0.90),
        (r"redundant|obsolete|duplicate\s+report", 0.80),
        (r"legacy\s+requirement", 0.70),
    ],
    TransformationCategory.SIMPLIFY: [
        (r"too\s+many\s+(steps|approvals|handoffs)", 0.90),
        (r"multiple\s+approvals?", 0.75),
        (r"bottleneck|back\s+and\s+forth|rework", 0.70),
        (r"convoluted|complicated", 0.65),
    ],
    TransformationCategory.DIGITISE: [
        (r"paper|printed|hand[\s-]*written|fax", 0.90),
        (r"manual(ly)?\s+(approve|sign|fill|enter)", 0.75),
        (r"via\s+email|by\s+email|over\s+email", 0.65),
        (r"physical\s+(forms?|copies|signatures?)", 0.85),
    ],
    TransformationCategory.RPA: [
        (r"copy(ing)?\s+(and|&)\s+past(e|ing)", 0.95),
        (r"data\s+entry", 0.85),
        (r"rule[\s-]*based|repetitive", 0.85),
        (r"(same|identical)\s+steps", 0.75),
        (r"spreadsheet|excel", 0.55),
    ],
    TransformationCategory.AI_AGENT: [
        (r"judg(e)?ment|interpret|read\s+and\s+understand", 0.85),
        (r"unstructured|free[\s-]*text|emails?\s+from\s+customers", 0.80),
        (r"classif(y|ication)|triage|summari[sz]e", 0.75),
        (r"natural\s+language", 0.80),
    ],
    TransformationCategory.AGENTIC_AI: [
        (r"end[\s-]*to[\s-]*end\s+autonom", 0.95),
        (r"autonomous(ly)?", 0.85),
        (r"orchestrat(e|ion)\s+across", 0.75),
        (r"make\s+decisions\s+and\s+take\s+actions", 0.90),
    ],
}


def classify_by_keywords(
    description: str,
    qa_history: Sequence[Mapping[str, str]] = (),
) -> Classification:
    """
    Classify using weighted keyword patterns.

    The best score picks the category; confidence starts from that score
    and grows with each answered turn, mimicking a model that gets more
    certain as it learns more. Without any match the process defaults to
    Digitise at low-moderate confidence.
    """
    text = " ".join([description] + [turn.get("answer", "") for turn in qa_history]).lower()

    scores: Dict[TransformationCategory, float] = {}
    for category, patterns in KEYWORD_PATTERNS.items():
        best = 0.0
        for pattern, weight in patterns:
            if re.search(pattern, text):
                best = max(best, weight)
        if best:
            scores[category] = best

    if scores:
        # Ties resolve to the earlier category in the progression
        order = list(TransformationCategory)
        category = max(scores, key=lambda c: (scores[c], -order.index(c)))
        base = 0.45 + 0.3 * scores[category]
        matched = ", ".join(f"{c.value} ({s:.2f})" for c, s in sorted(scores.items(), key=lambda i: -i[1]))
        rationale = f"Matched keyword patterns: {matched}"
    else:
        category = TransformationCategory.DIGITISE
        base = 0.55
        rationale = "No strong keyword signal; defaulting to Digitise"

    confidence = min(0.99, base + 0.06 * len(qa_history))

    return Classification(
        category=category,
        confidence=round(confidence, 4),
        rationale=rationale,
        category_progression=f"{category.value} fits better than the earlier categories for this description",
        future_opportunities=_next_category_hint(category),
    )


def _next_category_hint(category: TransformationCategory) -> Optional[str]:
    order = list(TransformationCategory)
    index = order.index(category)
    if index + 1 < len(order):
        return f"Could progress to {order[index + 1].value} once {category.value} is in place"
    return None
