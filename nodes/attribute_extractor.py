"""
Attribute Extractor - typed decision matrix attributes from a conversation

Asks the extraction capability for values of exactly the attributes the
active decision matrix defines, then validates every value against its
attribute definition:

- unknown attribute names, categorical values outside the allowed set and
  unparseable numbers/booleans are problems
- "unknown" / null values are omitted, not problems
- both nested ({"value": ..., "confidence": ...}) and flat ("attr": value)
  shapes are accepted

When the output has problems the capability is asked once more with a
corrective instruction. If the retry is still imperfect, everything that
did parse is returned (strict mode raises instead).
"""

import re
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from decision_matrix import Attribute, AttributeType, ExtractedAttributeValue
from errors import CapabilityUnavailable, ExtractionError, MalformedCapabilityOutput
from nodes.classifier import format_qa_history

logger = logging.getLogger(__name__)

# Key spellings models commonly use for the default attributes
ATTRIBUTE_ALIASES: Dict[str, str] = {
    "businessvalue": "business_value",
    "value": "business_value",
    "usercount": "user_count",
    "users": "user_count",
    "datasensitivity": "data_sensitivity",
    "sensitivity": "data_sensitivity",
    "currentstate": "current_state",
    "judgmentrequired": "judgment_required",
    "judgementrequired": "judgment_required",
    "manualhoursperweek": "manual_hours_per_week",
    "transactionvolume": "volume",
}

# Certainty assumed when the model omits it
DEFAULT_EXTRACTION_CONFIDENCE = 0.7


# ============================================================================
# Prompt
# ============================================================================

ATTRIBUTE_EXTRACTION_SYSTEM_PROMPT = """You are a business process analyst. Extract the requested attributes of the process from the description and conversation.

Rules:
- Only use the attribute names listed
- Categorical attributes must use one of the listed values exactly
- Numeric attributes must be plain numbers
- Boolean attributes must be true or false
- If the conversation does not tell you, use "unknown"

Respond in JSON format:
{
    "<attribute name>": {
        "value": <value or "unknown">,
        "confidence": <0.0-1.0>,
        "explanation": "<brief explanation>",
        "source_span": "<quote from the conversation, if any>"
    }
}"""


def describe_attributes(attributes: Sequence[Attribute]) -> str:
    lines = []
    for attribute in attributes:
        line = f"- {attribute.name} ({attribute.type.value})"
        if attribute.possible_values:
            line += f": one of {', '.join(attribute.possible_values)}"
        if attribute.description:
            line += f". {attribute.description}"
        lines.append(line)
    return "\n".join(lines)


def build_extraction_prompt(
    description: str,
    qa_history: Sequence[Mapping[str, str]],
    attributes: Sequence[Attribute],
    correction: Optional[str] = None,
) -> str:
    prompt = f"ATTRIBUTES TO EXTRACT:\n{describe_attributes(attributes)}\n\n"
    prompt += f"PROCESS DESCRIPTION:\n{description}\n"
    if qa_history:
        prompt += f"\nCONVERSATION:\n{format_qa_history(qa_history)}\n"
    if correction:
        prompt += f"\nYOUR PREVIOUS ANSWER HAD PROBLEMS. FIX THEM:\n{correction}\n"
    return prompt


def build_correction(problems: Sequence[str]) -> str:
    return "\n".join(f"- {problem}" for problem in problems)


# ============================================================================
# Validation
# ============================================================================

def _canonical_key(key: str, known: Mapping[str, Attribute]) -> Optional[str]:
    if key in known:
        return key
    squashed = re.sub(r"[\s_\-]+", "", key).lower()
    for name in known:
        if re.sub(r"[\s_\-]+", "", name).lower() == squashed:
            return name
    alias = ATTRIBUTE_ALIASES.get(squashed)
    if alias in known:
        return alias
    return None


def _clamp_confidence(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return DEFAULT_EXTRACTION_CONFIDENCE
    return min(1.0, max(0.0, value))


def validate_extraction_output(
    output: Any,
    attributes: Sequence[Attribute],
) -> Tuple[Dict[str, ExtractedAttributeValue], List[str]]:
    """
    Validate raw extraction output against the attribute definitions.

    Returns:
        (parsed values, problems); problems is empty for a clean output
    """
    if not isinstance(output, Mapping):
        return {}, [f"Output must be a JSON object, got {type(output).__name__}"]

    # Some models wrap the result in {"attributes": {...}}
    if set(output.keys()) == {"attributes"} and isinstance(output["attributes"], Mapping):
        output = output["attributes"]

    known = {a.name: a for a in attributes}
    values: Dict[str, ExtractedAttributeValue] = {}
    problems: List[str] = []

    for key, entry in output.items():
        name = _canonical_key(str(key), known)
        if name is None:
            problems.append(f"Unknown attribute '{key}'; use only: {', '.join(known)}")
            continue

        if isinstance(entry, Mapping):
            raw = entry.get("value")
            confidence = _clamp_confidence(entry.get("confidence", DEFAULT_EXTRACTION_CONFIDENCE))
            explanation = entry.get("explanation")
            source_span = entry.get("source_span", entry.get("sourceSpan"))
        else:
            raw = entry
            confidence = DEFAULT_EXTRACTION_CONFIDENCE
            explanation = None
            source_span = None

        try:
            typed = known[name].coerce(raw)
        except ValueError as e:
            problems.append(str(e))
            continue

        if typed is None:
            continue

        values[name] = ExtractedAttributeValue(
            value=typed,
            confidence=confidence,
            source_span=source_span,
            explanation=explanation,
        )

    return values, problems


# ============================================================================
# Extraction
# ============================================================================

def extract_attributes(
    description: str,
    qa_history: Sequence[Mapping[str, str]],
    attributes: Sequence[Attribute],
    capability: Any,
    model_config: Optional[Mapping[str, Any]] = None,
    strict: bool = False,
) -> Dict[str, ExtractedAttributeValue]:
    """
    Extract typed attribute values for the given attribute definitions.

    Args:
        description: Process description
        qa_history: Clarification Q&A turns
        attributes: Attribute definitions from the active decision matrix
        capability: Object with an extract_attributes(...) method
        model_config: Model settings passed through to the capability
        strict: Raise instead of returning a partial result when the
            retried output is still malformed

    Returns:
        Attribute name -> ExtractedAttributeValue (possibly partial)

    Raises:
        ExtractionError: capability unreachable, or strict mode and the
            output stayed malformed
    """
    if not attributes:
        return {}

    first_values, problems = _attempt(description, qa_history, attributes, capability, model_config, None)
    if not problems:
        logger.info(f"Extracted {len(first_values)}/{len(attributes)} attributes")
        return first_values

    logger.warning(f"Extraction output had {len(problems)} problem(s), retrying with correction")
    second_values, second_problems = _attempt(
        description, qa_history, attributes, capability, model_config, build_correction(problems)
    )

    if second_problems and strict:
        raise ExtractionError(
            "extract_attributes",
            f"Output still malformed after correction: {'; '.join(second_problems[:3])}",
            attempts=2,
        )

    merged = dict(first_values)
    merged.update(second_values)

    if second_problems:
        logger.warning(
            f"Extraction still had {len(second_problems)} problem(s) after correction; "
            f"returning {len(merged)} parsed attribute(s)"
        )
    else:
        logger.info(f"Extracted {len(merged)}/{len(attributes)} attributes after correction")
    return merged


def _attempt(
    description: str,
    qa_history: Sequence[Mapping[str, str]],
    attributes: Sequence[Attribute],
    capability: Any,
    model_config: Optional[Mapping[str, Any]],
    correction: Optional[str],
) -> Tuple[Dict[str, ExtractedAttributeValue], List[str]]:
    try:
        output = capability.extract_attributes(
            description, list(qa_history), list(attributes), model_config, correction=correction
        )
    except MalformedCapabilityOutput as e:
        return {}, [e.message]
    except ExtractionError:
        raise
    except CapabilityUnavailable as e:
        raise ExtractionError(e.capability, e.message, attempts=e.attempts, cause=e) from e

    return validate_extraction_output(output, attributes)


# ============================================================================
# Keyword Heuristics (offline extraction)
# ============================================================================

KEYWORD_RULES: Dict[str, List[Tuple[str, Any]]] = {
    "frequency": [
        (r"\bhourly\b|every hour", "hourly"),
        (r"\bdaily\b|every day|each day", "daily"),
        (r"\bweekly\b|every week", "weekly"),
        (r"\bmonthly\b|every month", "monthly"),
        (r"\bquarterly\b", "quarterly"),
        (r"\bannually\b|\byearly\b|once a year", "annually"),
        (r"\bad[\s-]?hoc\b|occasionally", "ad-hoc"),
    ],
    "volume": [
        (r"high volume|hundreds|thousands|\blarge number", "high"),
        (r"low volume|a few|handful", "low"),
        (r"moderate volume|dozens", "medium"),
    ],
    "business_value": [
        (r"critical|essential|vital", "critical"),
        (r"high value|important", "high"),
        (r"low value|minor|nobody reads", "low"),
    ],
    "complexity": [
        (r"very complex|extremely complex", "very_high"),
        (r"\bcomplex\b|complicated", "high"),
        (r"\bsimple\b|straightforward", "low"),
    ],
    "risk": [
        (r"critical risk", "critical"),
        (r"high risk|risky", "high"),
        (r"low risk|\bsafe\b", "low"),
    ],
    "data_sensitivity": [
        (r"restricted|classified", "restricted"),
        (r"confidential|sensitive|personal data", "confidential"),
        (r"\binternal\b", "internal"),
        (r"\bpublic\b", "public"),
    ],
    "current_state": [
        (r"paper|printed|hand[\s-]?written|fax", "paper"),
        (r"\bmanual(ly)?\b|by email|via email|spreadsheet", "manual"),
        (r"fully automated|already automated", "automated"),
        (r"\bdigital\b|online form|web form", "digital"),
    ],
    "judgment_required": [
        (r"judg(e)?ment|interpret|case[\s-]by[\s-]case|decide", True),
        (r"rule[\s-]based|no judg(e)?ment|always the same", False),
    ],
}


def extract_attributes_by_keywords(
    description: str,
    qa_history: Sequence[Mapping[str, str]],
    attributes: Sequence[Attribute],
) -> Dict[str, Dict[str, Any]]:
    """
    Deterministic keyword extraction in the raw capability output shape.

    Only attributes in `attributes` are reported; anything without a
    keyword signal is reported as "unknown".
    """
    text = " ".join(
        [description] + [f"{t.get('question', '')} {t.get('answer', '')}" for t in qa_history]
    ).lower()

    output: Dict[str, Dict[str, Any]] = {}
    for attribute in attributes:
        value: Any = "unknown"
        span = None

        for pattern, candidate in KEYWORD_RULES.get(attribute.name, []):
            match = re.search(pattern, text)
            if match:
                value, span = candidate, match.group(0)
                break

        if attribute.name == "user_count" and value == "unknown":
            match = re.search(r"(\d+)\s*(users?|people|employees|staff)", text)
            if match:
                value, span = _bucket_user_count(int(match.group(1))), match.group(0)

        if attribute.type == AttributeType.NUMERIC and value == "unknown":
            match = re.search(r"(\d+(?:\.\d+)?)\s*hours?", text)
            if match and "hour" in attribute.name:
                value, span = float(match.group(1)), match.group(0)

        output[attribute.name] = {
            "value": value,
            "confidence": 0.6 if value != "unknown" else 0.0,
            "source_span": span,
            "explanation": "keyword match" if span else "no signal in conversation",
        }
    return output


def _bucket_user_count(count: int) -> str:
    if count <= 5:
        return "1-5"
    if count <= 20:
        return "6-20"
    if count <= 50:
        return "21-50"
    if count <= 100:
        return "51-100"
    return "100+"
