"""
Model capabilities used by the classification workflow.

The workflow never talks to a model provider directly. It calls an
LLMCapabilities implementation:

- classify:            baseline category + confidence + next action
- generate_questions:  clarification questions
- extract_attributes:  raw attribute values for the decision matrix
- summarize:           condensed summary of older Q&A turns

Two bindings are provided: LangChainCapabilities (OpenAI / Anthropic
chat models via LangChain) and MockCapabilities (deterministic keyword
heuristics for offline runs and tests).

Bindings make a single attempt per call. The orchestrator wraps whatever
binding it is given in RetryingCapabilities, which applies its
RetryPolicy: a hard timeout per attempt plus bounded exponential backoff
for transient failures. Non-retryable failures propagate immediately;
exhausting the retries raises CapabilityUnavailable.
"""

import os
import json
import time
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import httpx
from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from decision_matrix import DEFAULT_DECISION_MATRIX, Attribute, TransformationCategory
from errors import CapabilityUnavailable, MalformedCapabilityOutput
from nodes.attribute_extractor import (
    ATTRIBUTE_EXTRACTION_SYSTEM_PROMPT,
    build_extraction_prompt,
    extract_attributes_by_keywords,
)
from nodes.clarification import (
    QUESTION_GENERATION_SYSTEM_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
    ClarificationConfig,
    key_facts_digest,
    normalize_question,
    parse_questions,
)
from nodes.classifier import (
    CLASSIFICATION_SYSTEM_PROMPT,
    BaselineClassification,
    ClassifierConfig,
    build_classification_prompt,
    classification_from_payload,
    classify_by_keywords,
    determine_action,
    format_qa_history,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Retry & Timeout Policy
# ============================================================================

RETRYABLE_STATUS_CODES = {408, 409, 429, 500, 502, 503, 504}
NON_RETRYABLE_STATUS_CODES = {400, 401, 403, 404, 422}

# Provider SDK exceptions for network trouble that do not subclass httpx errors
TRANSIENT_ERROR_NAMES = {"APITimeoutError", "APIConnectionError", "InternalServerError", "RateLimitError"}


@dataclass
class RetryPolicy:
    """Timeout and backoff applied to every capability call."""

    timeout_seconds: float = 30.0
    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_factor: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return self.initial_delay * (self.backoff_factor ** (attempt - 1))

    @classmethod
    def from_env(cls) -> "RetryPolicy":
        return cls(
            timeout_seconds=float(os.getenv("CAPABILITY_TIMEOUT_SECONDS", "30")),
            max_attempts=int(os.getenv("CAPABILITY_MAX_ATTEMPTS", "3")),
        )


def _status_code(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable(error: BaseException) -> bool:
    """
    Whether a failed call is worth retrying.

    Timeouts, transport errors and 408/409/429/5xx responses are
    transient; everything else (including 400/401/403/404/422 and
    malformed output) is not.
    """
    if isinstance(error, MalformedCapabilityOutput):
        return False
    if isinstance(error, (TimeoutError, FuturesTimeoutError, httpx.TimeoutException, httpx.TransportError, ConnectionError)):
        return True

    status = _status_code(error)
    if status is not None:
        if status in NON_RETRYABLE_STATUS_CODES:
            return False
        return status in RETRYABLE_STATUS_CODES or status >= 500

    return type(error).__name__ in TRANSIENT_ERROR_NAMES


def run_with_timeout(operation: Callable[[], Any], timeout_seconds: float) -> Any:
    """
    Run an operation, giving up after timeout_seconds.

    Raises:
        TimeoutError: if the operation did not finish in time
    """
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(operation)
    try:
        return future.result(timeout=timeout_seconds)
    except FuturesTimeoutError as e:
        future.cancel()
        raise TimeoutError(f"Call exceeded {timeout_seconds}s") from e
    finally:
        executor.shutdown(wait=False)


def call_with_retry(
    operation: Callable[[], Any],
    policy: RetryPolicy,
    capability: str,
    sleep_func: Callable[[float], None] = time.sleep,
) -> Any:
    """
    Execute a capability call with a timeout and exponential backoff retry.

    Args:
        operation: Callable that performs the call (should raise on failure)
        policy: Timeout and retry settings
        capability: Capability name for logging and errors
        sleep_func: Sleep function (injectable for testing)

    Returns:
        Whatever the operation returned

    Raises:
        CapabilityUnavailable: all attempts failed with transient errors
        Exception: the original error, for non-retryable failures
    """
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = run_with_timeout(operation, policy.timeout_seconds)
            if attempt > 1:
                logger.info(f"{capability} succeeded on attempt {attempt}")
            return result
        except Exception as e:
            if not is_retryable(e):
                raise
            last_error = e

            if attempt < policy.max_attempts:
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"{capability} failed (attempt {attempt}/{policy.max_attempts}): {e}. "
                    f"Retrying in {delay:.1f}s"
                )
                sleep_func(delay)
            else:
                logger.error(f"{capability} failed after {attempt} attempts: {e}")

    raise CapabilityUnavailable(
        capability,
        f"Unavailable after {policy.max_attempts} attempts: {last_error}",
        attempts=policy.max_attempts,
        cause=last_error,
    )


# ============================================================================
# Model Configuration
# ============================================================================

@dataclass
class ModelConfig:
    """Which model a session talks to."""

    provider: str = "openai"  # "openai", "anthropic", "mock"
    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    max_tokens: int = 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]], defaults: Optional["ModelConfig"] = None) -> "ModelConfig":
        base = defaults or cls()
        data = data or {}
        return cls(
            provider=data.get("provider", base.provider),
            model=data.get("model", base.model),
            temperature=float(data.get("temperature", base.temperature)),
            max_tokens=int(data.get("max_tokens", base.max_tokens)),
        )

    @classmethod
    def from_classifier_config(cls, config: ClassifierConfig) -> "ModelConfig":
        return cls(
            provider="mock" if config.use_mock else config.llm_provider,
            model="keyword-heuristics" if config.use_mock else config.llm_model,
            temperature=config.llm_temperature,
            max_tokens=config.llm_max_tokens,
        )


# ============================================================================
# Capability Interface
# ============================================================================

class LLMCapabilities(ABC):
    """The model-backed operations the workflow consumes."""

    @abstractmethod
    def classify(
        self,
        description: str,
        qa_history: Sequence[Mapping[str, str]],
        model_config: Optional[Mapping[str, Any]] = None,
        context_summary: Optional[str] = None,
    ) -> BaselineClassification:
        ...

    @abstractmethod
    def generate_questions(
        self,
        description: str,
        classification: BaselineClassification,
        qa_history: Sequence[Mapping[str, str]],
        model_config: Optional[Mapping[str, Any]] = None,
        context_summary: Optional[str] = None,
        asked_questions: Sequence[str] = (),
    ) -> List[str]:
        ...

    @abstractmethod
    def extract_attributes(
        self,
        description: str,
        qa_history: Sequence[Mapping[str, str]],
        attribute_defs: Sequence[Attribute],
        model_config: Optional[Mapping[str, Any]] = None,
        correction: Optional[str] = None,
    ) -> Any:
        ...

    @abstractmethod
    def summarize(
        self,
        qa_history: Sequence[Mapping[str, str]],
        model_config: Optional[Mapping[str, Any]] = None,
    ) -> str:
        ...

    def generate_matrix(self, model_config: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Draft a decision matrix (raw mapping). Optional capability."""
        raise NotImplementedError(f"{type(self).__name__} cannot generate decision matrices")


class RetryingCapabilities(LLMCapabilities):
    """
    Applies a RetryPolicy to every call of another binding.

    Transient failures are retried with backoff and end in
    CapabilityUnavailable; everything else (including
    MalformedCapabilityOutput) reaches the caller unchanged.
    """

    def __init__(
        self,
        inner: LLMCapabilities,
        policy: Optional[RetryPolicy] = None,
        sleep_func: Callable[[float], None] = time.sleep,
    ):
        self.inner = inner
        self.policy = policy or RetryPolicy()
        self.sleep_func = sleep_func

    @classmethod
    def wrap(
        cls,
        capabilities: LLMCapabilities,
        policy: Optional[RetryPolicy] = None,
        sleep_func: Callable[[float], None] = time.sleep,
    ) -> "RetryingCapabilities":
        if isinstance(capabilities, RetryingCapabilities):
            return capabilities
        return cls(capabilities, policy, sleep_func)

    def _call(self, capability: str, operation: Callable[[], Any]) -> Any:
        return call_with_retry(operation, self.policy, capability, sleep_func=self.sleep_func)

    def classify(self, description, qa_history, model_config=None, context_summary=None):
        return self._call("classify", lambda: self.inner.classify(
            description, qa_history, model_config, context_summary=context_summary
        ))

    def generate_questions(self, description, classification, qa_history, model_config=None, context_summary=None, asked_questions=()):
        return self._call("generate_questions", lambda: self.inner.generate_questions(
            description, classification, qa_history, model_config,
            context_summary=context_summary, asked_questions=asked_questions,
        ))

    def extract_attributes(self, description, qa_history, attribute_defs, model_config=None, correction=None):
        return self._call("extract_attributes", lambda: self.inner.extract_attributes(
            description, qa_history, attribute_defs, model_config, correction=correction
        ))

    def summarize(self, qa_history, model_config=None):
        return self._call("summarize", lambda: self.inner.summarize(qa_history, model_config))

    def generate_matrix(self, model_config=None):
        return self._call("generate_matrix", lambda: self.inner.generate_matrix(model_config))


# ============================================================================
# JSON Response Parsing
# ============================================================================

def parse_json_response(text: str, capability: str) -> Any:
    """
    Parse a JSON model response, tolerating markdown code fences.

    Raises:
        MalformedCapabilityOutput: if the text is not valid JSON
    """
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0]
    elif "```" in text:
        text = text.split("```")[1].split("```")[0]

    try:
        return json.loads(text.strip())
    except json.JSONDecodeError as e:
        raise MalformedCapabilityOutput(capability, f"Response is not valid JSON: {e}", text) from e


CORRECTION_SUFFIX = "\n\nYour previous response could not be parsed ({problem}). Respond with valid JSON only, exactly in the requested format."


# ============================================================================
# LangChain Binding
# ============================================================================

class LangChainCapabilities(LLMCapabilities):
    """Capabilities backed by OpenAI or Anthropic chat models through LangChain."""

    def __init__(
        self,
        classifier_config: Optional[ClassifierConfig] = None,
        clarification_config: Optional[ClarificationConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        llm_factory: Optional[Callable[[ModelConfig], Any]] = None,
    ):
        self.classifier_config = classifier_config or ClassifierConfig()
        self.clarification_config = clarification_config or ClarificationConfig()
        self.retry_policy = retry_policy or RetryPolicy()  # Client timeout only
        self.default_model = ModelConfig.from_classifier_config(self.classifier_config)
        self._llm_factory = llm_factory or self._build_llm
        self._llms: Dict[tuple, Any] = {}

    def _build_llm(self, config: ModelConfig) -> Any:
        if config.provider == "openai":
            if not os.getenv("OPENAI_API_KEY"):
                logger.warning("OPENAI_API_KEY not set")
            return ChatOpenAI(
                model=config.model,
                temperature=config.temperature,
                max_completion_tokens=config.max_tokens,
                timeout=self.retry_policy.timeout_seconds,
                max_retries=0,
            )
        if config.provider == "anthropic":
            if not os.getenv("ANTHROPIC_API_KEY"):
                logger.warning("ANTHROPIC_API_KEY not set")
            return ChatAnthropic(  # type: ignore[call-arg]
                model_name=config.model,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout=self.retry_policy.timeout_seconds,
                max_retries=0,
            )
        raise ValueError(f"Unknown LLM provider: {config.provider}")

    def _get_llm(self, config: ModelConfig) -> Any:
        key = (config.provider, config.model, config.temperature, config.max_tokens)
        if key not in self._llms:
            self._llms[key] = self._llm_factory(config)
        return self._llms[key]

    def _chat(self, system_prompt: str, user_prompt: str, model_config: Optional[Mapping[str, Any]], capability: str) -> str:
        config = ModelConfig.from_mapping(model_config, self.default_model)
        llm = self._get_llm(config)
        messages = [
            SystemMessage(content=system_prompt),
            HumanMessage(content=user_prompt),
        ]
        logger.debug(f"{capability}: calling {config.provider}/{config.model}")
        response = llm.invoke(messages)
        return str(response.content)

    def _chat_json(self, system_prompt: str, user_prompt: str, model_config: Optional[Mapping[str, Any]], capability: str) -> Any:
        """Chat and parse JSON, asking once more with a correction if the output is malformed."""
        text = self._chat(system_prompt, user_prompt, model_config, capability)
        try:
            return parse_json_response(text, capability)
        except MalformedCapabilityOutput as e:
            logger.warning(f"{capability} returned malformed output, retrying with correction")
            retry_prompt = user_prompt + CORRECTION_SUFFIX.format(problem=e.message)
            text = self._chat(system_prompt, retry_prompt, model_config, capability)
            return parse_json_response(text, capability)

    def classify(self, description, qa_history, model_config=None, context_summary=None):
        prompt = build_classification_prompt(description, qa_history, context_summary)
        try:
            payload = self._chat_json(CLASSIFICATION_SYSTEM_PROMPT, prompt, model_config, "classify")
            classification = classification_from_payload(payload)
        except MalformedCapabilityOutput as e:
            # Degrade to keyword classification rather than failing the turn
            logger.error(f"LLM classification unusable ({e.message}); falling back to keywords")
            classification = classify_by_keywords(description, qa_history)

        action = determine_action(classification.confidence, description, qa_history, self.classifier_config)
        logger.info(
            f"LLM classified as {classification.category.value} "
            f"({classification.confidence:.1%} confidence, action={action.value})"
        )
        return BaselineClassification(classification=classification, action=action)

    def generate_questions(self, description, classification, qa_history, model_config=None, context_summary=None, asked_questions=()):
        system_prompt = QUESTION_GENERATION_SYSTEM_PROMPT.format(
            max_questions=self.clarification_config.max_questions_per_turn
        )
        prompt = build_classification_prompt(description, qa_history, context_summary)
        prompt += (
            f"\n\nCURRENT CLASSIFICATION: {classification.category.value} "
            f"({classification.confidence:.0%} confidence)\n{classification.rationale}"
        )
        if asked_questions:
            prompt += "\n\nALREADY ASKED (do not repeat):\n" + "\n".join(f"- {q}" for q in asked_questions)
        try:
            payload = self._chat_json(system_prompt, prompt, model_config, "generate_questions")
        except MalformedCapabilityOutput as e:
            logger.error(f"Question generation unusable ({e.message}); returning no questions")
            return []
        return parse_questions(payload)

    def extract_attributes(self, description, qa_history, attribute_defs, model_config=None, correction=None):
        prompt = build_extraction_prompt(description, qa_history, attribute_defs, correction)
        text = self._chat(ATTRIBUTE_EXTRACTION_SYSTEM_PROMPT, prompt, model_config, "extract_attributes")
        return parse_json_response(text, "extract_attributes")

    def summarize(self, qa_history, model_config=None):
        prompt = f"INTERVIEW:\n{format_qa_history(qa_history)}"
        return self._chat(SUMMARY_SYSTEM_PROMPT, prompt, model_config, "summarize").strip()

    def generate_matrix(self, model_config=None):
        return self._chat_json(MATRIX_GENERATION_SYSTEM_PROMPT, MATRIX_GENERATION_USER_PROMPT, model_config, "generate_matrix")


MATRIX_GENERATION_SYSTEM_PROMPT = f"""You are an expert in business process transformation. Design a decision matrix that refines AI classifications of business processes into these categories: {", ".join(TransformationCategory.values())}.

A decision matrix has attributes (name, type: categorical|numeric|boolean, weight 0-1, possible_values for categorical, description) and rules (name, description, priority 0-100, conditions, action).

Each condition is {{"attribute": <attribute name>, "operator": equals|not_equals|greater_than|less_than|greater_or_equal|less_or_equal|contains|in|not_in, "value": <value>}}.
Each action is either {{"type": "override", "target_category": <category>, "rationale": "..."}} or {{"type": "adjust_confidence", "confidence_delta": <-1.0 to 1.0>, "rationale": "..."}}.

Respond in JSON format:
{{"description": "...", "attributes": [...], "rules": [...]}}"""

MATRIX_GENERATION_USER_PROMPT = (
    "Create a baseline decision matrix with 6-10 attributes covering frequency, volume, business value, "
    "complexity, risk, data sensitivity and need for human judgment, and 8-15 rules."
)


# ============================================================================
# Mock Binding
# ============================================================================

# Clarification questions the mock asks, keyed by the topic they explore
MOCK_QUESTION_BANK: List[str] = [
    "How often does this process run?",
    "Roughly how many transactions or cases are handled each time?",
    "How is the process done today: on paper, manually in tools, or already automated?",
    "Do any steps require human judgment or interpretation?",
    "What is the risk if the process goes wrong?",
    "How valuable is this process to the business?",
    "How sensitive is the data involved?",
    "How many people are involved in or affected by the process?",
    "How many hours per week are spent on it?",
    "Which systems or tools does it touch?",
    "What does success look like after the change?",
    "Who owns or sponsors this process?",
    "Are there compliance constraints to respect?",
    "What are the biggest pain points today?",
    "How many steps does the process have?",
]


class MockCapabilities(LLMCapabilities):
    """Deterministic, offline capabilities built on keyword heuristics."""

    def __init__(
        self,
        classifier_config: Optional[ClassifierConfig] = None,
        clarification_config: Optional[ClarificationConfig] = None,
    ):
        self.classifier_config = classifier_config or ClassifierConfig(use_mock=True)
        self.clarification_config = clarification_config or ClarificationConfig()

    def classify(self, description, qa_history, model_config=None, context_summary=None):
        classification = classify_by_keywords(description, qa_history)
        action = determine_action(classification.confidence, description, qa_history, self.classifier_config)
        return BaselineClassification(classification=classification, action=action)

    def generate_questions(self, description, classification, qa_history, model_config=None, context_summary=None, asked_questions=()):
        asked = {normalize_question(turn.get("question", "")) for turn in qa_history}
        asked.update(normalize_question(q) for q in asked_questions)
        fresh = [q for q in MOCK_QUESTION_BANK if normalize_question(q) not in asked]
        return fresh[:self.clarification_config.max_questions_per_turn]

    def extract_attributes(self, description, qa_history, attribute_defs, model_config=None, correction=None):
        return extract_attributes_by_keywords(description, qa_history, attribute_defs)

    def summarize(self, qa_history, model_config=None):
        return key_facts_digest(qa_history)

    def generate_matrix(self, model_config=None):
        return DEFAULT_DECISION_MATRIX.to_dict()


def build_capabilities(
    classifier_config: Optional[ClassifierConfig] = None,
    clarification_config: Optional[ClarificationConfig] = None,
    retry_policy: Optional[RetryPolicy] = None,
) -> LLMCapabilities:
    """Pick the binding from configuration (USE_MOCK_CLASSIFIER selects the mock)."""
    classifier_config = classifier_config or ClassifierConfig.from_env()
    clarification_config = clarification_config or ClarificationConfig.from_env()

    if classifier_config.use_mock:
        logger.info("Using mock classification capabilities")
        return MockCapabilities(classifier_config, clarification_config)

    logger.info(f"Using {classifier_config.llm_provider} ({classifier_config.llm_model}) capabilities")
    return LangChainCapabilities(
        classifier_config,
        clarification_config,
        retry_policy or RetryPolicy.from_env(),
    )
