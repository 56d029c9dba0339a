"""
Clarification Loop Controller

Drives the question/answer loop that runs while the baseline classifier
asks for clarification. The loop state is an explicit value
(ClarificationLoopState) that is passed between turns and stored with the
session:

    need_clarification -> awaiting_answer -> need_clarification
                                          -> ready_to_classify
                                          -> forced_classify

The loop is forced out into classification (never an error) when:
- a generated question repeats one already asked (normalized text equal,
  or token Jaccard similarity >= 0.85)
- the session reaches its total question cap (15)
- the question generator returns nothing

Long transcripts are compressed before each model call: turns older than
the most recent few are summarized once and the summary is cached in the
loop state until more turns age out.
"""

import os
import re
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from audit_log import PassthroughScrubber, ScrubResult, SensitiveContentScrubber
from errors import CapabilityError

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration
# ============================================================================

MAX_TOTAL_QUESTIONS = 15
MAX_QUESTIONS_PER_TURN = 3
SUMMARY_TURN_THRESHOLD = 5
RECENT_TURNS_KEPT = 3
DUPLICATE_SIMILARITY = 0.85


@dataclass
class ClarificationConfig:
    """Limits for the clarification loop."""

    max_total_questions: int = MAX_TOTAL_QUESTIONS
    max_questions_per_turn: int = MAX_QUESTIONS_PER_TURN
    summary_turn_threshold: int = SUMMARY_TURN_THRESHOLD  # Summarize above this many turns
    recent_turns_kept: int = RECENT_TURNS_KEPT
    duplicate_similarity: float = DUPLICATE_SIMILARITY

    @classmethod
    def from_env(cls) -> "ClarificationConfig":
        return cls(
            max_total_questions=int(os.getenv("MAX_CLARIFICATION_TURNS", str(MAX_TOTAL_QUESTIONS))),
            max_questions_per_turn=int(os.getenv("MAX_QUESTIONS_PER_TURN", str(MAX_QUESTIONS_PER_TURN))),
            summary_turn_threshold=int(os.getenv("SUMMARY_TURN_THRESHOLD", str(SUMMARY_TURN_THRESHOLD))),
        )


# ============================================================================
# Loop State
# ============================================================================

class LoopPhase(Enum):
    NEED_CLARIFICATION = "need_clarification"
    AWAITING_ANSWER = "awaiting_answer"
    READY_TO_CLASSIFY = "ready_to_classify"
    FORCED_CLASSIFY = "forced_classify"


class ForcedReason(Enum):
    DUPLICATE_QUESTION = "duplicate_question"
    TURN_CAP = "turn_cap"
    NO_QUESTIONS = "no_questions"
    CALLER_REQUEST = "caller_request"


@dataclass(frozen=True)
class ClarificationLoopState:
    """Everything the controller needs to carry from one turn to the next."""

    phase: LoopPhase = LoopPhase.NEED_CLARIFICATION
    turn_count: int = 0
    asked_questions: Tuple[str, ...] = ()
    pending_questions: Tuple[str, ...] = ()
    summary: Optional[str] = None
    summarized_turns: int = 0
    forced_reason: Optional[ForcedReason] = None
    questions_scrubbed: bool = False

    @property
    def is_forced(self) -> bool:
        return self.phase == LoopPhase.FORCED_CLASSIFY

    def questions_remaining(self, config: ClarificationConfig) -> int:
        return max(0, config.max_total_questions - len(self.asked_questions))

    def force(self, reason: ForcedReason) -> "ClarificationLoopState":
        logger.info(f"Clarification loop ending, forcing classification ({reason.value})")
        return replace(
            self,
            phase=LoopPhase.FORCED_CLASSIFY,
            forced_reason=reason,
            pending_questions=(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "turn_count": self.turn_count,
            "asked_questions": list(self.asked_questions),
            "pending_questions": list(self.pending_questions),
            "summary": self.summary,
            "summarized_turns": self.summarized_turns,
            "forced_reason": self.forced_reason.value if self.forced_reason else None,
            "questions_scrubbed": self.questions_scrubbed,
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ClarificationLoopState":
        if not data:
            return cls()
        reason = data.get("forced_reason")
        return cls(
            phase=LoopPhase(data.get("phase", LoopPhase.NEED_CLARIFICATION.value)),
            turn_count=int(data.get("turn_count", 0)),
            asked_questions=tuple(data.get("asked_questions", [])),
            pending_questions=tuple(data.get("pending_questions", [])),
            summary=data.get("summary"),
            summarized_turns=int(data.get("summarized_turns", 0)),
            forced_reason=ForcedReason(reason) if reason else None,
            questions_scrubbed=bool(data.get("questions_scrubbed", False)),
        )


# ============================================================================
# Prompts & Parsing
# ============================================================================

QUESTION_GENERATION_SYSTEM_PROMPT = """You are a business process analyst interviewing someone about a process so it can be classified for transformation (Eliminate, Simplify, Digitise, RPA, AI Agent, Agentic AI).

Ask the questions that would most change or confirm the classification. Focus on what is still unknown: frequency, volume, current tools, complexity, need for human judgment, risk, business value, data sensitivity.

Rules:
- Ask at most {max_questions} questions
- Never repeat a question that was already asked
- One topic per question, plain language

Respond in JSON format:
[
    {{"question": "<question text>", "purpose": "<what this clarifies>"}}
]"""

SUMMARY_SYSTEM_PROMPT = """Summarize this interview about a business process in a few bullet points. Keep every concrete fact (numbers, frequencies, tools, people, risks, goals). Drop pleasantries and repetition. Respond with plain text only."""


def parse_questions(payload: Any) -> List[str]:
    """
    Pull question strings out of a generator response.

    Accepts a list of strings, a list of {"question": ...} objects, or an
    object with a "questions" list.
    """
    if isinstance(payload, Mapping):
        payload = payload.get("questions", [])
    if not isinstance(payload, list):
        return []

    questions = []
    for item in payload:
        if isinstance(item, Mapping):
            item = item.get("question", "")
        if isinstance(item, str) and item.strip():
            questions.append(item.strip())
    return questions


# ============================================================================
# Loop Detection
# ============================================================================

def normalize_question(text: str) -> str:
    text = re.sub(r"[^\w\s]", " ", text.lower())
    return " ".join(text.split())


def question_similarity(first: str, second: str) -> float:
    """Token Jaccard similarity of two normalized questions."""
    a = set(normalize_question(first).split())
    b = set(normalize_question(second).split())
    if not a and not b:
        return 1.0
    return len(a & b) / len(a | b)


def is_duplicate_question(
    question: str,
    previous: Sequence[str],
    threshold: float = DUPLICATE_SIMILARITY,
) -> bool:
    normalized = normalize_question(question)
    for earlier in previous:
        if normalize_question(earlier) == normalized:
            return True
        if question_similarity(question, earlier) >= threshold:
            return True
    return False


# ============================================================================
# Context Compression
# ============================================================================

KEY_FACT_PATTERNS: List[Tuple[str, str]] = [
    (r"\b(daily|weekly|monthly|hourly|quarterly|annually|every\s+\w+|once|twice|\d+\s+times?\s+per)\b", "Process frequency"),
    (r"\b\d+\s+(users?|people|employees?|transactions?|requests?|cases?|orders?)\b", "Scale"),
    (r"\b\d+\s+(steps?|stages?|phases?)\b", "Process complexity"),
    (r"\b\d+\s+(systems?|applications?|tools?)\b", "Systems involved"),
]


def key_facts_digest(turns: Sequence[Mapping[str, str]]) -> str:
    """Deterministic digest of older turns, used when summarization is unavailable."""
    answers = " ".join(turn.get("answer", "") for turn in turns).lower()

    facts = []
    for pattern, label in KEY_FACT_PATTERNS:
        match = re.search(pattern, answers)
        if match:
            facts.append(f"{label}: {match.group(0)}")

    if re.search(r"\b(manual|paper-based|paper|spreadsheet|excel)\b", answers):
        facts.append("Current state: Manual/paper-based process")
    elif re.search(r"\b(digital|system|automated|software|tool)\b", answers):
        facts.append("Current state: Digital/system-based")

    if re.search(r"\b(slow|time-consuming|takes\s+\d+\s+(hours?|minutes?|days?))\b", answers):
        facts.append("Pain point: Time-consuming process")

    lines = [f"Key information from {len(turns)} earlier answers:"]
    lines.extend(f"- {fact}" for fact in facts)
    if not facts:
        for turn in turns:
            lines.append(f"- {turn.get('question', '')} -> {turn.get('answer', '')[:160]}")
    return "\n".join(lines)


def compress_history(
    loop_state: ClarificationLoopState,
    qa_history: Sequence[Mapping[str, str]],
    capability: Any,
    model_config: Optional[Mapping[str, Any]] = None,
    config: Optional[ClarificationConfig] = None,
) -> Tuple[ClarificationLoopState, List[Dict[str, str]], Optional[str]]:
    """
    Compress the transcript for the next model call.

    Returns:
        (updated loop state, turns to send verbatim, summary of older turns
        or None when the transcript is still short)
    """
    config = config or ClarificationConfig()
    history = [dict(turn) for turn in qa_history]

    if len(history) <= config.summary_turn_threshold:
        return loop_state, history, None

    older = history[:-config.recent_turns_kept]
    recent = history[-config.recent_turns_kept:]

    if loop_state.summary and loop_state.summarized_turns == len(older):
        return loop_state, recent, loop_state.summary

    try:
        summary = capability.summarize(older, model_config)
        logger.info(f"Summarized {len(older)} earlier turns")
    except CapabilityError as e:
        logger.warning(f"Summarization unavailable ({e}); using key facts digest")
        summary = key_facts_digest(older)

    if not summary or not summary.strip():
        summary = key_facts_digest(older)

    updated = replace(loop_state, summary=summary, summarized_turns=len(older))
    return updated, recent, summary


# ============================================================================
# Turn Operations
# ============================================================================

def plan_questions(
    loop_state: ClarificationLoopState,
    description: str,
    baseline: Any,
    qa_history: Sequence[Mapping[str, str]],
    capability: Any,
    model_config: Optional[Mapping[str, Any]] = None,
    config: Optional[ClarificationConfig] = None,
    scrubber: Optional[SensitiveContentScrubber] = None,
) -> ClarificationLoopState:
    """
    Produce the next batch of questions, or force classification.

    Args:
        loop_state: Current loop state
        description: Process description
        baseline: The BaselineClassification that asked for clarification
        qa_history: Answered turns so far
        capability: Object with generate_questions(...) and summarize(...)
        model_config: Model settings passed through to the capability
        config: Loop limits
        scrubber: Applied to every question before it is shown

    Returns:
        The new loop state: awaiting_answer with pending questions, or
        forced_classify with the reason recorded
    """
    config = config or ClarificationConfig()
    scrubber = scrubber or PassthroughScrubber()

    remaining = loop_state.questions_remaining(config)
    if remaining <= 0:
        return loop_state.force(ForcedReason.TURN_CAP)

    loop_state, recent, summary = compress_history(loop_state, qa_history, capability, model_config, config)

    generated = capability.generate_questions(
        description,
        baseline,
        recent,
        model_config,
        context_summary=summary,
        asked_questions=list(loop_state.asked_questions),
    )

    # Compared in scrubbed form, which is how asked_questions stores them
    batch: List[ScrubResult] = []
    for question in generated:
        result = scrubber.scrub(question)
        if is_duplicate_question(result.text, loop_state.asked_questions, config.duplicate_similarity):
            logger.info(f"Generated question repeats an earlier one: {result.text!r}")
            return loop_state.force(ForcedReason.DUPLICATE_QUESTION)
        if is_duplicate_question(result.text, [r.text for r in batch], config.duplicate_similarity):
            continue
        batch.append(result)

    if not batch:
        return loop_state.force(ForcedReason.NO_QUESTIONS)

    batch = batch[:min(config.max_questions_per_turn, remaining)]
    shown = [result.text for result in batch]
    scrubbed_any = loop_state.questions_scrubbed or any(result.altered for result in batch)

    logger.info(f"Asking {len(shown)} clarification question(s), {remaining - len(shown)} left in budget")
    return replace(
        loop_state,
        phase=LoopPhase.AWAITING_ANSWER,
        asked_questions=loop_state.asked_questions + tuple(shown),
        pending_questions=tuple(shown),
        questions_scrubbed=scrubbed_any,
    )


def record_answers(
    loop_state: ClarificationLoopState,
    qa_history: Sequence[Mapping[str, str]],
    answers: Sequence[str],
) -> Tuple[ClarificationLoopState, List[Dict[str, str]]]:
    """
    Pair submitted answers with the pending questions, in order.

    Questions left without an answer are recorded with an empty answer so
    they still count against the session's question budget.

    Raises:
        ValueError: if more answers than pending questions were submitted
    """
    pending = list(loop_state.pending_questions)
    if len(answers) > len(pending):
        raise ValueError(
            f"Received {len(answers)} answers for {len(pending)} pending questions"
        )

    history = [dict(turn) for turn in qa_history]
    for index, question in enumerate(pending):
        answer = answers[index] if index < len(answers) else ""
        history.append({"question": question, "answer": answer.strip()})

    updated = replace(
        loop_state,
        phase=LoopPhase.NEED_CLARIFICATION,
        pending_questions=(),
        turn_count=len(history),
    )
    return updated, history


def mark_ready(loop_state: ClarificationLoopState) -> ClarificationLoopState:
    if loop_state.is_forced:
        return loop_state
    return replace(loop_state, phase=LoopPhase.READY_TO_CLASSIFY, pending_questions=())
