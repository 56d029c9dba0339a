"""
Routing decisions for the classification graph.

Routing is a pure function of the classifier's recommended action, the
confidence it reported and how many turns the conversation has had,
plus the clarification loop state. Thresholds belong to the classifier;
the router only enforces the hard caps.
"""

import logging
from typing import Optional

from langgraph.graph import END

from nodes.classifier import ConfidenceAction
from nodes.clarification import ClarificationLoopState, LoopPhase, MAX_TOTAL_QUESTIONS
from state import ClassificationState, SessionStatus

logger = logging.getLogger(__name__)

# Graph node names
CLASSIFY = "classify"
CLARIFY = "clarify"
EXTRACT = "extract_attributes"
EVALUATE = "evaluate_matrix"
MANUAL_REVIEW = "manual_review"


def decide_after_classification(
    action: ConfidenceAction,
    confidence: float,
    turns_so_far: int,
    loop_phase: Optional[LoopPhase] = None,
    force_classify: bool = False,
    max_turns: int = MAX_TOTAL_QUESTIONS,
) -> str:
    """
    Pick the next node after a baseline classification.

    Args:
        action: Action recommended by the classifier
        confidence: Baseline confidence (reported in the routing log)
        turns_so_far: Answered clarification turns
        loop_phase: Current clarification loop phase
        force_classify: Caller asked to skip clarification and review
        max_turns: Session question cap

    Returns:
        CLARIFY, MANUAL_REVIEW or EXTRACT
    """
    if action == ConfidenceAction.MANUAL_REVIEW:
        if force_classify:
            logger.info(f"Manual review bypassed by caller (confidence {confidence:.2f})")
            return EXTRACT
        return MANUAL_REVIEW

    if action == ConfidenceAction.AUTO_CLASSIFY:
        return EXTRACT

    if force_classify:
        return EXTRACT
    if loop_phase == LoopPhase.FORCED_CLASSIFY:
        return EXTRACT
    if turns_so_far >= max_turns:
        logger.info(f"Question cap of {max_turns} reached at confidence {confidence:.2f}; classifying")
        return EXTRACT
    return CLARIFY


def route_entry(state: ClassificationState) -> str:
    """Where a (resumed) run starts, based on the last committed status."""
    status = state.get("status", SessionStatus.SUBMITTED.value)
    if status in (SessionStatus.EXTRACTING_ATTRIBUTES.value, SessionStatus.EVALUATING_MATRIX.value):
        return EXTRACT
    return CLASSIFY


def route_after_classification(state: ClassificationState, max_turns: int = MAX_TOTAL_QUESTIONS) -> str:
    baseline = state.get("baseline") or {}
    loop_state = ClarificationLoopState.from_dict(state.get("loop_state"))
    return decide_after_classification(
        action=ConfidenceAction.from_string(baseline.get("action", "clarify")),
        confidence=float(baseline.get("confidence", 0.0)),
        turns_so_far=len(state.get("qa_history", [])),
        loop_phase=loop_state.phase,
        force_classify=bool(state.get("force_classify")),
        max_turns=max_turns,
    )


def route_after_clarification(state: ClassificationState) -> str:
    """Forced loops continue to extraction; otherwise wait for answers."""
    loop_state = ClarificationLoopState.from_dict(state.get("loop_state"))
    if loop_state.is_forced:
        return EXTRACT
    return END
