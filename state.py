from typing import TypedDict, List, Dict, Optional, Any
from enum import Enum
import operator
from typing import Annotated

# ============================================================================
# Conversation Data Models
# ============================================================================

class ConversationTurn(TypedDict):
    """One clarification question and the user's answer."""
    question: str
    answer: str


class SessionStatus(Enum):
    """
    Where a classification session is in its lifecycle.

    submitted -> classifying -> {clarifying <-> classifying}
              -> extracting_attributes -> evaluating_matrix -> completed
    manual_review is the alternate terminal state.
    """
    SUBMITTED = "submitted"
    CLASSIFYING = "classifying"
    CLARIFYING = "clarifying"
    EXTRACTING_ATTRIBUTES = "extracting_attributes"
    EVALUATING_MATRIX = "evaluating_matrix"
    COMPLETED = "completed"
    MANUAL_REVIEW = "manual_review"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.MANUAL_REVIEW)


class HistoryEntry(TypedDict, total=False):
    """
    One classification event in a session.

    The first entry is the result of the conversation; each explicit
    reclassification appends another. Entries are never rewritten.
    """
    classification: Dict[str, Any]
    evaluation: Optional[Dict[str, Any]]
    extracted_attributes: Dict[str, Any]
    matrix_version: Optional[str]
    matrix_applied: bool
    reclassification: bool
    reason: Optional[str]
    confidence_delta: Optional[float]
    category_changed: Optional[bool]
    timestamp: str


# ============================================================================
# Main Workflow State
# ============================================================================

class ClassificationState(TypedDict, total=False):
    """
    The central state of the classification workflow.
    This dict is passed and updated by every node in the graph and is
    what the session store persists between turns.
    """
    # Meta Information
    session_id: str
    user_id: str
    status: str  # SessionStatus value
    created_at: str
    updated_at: str
    model_config: Dict[str, Any]  # ModelConfig.to_dict()

    # Input
    description: str
    force_classify: bool

    # Clarification Loop
    qa_history: List[ConversationTurn]
    loop_state: Dict[str, Any]  # ClarificationLoopState.to_dict()
    pending_questions: List[str]
    pii_scrubbed: bool

    # Baseline & Final Results
    baseline: Optional[Dict[str, Any]]  # BaselineClassification.to_dict()
    extracted_attributes: Dict[str, Any]  # name -> ExtractedAttributeValue.to_dict()
    matrix: Optional[Dict[str, Any]]  # Matrix pinned for the current run (not persisted)
    matrix_version: Optional[str]
    matrix_applied: bool
    evaluation: Optional[Dict[str, Any]]  # DecisionMatrixEvaluation.to_dict()
    final_classification: Optional[Dict[str, Any]]
    classification_history: List[HistoryEntry]

    # Reclassification
    reclassification_reason: Optional[str]
    refresh_baseline: bool

    # Audit events emitted during one graph run; flushed to the sink afterwards
    audit_events: Annotated[List[Dict[str, Any]], operator.add]
