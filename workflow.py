"""
Classification Router - LangGraph workflow and session orchestration

One graph run handles one conversational turn:

    START -> classify -> clarify         -> END (awaiting answers)
                      -> manual_review   -> END
                      -> extract_attributes -> evaluate_matrix -> END

A forced exit from the clarification loop (repeated question, question
cap, nothing left to ask) continues straight to extraction in the same
run. Reclassification uses a second, shorter graph:

    START -> [refresh_baseline] -> extract_attributes -> evaluate_matrix -> END

ClassificationRouter wraps both graphs with session persistence, audit
logging and per-session locking. A session is committed before each run,
so a run that fails with CapabilityUnavailable leaves the session at its
last committed status and can be resumed.
"""

import os
import time
import uuid
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

from langgraph.graph import StateGraph, START, END

from audit_log import (
    AuditEvent,
    AuditEventType,
    AuditMetadata,
    AuditSink,
    InMemoryAuditSink,
    PassthroughScrubber,
    SensitiveContentScrubber,
)
from decision_matrix import DEFAULT_ATTRIBUTES, DecisionMatrix, ExtractedAttributeValue
from errors import InvalidSessionState, MatrixUnavailable
from llm_capabilities import LLMCapabilities, ModelConfig, RetryingCapabilities, RetryPolicy
from matrix_storage import MatrixStore
from nodes.attribute_extractor import extract_attributes
from nodes.clarification import (
    ClarificationConfig,
    ClarificationLoopState,
    ForcedReason,
    compress_history,
    mark_ready,
    plan_questions,
    record_answers,
)
from nodes.classifier import BaselineClassification, Classification, ClassifierConfig, ConfidenceAction
from nodes.router import (
    CLARIFY,
    CLASSIFY,
    EVALUATE,
    EXTRACT,
    MANUAL_REVIEW,
    route_after_clarification,
    route_after_classification,
    route_entry,
)
from nodes.rule_evaluator import evaluate_matrix
from session_storage import InMemorySessionStore, SessionStore, validate_session_id
from state import ClassificationState, HistoryEntry, SessionStatus

logger = logging.getLogger(__name__)

REFRESH_BASELINE = "refresh_baseline"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================================
# Configuration & Results
# ============================================================================

@dataclass
class WorkflowConfig:
    """Everything tunable about the workflow."""

    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    clarification: ClarificationConfig = field(default_factory=ClarificationConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    strict_extraction: bool = False

    @classmethod
    def from_env(cls) -> "WorkflowConfig":
        return cls(
            classifier=ClassifierConfig.from_env(),
            clarification=ClarificationConfig.from_env(),
            retry=RetryPolicy.from_env(),
            strict_extraction=os.getenv("STRICT_ATTRIBUTE_EXTRACTION", "false").lower() == "true",
        )


@dataclass
class WorkflowResult:
    """What a caller gets back after each operation."""

    session_id: str
    status: SessionStatus
    questions: List[str] = field(default_factory=list)
    baseline: Optional[Dict[str, Any]] = None
    classification: Optional[Dict[str, Any]] = None
    evaluation: Optional[Dict[str, Any]] = None
    extracted_attributes: Dict[str, Any] = field(default_factory=dict)
    matrix_applied: bool = False
    matrix_version: Optional[str] = None
    forced_reason: Optional[str] = None
    turns: int = 0
    reclassification: bool = False
    confidence_delta: Optional[float] = None
    category_changed: Optional[bool] = None

    @property
    def category(self) -> Optional[str]:
        return self.classification["category"] if self.classification else None

    @property
    def triggered_rule_ids(self) -> List[str]:
        if not self.evaluation:
            return []
        return [r["rule_id"] for r in self.evaluation.get("triggered_rules", [])]

    @classmethod
    def from_state(cls, state: Mapping[str, Any]) -> "WorkflowResult":
        loop_state = ClarificationLoopState.from_dict(state.get("loop_state"))
        history = state.get("classification_history") or []
        latest: Mapping[str, Any] = history[-1] if history else {}
        return cls(
            session_id=state["session_id"],
            status=SessionStatus(state["status"]),
            questions=list(state.get("pending_questions") or []),
            baseline=state.get("baseline"),
            classification=state.get("final_classification"),
            evaluation=state.get("evaluation"),
            extracted_attributes=dict(state.get("extracted_attributes") or {}),
            matrix_applied=bool(state.get("matrix_applied", False)),
            matrix_version=state.get("matrix_version"),
            forced_reason=loop_state.forced_reason.value if loop_state.forced_reason else None,
            turns=len(state.get("qa_history") or []),
            reclassification=bool(latest.get("reclassification", False)),
            confidence_delta=latest.get("confidence_delta"),
            category_changed=latest.get("category_changed"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "questions": list(self.questions),
            "baseline": self.baseline,
            "classification": self.classification,
            "evaluation": self.evaluation,
            "extracted_attributes": dict(self.extracted_attributes),
            "matrix_applied": self.matrix_applied,
            "matrix_version": self.matrix_version,
            "forced_reason": self.forced_reason,
            "turns": self.turns,
            "reclassification": self.reclassification,
            "confidence_delta": self.confidence_delta,
            "category_changed": self.category_changed,
        }


def _event(state: ClassificationState, event_type: AuditEventType, data: Dict[str, Any]) -> Dict[str, Any]:
    return AuditEvent(
        session_id=state["session_id"],
        event_type=event_type,
        user_id=state.get("user_id", "anonymous"),
        data=data,
        pii_scrubbed=bool(state.get("pii_scrubbed", False)),
    ).to_dict()


# ============================================================================
# Graph Nodes
# ============================================================================

def _load_matrix(matrix_store: Optional[MatrixStore]) -> Optional[DecisionMatrix]:
    """Latest matrix, or None when there is none or the source fails."""
    if matrix_store is None:
        return None
    try:
        return matrix_store.latest()
    except MatrixUnavailable as e:
        logger.warning(f"Decision matrix unavailable, using baseline classification: {e}")
    except Exception as e:
        logger.warning(f"Decision matrix source failed, using baseline classification: {e}", exc_info=True)
    return None


def make_nodes(
    capabilities: LLMCapabilities,
    matrix_store: Optional[MatrixStore],
    config: WorkflowConfig,
    scrubber: SensitiveContentScrubber,
) -> Dict[str, Callable[[ClassificationState], dict]]:
    """Build the node functions, closed over the workflow's collaborators."""

    def classify_node(state: ClassificationState) -> dict:
        """Baseline classification of the description plus answers so far."""
        print("--- NODE: Classify ---")

        loop_state = ClarificationLoopState.from_dict(state.get("loop_state"))
        loop_state, recent, summary = compress_history(
            loop_state,
            state.get("qa_history", []),
            capabilities,
            state.get("model_config"),
            config.clarification,
        )

        baseline = capabilities.classify(
            state["description"], recent, state.get("model_config"), context_summary=summary
        )
        if baseline.action == ConfidenceAction.AUTO_CLASSIFY:
            loop_state = mark_ready(loop_state)

        logger.info(
            f"Baseline: {baseline.category.value} ({baseline.confidence:.1%}), action={baseline.action.value}"
        )
        return {
            "baseline": baseline.to_dict(),
            "loop_state": loop_state.to_dict(),
            "status": SessionStatus.CLASSIFYING.value,
        }

    def clarify_node(state: ClassificationState) -> dict:
        """Ask the next questions, or force the loop to end."""
        print("--- NODE: Clarify ---")

        baseline = BaselineClassification.from_dict(state["baseline"])
        loop_state = plan_questions(
            ClarificationLoopState.from_dict(state.get("loop_state")),
            state["description"],
            baseline,
            state.get("qa_history", []),
            capabilities,
            state.get("model_config"),
            config.clarification,
            scrubber,
        )

        if loop_state.is_forced:
            return {
                "loop_state": loop_state.to_dict(),
                "pending_questions": [],
                "status": SessionStatus.EXTRACTING_ATTRIBUTES.value,
            }

        questions = list(loop_state.pending_questions)
        pii_scrubbed = bool(state.get("pii_scrubbed")) or loop_state.questions_scrubbed
        event_state = dict(state, pii_scrubbed=pii_scrubbed)
        return {
            "loop_state": loop_state.to_dict(),
            "pending_questions": questions,
            "pii_scrubbed": pii_scrubbed,
            "status": SessionStatus.CLARIFYING.value,
            "audit_events": [_event(event_state, AuditEventType.CLARIFICATION, {  # type: ignore[arg-type]
                "question_count": len(questions),
                "questions": questions,
                "turn": len(state.get("qa_history", [])),
                "baseline": baseline.to_dict(),
            })],
        }

    def manual_review_node(state: ClassificationState) -> dict:
        """Terminal: confidence too low for an automatic category."""
        print("--- NODE: Manual Review ---")
        logger.info(f"Session {state['session_id']} routed to manual review")
        return {
            "status": SessionStatus.MANUAL_REVIEW.value,
            "pending_questions": [],
            "final_classification": None,
            "audit_events": [_event(state, AuditEventType.CLASSIFICATION, {
                "outcome": SessionStatus.MANUAL_REVIEW.value,
                "baseline": state.get("baseline"),
                "turns": len(state.get("qa_history", [])),
            })],
        }

    def extract_node(state: ClassificationState) -> dict:
        """Pin the active matrix and extract its attributes."""
        print("--- NODE: Attribute Extractor ---")

        matrix = _load_matrix(matrix_store)
        attributes = matrix.attributes if matrix is not None else DEFAULT_ATTRIBUTES

        extracted = extract_attributes(
            state["description"],
            state.get("qa_history", []),
            attributes,
            capabilities,
            state.get("model_config"),
            strict=config.strict_extraction,
        )
        return {
            "matrix": matrix.to_dict() if matrix is not None else None,
            "matrix_version": matrix.version if matrix is not None else None,
            "extracted_attributes": {name: value.to_dict() for name, value in extracted.items()},
            "status": SessionStatus.EVALUATING_MATRIX.value,
        }

    def evaluate_node(state: ClassificationState) -> dict:
        """Apply the pinned matrix and commit the final classification."""
        print("--- NODE: Decision Matrix Evaluator ---")

        baseline = Classification.from_dict(state["baseline"])
        values = {
            name: ExtractedAttributeValue.from_dict(data)
            for name, data in (state.get("extracted_attributes") or {}).items()
        }

        matrix_data = state.get("matrix")
        if matrix_data:
            evaluation = evaluate_matrix(DecisionMatrix.from_dict(matrix_data), baseline, values)
            final = evaluation.final_classification
            evaluation_dict: Optional[Dict[str, Any]] = evaluation.to_dict()
            triggered = evaluation.triggered_rule_ids
        else:
            final = baseline
            evaluation_dict = None
            triggered = []

        history: List[HistoryEntry] = list(state.get("classification_history") or [])
        reason = state.get("reclassification_reason")
        entry: HistoryEntry = {
            "classification": final.to_dict(),
            "evaluation": evaluation_dict,
            "extracted_attributes": dict(state.get("extracted_attributes") or {}),
            "matrix_version": state.get("matrix_version"),
            "matrix_applied": evaluation_dict is not None,
            "reclassification": reason is not None,
            "reason": reason,
            "confidence_delta": None,
            "category_changed": None,
            "timestamp": _now(),
        }

        previous = history[-1]["classification"] if history else state.get("baseline")
        if reason is not None and previous:
            entry["confidence_delta"] = round(final.confidence - float(previous["confidence"]), 4)
            entry["category_changed"] = final.category.value != previous["category"]

        loop_state = ClarificationLoopState.from_dict(state.get("loop_state"))
        event_type = AuditEventType.RECLASSIFICATION if reason is not None else AuditEventType.CLASSIFICATION
        event = _event(state, event_type, {
            "outcome": SessionStatus.COMPLETED.value,
            "category": final.category.value,
            "confidence": round(final.confidence, 4),
            "baseline_category": baseline.category.value,
            "overridden": final.category != baseline.category,
            "triggered_rule_ids": triggered,
            "matrix_applied": evaluation_dict is not None,
            "forced_reason": loop_state.forced_reason.value if loop_state.forced_reason else None,
            "reason": reason,
            "confidence_delta": entry["confidence_delta"],
            "category_changed": entry["category_changed"],
        })

        logger.info(
            f"Final classification: {final.category.value} ({final.confidence:.1%}), "
            f"{len(triggered)} rule(s) triggered"
        )
        return {
            "evaluation": evaluation_dict,
            "final_classification": final.to_dict(),
            "matrix_applied": evaluation_dict is not None,
            "classification_history": history + [entry],
            "pending_questions": [],
            "status": SessionStatus.COMPLETED.value,
            "audit_events": [event],
        }

    def refresh_baseline_node(state: ClassificationState) -> dict:
        """Re-run baseline classification for a reclassification."""
        print("--- NODE: Refresh Baseline ---")
        baseline = capabilities.classify(state["description"], state.get("qa_history", []), state.get("model_config"))
        return {"baseline": baseline.to_dict()}

    return {
        CLASSIFY: classify_node,
        CLARIFY: clarify_node,
        MANUAL_REVIEW: manual_review_node,
        EXTRACT: extract_node,
        EVALUATE: evaluate_node,
        REFRESH_BASELINE: refresh_baseline_node,
    }


# ============================================================================
# Graphs
# ============================================================================

def build_graph(
    capabilities: LLMCapabilities,
    matrix_store: Optional[MatrixStore],
    config: Optional[WorkflowConfig] = None,
    scrubber: Optional[SensitiveContentScrubber] = None,
):
    """
    Constructs the per-turn LangGraph state machine.
    """
    config = config or WorkflowConfig()
    nodes = make_nodes(capabilities, matrix_store, config, scrubber or PassthroughScrubber())
    max_turns = config.clarification.max_total_questions

    builder = StateGraph(ClassificationState)

    # 1. Add Nodes
    for name in (CLASSIFY, CLARIFY, MANUAL_REVIEW, EXTRACT, EVALUATE):
        builder.add_node(name, nodes[name])

    # 2. Add Edges
    builder.add_conditional_edges(START, route_entry, [CLASSIFY, EXTRACT])
    builder.add_conditional_edges(
        CLASSIFY,
        lambda state: route_after_classification(state, max_turns),
        [CLARIFY, MANUAL_REVIEW, EXTRACT],
    )
    builder.add_conditional_edges(CLARIFY, route_after_clarification, [EXTRACT, END])
    builder.add_edge(MANUAL_REVIEW, END)
    builder.add_edge(EXTRACT, EVALUATE)
    builder.add_edge(EVALUATE, END)

    # 3. Compile
    return builder.compile()


def build_reclassification_graph(
    capabilities: LLMCapabilities,
    matrix_store: Optional[MatrixStore],
    config: Optional[WorkflowConfig] = None,
):
    """Extraction + evaluation only, optionally refreshing the baseline first."""
    config = config or WorkflowConfig()
    nodes = make_nodes(capabilities, matrix_store, config, PassthroughScrubber())

    builder = StateGraph(ClassificationState)
    builder.add_node(REFRESH_BASELINE, nodes[REFRESH_BASELINE])
    builder.add_node(EXTRACT, nodes[EXTRACT])
    builder.add_node(EVALUATE, nodes[EVALUATE])

    def check_refresh(state):
        if state.get("refresh_baseline"):
            return REFRESH_BASELINE
        return EXTRACT

    builder.add_conditional_edges(START, check_refresh, [REFRESH_BASELINE, EXTRACT])
    builder.add_edge(REFRESH_BASELINE, EXTRACT)
    builder.add_edge(EXTRACT, EVALUATE)
    builder.add_edge(EVALUATE, END)
    return builder.compile()


# ============================================================================
# Router
# ============================================================================

@dataclass
class _SessionLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class ClassificationRouter:
    """
    Session-level entry point: submit, answer, resume, reclassify.

    Requests for the same session are serialized; different sessions run
    concurrently. Every capability call made by the graphs runs under
    config.retry, whatever binding is passed in.
    """

    def __init__(
        self,
        capabilities: LLMCapabilities,
        matrix_store: Optional[MatrixStore] = None,
        session_store: Optional[SessionStore] = None,
        audit_sink: Optional[AuditSink] = None,
        scrubber: Optional[SensitiveContentScrubber] = None,
        config: Optional[WorkflowConfig] = None,
        sleep_func: Callable[[float], None] = time.sleep,
    ):
        self.config = config or WorkflowConfig()
        self.capabilities = RetryingCapabilities.wrap(capabilities, self.config.retry, sleep_func)
        self.matrix_store = matrix_store
        self.session_store = session_store if session_store is not None else InMemorySessionStore()
        self.audit_sink = audit_sink if audit_sink is not None else InMemoryAuditSink()
        self.scrubber = scrubber or PassthroughScrubber()

        self.graph = build_graph(self.capabilities, matrix_store, self.config, self.scrubber)
        self.reclassification_graph = build_reclassification_graph(self.capabilities, matrix_store, self.config)

        self._locks: Dict[str, _SessionLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _session_lock(self, session_id: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.get(session_id)
            if entry is None:
                entry = self._locks[session_id] = _SessionLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            # Drop the entry once nobody holds or waits for it
            with self._locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[session_id]

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def submit(
        self,
        description: str,
        user_id: str = "anonymous",
        model_config: Optional[Mapping[str, Any]] = None,
        force_classify: bool = False,
        session_id: Optional[str] = None,
    ) -> WorkflowResult:
        """
        Start a new session for a process description.

        Raises:
            ValueError: for an empty description or a malformed session_id
            CapabilityUnavailable: a capability stayed unreachable; the
                session is stored as submitted and can be resumed
        """
        if not description or not description.strip():
            raise ValueError("Process description must not be empty")

        session_id = validate_session_id(session_id) if session_id else str(uuid.uuid4())
        with self._session_lock(session_id):
            scrubbed = self.scrubber.scrub(description.strip())
            config = ModelConfig.from_mapping(model_config, ModelConfig.from_classifier_config(self.config.classifier))

            state: ClassificationState = {
                "session_id": session_id,
                "user_id": user_id,
                "status": SessionStatus.SUBMITTED.value,
                "created_at": _now(),
                "updated_at": _now(),
                "model_config": config.to_dict(),
                "description": scrubbed.text,
                "force_classify": force_classify,
                "qa_history": [],
                "loop_state": ClarificationLoopState().to_dict(),
                "pending_questions": [],
                "pii_scrubbed": scrubbed.altered,
                "baseline": None,
                "extracted_attributes": {},
                "matrix_version": None,
                "matrix_applied": False,
                "evaluation": None,
                "final_classification": None,
                "classification_history": [],
                "reclassification_reason": None,
                "refresh_baseline": False,
            }
            self.session_store.save(state)

            self.audit_sink.record(AuditEvent(
                session_id=session_id,
                event_type=AuditEventType.INPUT,
                user_id=user_id,
                data={"description": scrubbed.text, "force_classify": force_classify},
                pii_scrubbed=scrubbed.altered,
                metadata=self._metadata(state),
            ))
            logger.info(f"Session {session_id} submitted by {user_id}")

            return self._run(self.graph, state)

    def answer(
        self,
        session_id: str,
        answers: Sequence[str],
        force_classify: bool = False,
    ) -> WorkflowResult:
        """
        Submit answers to the pending clarification questions.

        With force_classify and no answers the loop ends immediately and
        the current baseline goes straight to extraction.

        Raises:
            SessionNotFound: unknown session
            InvalidSessionState: the session is not waiting for answers
            ValueError: more answers than pending questions
        """
        with self._session_lock(session_id):
            state = self.session_store.load(session_id)
            status = state.get("status")
            if status != SessionStatus.CLARIFYING.value:
                raise InvalidSessionState(session_id, str(status), "answer")

            loop_state = ClarificationLoopState.from_dict(state.get("loop_state"))

            if force_classify and not answers:
                loop_state = loop_state.force(ForcedReason.CALLER_REQUEST)
                state["status"] = SessionStatus.EXTRACTING_ATTRIBUTES.value
            else:
                scrubbed_answers = []
                for text in answers:
                    result = self.scrubber.scrub(text)
                    scrubbed_answers.append(result.text)
                    state["pii_scrubbed"] = bool(state.get("pii_scrubbed")) or result.altered
                loop_state, history = record_answers(loop_state, state.get("qa_history", []), scrubbed_answers)
                state["qa_history"] = history  # type: ignore[typeddict-item]
                state["status"] = SessionStatus.CLASSIFYING.value

            state["loop_state"] = loop_state.to_dict()
            state["pending_questions"] = []
            state["force_classify"] = force_classify or bool(state.get("force_classify"))
            state["updated_at"] = _now()
            self.session_store.save(state)

            return self._run(self.graph, state)

    def resume(self, session_id: str) -> WorkflowResult:
        """
        Retry the turn that was interrupted by CapabilityUnavailable.

        Raises:
            InvalidSessionState: the session is finished or waiting for answers
        """
        with self._session_lock(session_id):
            state = self.session_store.load(session_id)
            status = SessionStatus(state.get("status", SessionStatus.SUBMITTED.value))
            if status.is_terminal or status == SessionStatus.CLARIFYING:
                raise InvalidSessionState(session_id, status.value, "resume")

            logger.info(f"Resuming session {session_id} from {status.value}")
            return self._run(self.graph, state)

    def reclassify(
        self,
        session_id: str,
        reason: Optional[str] = None,
        refresh_baseline: bool = False,
    ) -> WorkflowResult:
        """
        Re-run extraction and matrix evaluation for a finished session.

        The stored baseline is reused unless refresh_baseline is set, so
        the same inputs against the same matrix give the same result.
        The new classification is appended to the session history.

        Raises:
            InvalidSessionState: the session has not finished yet
        """
        with self._session_lock(session_id):
            state = self.session_store.load(session_id)
            status = SessionStatus(state.get("status", SessionStatus.SUBMITTED.value))
            if not status.is_terminal or not state.get("baseline"):
                raise InvalidSessionState(session_id, status.value, "reclassify")

            state["reclassification_reason"] = reason or "Reclassification requested"
            state["refresh_baseline"] = refresh_baseline
            logger.info(f"Reclassifying session {session_id}: {state['reclassification_reason']}")

            return self._run(self.reclassification_graph, state)

    def get_session(self, session_id: str) -> ClassificationState:
        """
        Raises:
            SessionNotFound: unknown session
        """
        return self.session_store.load(session_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(self, graph: Any, state: ClassificationState) -> WorkflowResult:
        run_state = dict(state)
        run_state["audit_events"] = []

        start_time = time.time()
        result = graph.invoke(run_state)
        latency_ms = (time.time() - start_time) * 1000

        events = result.get("audit_events", [])
        result["audit_events"] = []
        result["reclassification_reason"] = None
        result["refresh_baseline"] = False
        result["updated_at"] = _now()
        self.session_store.save(result)

        for data in events:
            event = AuditEvent.from_dict(data)
            event.metadata = self._metadata(result, latency_ms)
            self.audit_sink.record(event)

        return WorkflowResult.from_state(result)

    def _metadata(self, state: Mapping[str, Any], latency_ms: Optional[float] = None) -> AuditMetadata:
        model_config = state.get("model_config") or {}
        evaluation = state.get("evaluation") or {}
        return AuditMetadata(
            model_version=model_config.get("model"),
            llm_provider=model_config.get("provider"),
            latency_ms=latency_ms,
            decision_matrix_version=state.get("matrix_version"),
            triggered_rule_ids=[r["rule_id"] for r in evaluation.get("triggered_rules", [])],
        )
