import os
import sys
import json
import logging

from dotenv import load_dotenv

from audit_log import InMemoryAuditSink, JsonlAuditSink
from llm_capabilities import RetryingCapabilities, build_capabilities
from matrix_storage import JsonMatrixStore, ensure_initial_matrix
from session_storage import JsonSessionStore
from state import SessionStatus
from workflow import ClassificationRouter, WorkflowConfig, WorkflowResult

# Load Env
load_dotenv()

logger = logging.getLogger(__name__)


def build_router() -> ClassificationRouter:
    """
    Wires the router from environment configuration.
    """
    config = WorkflowConfig.from_env()
    capabilities = RetryingCapabilities.wrap(
        build_capabilities(config.classifier, config.clarification, config.retry), config.retry
    )

    matrix_store = JsonMatrixStore.from_env()
    generate = os.getenv("GENERATE_INITIAL_MATRIX", "false").lower() == "true"
    ensure_initial_matrix(matrix_store, capabilities if generate else None)

    audit_path = os.getenv("AUDIT_LOG_PATH")
    audit_sink = JsonlAuditSink(audit_path) if audit_path else InMemoryAuditSink()

    return ClassificationRouter(
        capabilities=capabilities,
        matrix_store=matrix_store,
        session_store=JsonSessionStore.from_env(),
        audit_sink=audit_sink,
        config=config,
    )


def print_result(result: WorkflowResult) -> None:
    if result.status == SessionStatus.COMPLETED:
        classification = result.classification or {}
        print(f"\n✅ {classification.get('category')} ({classification.get('confidence', 0):.0%} confidence)")
        print(classification.get("rationale", ""))
        if result.triggered_rule_ids:
            print(f"   Rules triggered: {', '.join(result.triggered_rule_ids)}")
        if not result.matrix_applied:
            print("   (no decision matrix applied)")
        if result.forced_reason:
            print(f"   Clarification ended early: {result.forced_reason}")
    elif result.status == SessionStatus.MANUAL_REVIEW:
        print("\n⚠ Confidence too low for automatic classification; sent to manual review.")


def run_conversation(router: ClassificationRouter, description: str) -> WorkflowResult:
    result = router.submit(description, user_id=os.getenv("USER", "cli"))
    print(f"Session {result.session_id}")

    while result.status == SessionStatus.CLARIFYING:
        answers = []
        for question in result.questions:
            answers.append(input(f"\n❓ {question}\n> "))
        result = router.answer(result.session_id, answers)

    print_result(result)
    return result


if __name__ == "__main__":
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "WARNING"))

    print("Starting Process Transformation Classifier...")
    router = build_router()

    if len(sys.argv) > 2 and sys.argv[1] == "reclassify":
        print_result(router.reclassify(sys.argv[2], reason="Requested from console"))
    elif len(sys.argv) > 2 and sys.argv[1] == "show":
        print(json.dumps(router.get_session(sys.argv[2]), indent=2, default=str))
    else:
        text = " ".join(sys.argv[1:]) or input("Describe the process you want to classify:\n> ")
        run_conversation(router, text)
