"""
Error taxonomy for the classification workflow.

Only capability failures and matrix authoring defects are exceptions.
Rule and condition evaluation never raise for data-shape reasons, and a
forced transition out of the clarification loop is not an error at all.
"""
from typing import Any, List, Optional


class CapabilityError(Exception):
    """Base class for failures talking to an external model capability."""

    def __init__(self, capability: str, message: str, cause: Optional[BaseException] = None):
        self.capability = capability
        self.message = message
        self.cause = cause
        super().__init__(f"{capability}: {message}")


class CapabilityUnavailable(CapabilityError):
    """
    Raised when a capability could not be reached after all retries.

    The session stays at its last committed state so the caller can
    resume the turn later.
    """

    def __init__(
        self,
        capability: str,
        message: str,
        attempts: int = 0,
        cause: Optional[BaseException] = None,
    ):
        self.attempts = attempts
        super().__init__(capability, message, cause)


class ExtractionError(CapabilityUnavailable):
    """Attribute extraction failed (capability unreachable, or strict mode)."""


class MalformedCapabilityOutput(CapabilityError):
    """
    A capability answered, but not in the expected shape.

    Callers retry once with a corrective instruction and then degrade;
    this never terminates a conversation.
    """

    def __init__(self, capability: str, message: str, raw_output: Any = None):
        self.raw_output = raw_output
        super().__init__(capability, message)


class MatrixUnavailable(Exception):
    """The decision matrix source could not provide a matrix."""


class InvalidMatrixDefinition(ValueError):
    """A decision matrix failed validation at publish time."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        summary = "; ".join(self.problems[:5])
        if len(self.problems) > 5:
            summary += f" (+{len(self.problems) - 5} more)"
        super().__init__(f"Invalid decision matrix: {summary}")


class SessionNotFound(KeyError):
    """No stored session exists for the given identifier."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class InvalidSessionState(RuntimeError):
    """The requested operation does not apply to the session's current status."""

    def __init__(self, session_id: str, status: str, operation: str):
        self.session_id = session_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} session {session_id} in status '{status}'"
        )
