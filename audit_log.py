"""
Audit trail for classification sessions.

Every submission, every clarification/classification turn and every
reclassification produces one AuditEvent. Events carry provider/model
ids, latency, triggered rule ids and the matrix version, so a final
category can be traced back to the exact rules and model that produced
it. Whether sensitive content was scrubbed is recorded as a boolean only;
the detected content itself is never logged.
"""

import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# ============================================================================
# Sensitive Content Scrubbing
# ============================================================================

@dataclass(frozen=True)
class ScrubResult:
    text: str
    altered: bool = False


class SensitiveContentScrubber(ABC):
    """Removes sensitive content from text before it is shown or stored."""

    @abstractmethod
    def scrub(self, text: str) -> ScrubResult:
        ...


class PassthroughScrubber(SensitiveContentScrubber):
    """Leaves text untouched. Used when no scrubber is configured."""

    def scrub(self, text: str) -> ScrubResult:
        return ScrubResult(text=text, altered=False)


# ============================================================================
# Audit Events
# ============================================================================

class AuditEventType(Enum):
    INPUT = "input"
    CLARIFICATION = "clarification"
    CLASSIFICATION = "classification"
    RECLASSIFICATION = "reclassification"


@dataclass
class AuditMetadata:
    model_version: Optional[str] = None
    llm_provider: Optional[str] = None
    latency_ms: Optional[float] = None
    decision_matrix_version: Optional[str] = None
    triggered_rule_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_version": self.model_version,
            "llm_provider": self.llm_provider,
            "latency_ms": round(self.latency_ms, 2) if self.latency_ms is not None else None,
            "decision_matrix_version": self.decision_matrix_version,
            "triggered_rule_ids": list(self.triggered_rule_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditMetadata":
        return cls(
            model_version=data.get("model_version"),
            llm_provider=data.get("llm_provider"),
            latency_ms=data.get("latency_ms"),
            decision_matrix_version=data.get("decision_matrix_version"),
            triggered_rule_ids=list(data.get("triggered_rule_ids", [])),
        )


@dataclass
class AuditEvent:
    """One entry in a session's audit trail."""

    session_id: str
    event_type: AuditEventType
    user_id: str = "anonymous"
    data: Dict[str, Any] = field(default_factory=dict)
    pii_scrubbed: bool = False
    metadata: AuditMetadata = field(default_factory=AuditMetadata)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "event_type": self.event_type.value,
            "user_id": self.user_id,
            "data": self.data,
            "pii_scrubbed": self.pii_scrubbed,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEvent":
        return cls(
            event_id=data.get("event_id") or str(uuid.uuid4()),
            session_id=data["session_id"],
            timestamp=data.get("timestamp") or datetime.now(timezone.utc).isoformat(),
            event_type=AuditEventType(data["event_type"]),
            user_id=data.get("user_id", "anonymous"),
            data=dict(data.get("data", {})),
            pii_scrubbed=bool(data.get("pii_scrubbed", False)),
            metadata=AuditMetadata.from_dict(data.get("metadata", {})),
        )


# ============================================================================
# Sinks
# ============================================================================

class AuditSink(ABC):
    """Destination for audit events."""

    @abstractmethod
    def record(self, event: AuditEvent) -> None:
        ...

    def events_for_session(self, session_id: str) -> List[AuditEvent]:
        return []


class InMemoryAuditSink(AuditSink):
    def __init__(self):
        self.events: List[AuditEvent] = []
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self.events.append(event)

    def events_for_session(self, session_id: str) -> List[AuditEvent]:
        with self._lock:
            return [e for e in self.events if e.session_id == session_id]


class JsonlAuditSink(AuditSink):
    """Appends one JSON line per event to a file."""

    def __init__(self, path: str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> None:
        line = json.dumps(event.to_dict(), default=str)
        with self._lock:
            with open(self.path, "a") as f:
                f.write(line + "\n")
        logger.debug(f"Audit: {event.event_type.value} for session {event.session_id}")

    def events_for_session(self, session_id: str) -> List[AuditEvent]:
        if not self.path.exists():
            return []
        events = []
        with self._lock:
            with open(self.path, "r") as f:
                for line in f:
                    if not line.strip():
                        continue
                    entry = json.loads(line)
                    if entry.get("session_id") == session_id:
                        events.append(AuditEvent.from_dict(entry))
        return events
