"""
Tests for session persistence and the audit trail sinks.
"""

import json

import pytest

from audit_log import (
    AuditEvent,
    AuditEventType,
    AuditMetadata,
    InMemoryAuditSink,
    JsonlAuditSink,
    PassthroughScrubber,
)
from errors import SessionNotFound
from session_storage import InMemorySessionStore, JsonSessionStore, SessionStore, validate_session_id


def make_session(session_id="s-1", **extra):
    session = {
        "session_id": session_id,
        "user_id": "analyst",
        "status": "clarifying",
        "description": "We re-key purchase orders into SAP",
        "qa_history": [{"question": "How many per day?", "answer": "About 300"}],
        "audit_events": [{"event_type": "input"}],
        "matrix": {"version": "1.0"},
    }
    session.update(extra)
    return session


@pytest.fixture(params=["memory", "json"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemorySessionStore()
    return JsonSessionStore(str(tmp_path))


# ============================================================================
# Session Stores
# ============================================================================

class TestSessionStore:
    """Both stores behave the same way."""

    def test_save_and_load(self, store):
        store.save(make_session())

        loaded = store.load("s-1")

        assert loaded["description"] == "We re-key purchase orders into SAP"
        assert loaded["qa_history"][0]["answer"] == "About 300"

    def test_transient_keys_are_not_persisted(self, store):
        store.save(make_session())

        loaded = store.load("s-1")

        assert "audit_events" not in loaded
        assert "matrix" not in loaded

    def test_missing_session(self, store):
        with pytest.raises(SessionNotFound):
            store.load("nope")

    def test_loaded_copy_is_independent(self, store):
        store.save(make_session())

        loaded = store.load("s-1")
        loaded["qa_history"].append({"question": "x", "answer": "y"})

        assert len(store.load("s-1")["qa_history"]) == 1

    def test_overwrite_and_list(self, store):
        store.save(make_session())
        store.save(make_session(status="completed"))
        store.save(make_session("s-2"))

        assert store.load("s-1")["status"] == "completed"
        assert sorted(s["session_id"] for s in store.list_all()) == ["s-1", "s-2"]

    def test_delete(self, store):
        store.save(make_session())

        assert store.delete("s-1") is True
        assert store.delete("s-1") is False


class TestJsonSessionStore:
    def test_none_values_are_dropped(self, tmp_path):
        store = JsonSessionStore(str(tmp_path))
        store.save(make_session(evaluation=None))

        stored = json.loads((tmp_path / "s-1.json").read_text())

        assert "evaluation" not in stored
        assert not list(tmp_path.glob("*.tmp"))

    def test_unreadable_files_are_skipped_when_listing(self, tmp_path):
        store = JsonSessionStore(str(tmp_path))
        store.save(make_session())
        (tmp_path / "broken.json").write_text("{")

        assert [s["session_id"] for s in store.list_all()] == ["s-1"]

    def test_ids_cannot_escape_the_storage_dir(self, tmp_path):
        storage_dir = tmp_path / "sessions"
        store = JsonSessionStore(str(storage_dir))

        with pytest.raises(ValueError):
            store.save(make_session("../escape"))
        with pytest.raises(ValueError):
            store.load("../escape")
        with pytest.raises(ValueError):
            store.delete("../escape")

        assert not list(tmp_path.glob("escape*"))


class TestSessionIds:
    def test_uuid_is_valid(self):
        session_id = "0b8f7f5e-3c1d-4a52-9a57-6f1e2d3c4b5a"
        assert validate_session_id(session_id) == session_id

    @pytest.mark.parametrize("session_id", ["", "..", "a/b", "../x", "a\\b", "-leading-dash", "x" * 129, None])
    def test_unsafe_ids(self, session_id):
        with pytest.raises(ValueError):
            validate_session_id(session_id)

    def test_stores_share_the_interface(self, tmp_path):
        assert isinstance(InMemorySessionStore(), SessionStore)
        assert isinstance(JsonSessionStore(str(tmp_path)), SessionStore)

        with pytest.raises(TypeError):
            SessionStore()


# ============================================================================
# Audit Trail
# ============================================================================

class TestAuditSinks:
    """Tests for recording and reading back audit events."""

    def _event(self, session_id="s-1", event_type=AuditEventType.CLASSIFICATION):
        return AuditEvent(
            session_id=session_id,
            event_type=event_type,
            user_id="analyst",
            data={"category": "RPA"},
            pii_scrubbed=True,
            metadata=AuditMetadata(
                model_version="gpt-4o",
                llm_provider="openai",
                latency_ms=812.3456,
                decision_matrix_version="1.0",
                triggered_rule_ids=["high-volume-low-risk"],
            ),
        )

    def test_in_memory_filters_by_session(self):
        sink = InMemoryAuditSink()
        sink.record(self._event())
        sink.record(self._event("s-2"))

        assert len(sink.events_for_session("s-1")) == 1

    def test_jsonl_appends_and_reads_back(self, tmp_path):
        sink = JsonlAuditSink(str(tmp_path / "audit" / "events.jsonl"))
        sink.record(self._event(event_type=AuditEventType.INPUT))
        sink.record(self._event())
        sink.record(self._event("s-2"))

        events = sink.events_for_session("s-1")

        assert [e.event_type for e in events] == [AuditEventType.INPUT, AuditEventType.CLASSIFICATION]
        assert events[1].metadata.triggered_rule_ids == ["high-volume-low-risk"]
        assert events[1].metadata.latency_ms == 812.35
        assert events[1].pii_scrubbed is True

    def test_jsonl_without_file(self, tmp_path):
        assert JsonlAuditSink(str(tmp_path / "none.jsonl")).events_for_session("s-1") == []

    def test_passthrough_scrubber(self):
        result = PassthroughScrubber().scrub("Call Jane on 555-0101")

        assert result.text == "Call Jane on 555-0101"
        assert result.altered is False
