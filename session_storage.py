"""
Classification session storage using JSON files.
One file per session; the in-memory store is used by tests and the CLI.
"""
import copy
import json
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from errors import SessionNotFound
from state import ClassificationState

logger = logging.getLogger(__name__)

STORAGE_DIR = Path(__file__).parent / "storage" / "sessions"

# Keys that only live for the duration of one graph run
TRANSIENT_KEYS = ("audit_events", "matrix")

# Letters, digits, "-" and "_" only; session ids double as file names
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,127}$")


def validate_session_id(session_id: str) -> str:
    """
    Raises:
        ValueError: if the id could escape the storage directory
    """
    if not isinstance(session_id, str) or not SESSION_ID_PATTERN.match(session_id):
        raise ValueError(f"Invalid session id: {session_id!r}")
    return session_id


def _persistable(session: ClassificationState) -> Dict:
    return {k: v for k, v in session.items() if k not in TRANSIENT_KEYS}


class SessionStore(ABC):
    """Where sessions live between turns."""

    @abstractmethod
    def save(self, session: ClassificationState) -> None:
        ...

    @abstractmethod
    def load(self, session_id: str) -> ClassificationState:
        """
        Raises:
            SessionNotFound: if the session does not exist
        """
        ...

    @abstractmethod
    def list_all(self) -> List[ClassificationState]:
        ...

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        ...


class InMemorySessionStore(SessionStore):
    def __init__(self):
        self._sessions: Dict[str, Dict] = {}
        self._lock = threading.Lock()

    def save(self, session: ClassificationState) -> None:
        with self._lock:
            self._sessions[session["session_id"]] = copy.deepcopy(_persistable(session))

    def load(self, session_id: str) -> ClassificationState:
        with self._lock:
            if session_id not in self._sessions:
                raise SessionNotFound(session_id)
            return copy.deepcopy(self._sessions[session_id])  # type: ignore[return-value]

    def list_all(self) -> List[ClassificationState]:
        with self._lock:
            return [copy.deepcopy(s) for s in self._sessions.values()]  # type: ignore[misc]

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None


class JsonSessionStore(SessionStore):
    """Stores each session as {session_id}.json."""

    def __init__(self, storage_dir: Optional[str] = None):
        self.storage_dir = Path(storage_dir) if storage_dir else STORAGE_DIR
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        return self.storage_dir / f"{validate_session_id(session_id)}.json"

    def save(self, session: ClassificationState) -> None:
        """Save a session to disk."""
        session_id = session["session_id"]
        session_json = {k: v for k, v in _persistable(session).items() if v is not None}

        tmp_path = self._path(session_id).with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(session_json, f, indent=2, default=str)
        tmp_path.replace(self._path(session_id))

        logger.debug(f"Saved session {session_id} ({session.get('status')})")

    def load(self, session_id: str) -> ClassificationState:
        """
        Load a session from disk.

        Raises:
            SessionNotFound: if no file exists for the session
        """
        file_path = self._path(session_id)
        if not file_path.exists():
            raise SessionNotFound(session_id)

        with open(file_path, "r") as f:
            return json.load(f)

    def list_all(self) -> List[ClassificationState]:
        """List all sessions from disk, skipping unreadable files."""
        sessions = []
        for file_path in self.storage_dir.glob("*.json"):
            try:
                with open(file_path, "r") as f:
                    sessions.append(json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Error loading {file_path}: {e}")
        return sessions

    def delete(self, session_id: str) -> bool:
        file_path = self._path(session_id)
        if file_path.exists():
            file_path.unlink()
            logger.info(f"Deleted session {session_id}")
            return True
        return False

    @classmethod
    def from_env(cls) -> "JsonSessionStore":
        return cls(os.getenv("SESSION_STORAGE_DIR") or None)
