"""
Versioned decision matrix storage.

Each published matrix is written once as v{version}.json and never
changed. The latest version is the active matrix used for evaluation.
"""
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from decision_matrix import (
    DEFAULT_DECISION_MATRIX,
    DecisionMatrix,
    next_version,
    sanitize_generated_matrix,
    validate_matrix,
    version_key,
)
from errors import CapabilityError, MatrixUnavailable

logger = logging.getLogger(__name__)

MATRIX_STORAGE_DIR = Path(__file__).parent / "storage" / "decision-matrix"


class MatrixStore(ABC):
    """Source of published decision matrices."""

    def __init__(self):
        self._publish_lock = threading.Lock()

    @abstractmethod
    def _write(self, matrix: DecisionMatrix) -> None:
        ...

    @abstractmethod
    def get(self, version: str) -> Optional[DecisionMatrix]:
        ...

    @abstractmethod
    def list_versions(self) -> List[str]:
        """All published versions, oldest first."""
        ...

    def latest(self) -> Optional[DecisionMatrix]:
        """The most recent active matrix, or None if nothing is published."""
        for version in reversed(self.list_versions()):
            matrix = self.get(version)
            if matrix is not None and matrix.active:
                return matrix
        return None

    def publish(self, draft: DecisionMatrix, created_by: str = "admin") -> DecisionMatrix:
        """
        Validate a draft and store it as the next version.

        Raises:
            InvalidMatrixDefinition: if the draft fails validation
        """
        validate_matrix(draft)
        with self._publish_lock:
            versions = self.list_versions()
            version = next_version(versions[-1] if versions else None)
            published = draft.with_version(version, created_by)
            self._write(published)
        logger.info(
            f"Published decision matrix v{version} "
            f"({len(published.attributes)} attributes, {len(published.rules)} rules) by {created_by}"
        )
        return published


class InMemoryMatrixStore(MatrixStore):
    def __init__(self):
        super().__init__()
        self._matrices: Dict[str, DecisionMatrix] = {}

    def _write(self, matrix: DecisionMatrix) -> None:
        self._matrices[matrix.version] = matrix

    def get(self, version: str) -> Optional[DecisionMatrix]:
        return self._matrices.get(version)

    def list_versions(self) -> List[str]:
        return sorted(self._matrices, key=version_key)


class JsonMatrixStore(MatrixStore):
    """Stores one JSON file per matrix version."""

    def __init__(self, storage_dir: Optional[str] = None):
        super().__init__()
        self.storage_dir = Path(storage_dir) if storage_dir else MATRIX_STORAGE_DIR
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, version: str) -> Path:
        return self.storage_dir / f"v{version}.json"

    def _write(self, matrix: DecisionMatrix) -> None:
        with open(self._path(matrix.version), "w") as f:
            json.dump(matrix.to_dict(), f, indent=2)

    def get(self, version: str) -> Optional[DecisionMatrix]:
        file_path = self._path(version)
        if not file_path.exists():
            return None
        try:
            with open(file_path, "r") as f:
                return DecisionMatrix.from_dict(json.load(f))
        except (OSError, ValueError, KeyError) as e:
            raise MatrixUnavailable(f"Could not read decision matrix v{version}: {e}") from e

    def list_versions(self) -> List[str]:
        versions = [p.stem[1:] for p in self.storage_dir.glob("v*.json")]
        return sorted(versions, key=version_key)

    @classmethod
    def from_env(cls) -> "JsonMatrixStore":
        return cls(os.getenv("MATRIX_STORAGE_DIR") or None)


def ensure_initial_matrix(store: MatrixStore, generator: Any = None, model_config: Optional[Dict[str, Any]] = None) -> DecisionMatrix:
    """
    Make sure at least one matrix is published.

    With a generator (an object with generate_matrix()), a model-drafted
    matrix is sanitized and published; if generation fails the built-in
    default matrix is published instead.
    """
    existing = store.latest()
    if existing is not None:
        return existing

    if generator is not None:
        try:
            draft = sanitize_generated_matrix(generator.generate_matrix(model_config))
            if draft.rules:
                return store.publish(draft, created_by="ai")
            logger.warning("Generated matrix had no usable rules; publishing the default matrix")
        except (CapabilityError, NotImplementedError, ValueError) as e:
            logger.warning(f"Matrix generation failed ({e}); publishing the default matrix")

    return store.publish(DEFAULT_DECISION_MATRIX, created_by="system")
