"""Storage backends for the heartbeat ledger.

The ledger is a single mapping of ``"<agentType>_<sourceId>"`` to a record
dict. Backends only know about that mapping; record semantics live in
:mod:`event_monitoring.heartbeat.ledger`.
"""

import json
import threading
from abc import ABC, abstractmethod
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional

import structlog


logger = structlog.get_logger(__name__)

Document = Dict[str, Dict[str, Any]]


class HeartbeatStore(ABC):
    """Whole-document storage with per-key helpers.

    ``upsert`` and ``remove`` are read-modify-write over the full document.
    Between processes sharing one file the last writer wins; within one
    process the helpers are serialized by ``self._lock``.
    """

    def __init__(self):
        self._lock = threading.Lock()

    @abstractmethod
    def read_all(self) -> Document:
        """Return a copy of the whole document."""

    @abstractmethod
    def write_all(self, document: Document) -> None:
        """Replace the whole document."""

    def upsert(self, key: str, record: Dict[str, Any]) -> None:
        with self._lock:
            document = self.read_all()
            document[key] = record
            self.write_all(document)

    def remove(self, key: str) -> bool:
        """Delete ``key``; returns False when it was not present."""
        with self._lock:
            document = self.read_all()
            if key not in document:
                return False
            del document[key]
            self.write_all(document)
            return True

    def compare_and_swap(
        self,
        key: str,
        expected: Optional[Dict[str, Any]],
        new: Optional[Dict[str, Any]]
    ) -> bool:
        """Replace ``key`` only if it still holds ``expected``.

        ``expected=None`` means the key must be absent and ``new=None``
        deletes it. Atomic against other callers in this process only.
        """
        with self._lock:
            document = self.read_all()
            if document.get(key) != expected:
                return False
            if new is None:
                document.pop(key, None)
            else:
                document[key] = new
            self.write_all(document)
            return True


class InMemoryHeartbeatStore(HeartbeatStore):
    """Dict backed store for tests and embedded use."""

    def __init__(self, initial: Optional[Document] = None):
        super().__init__()
        self._document: Document = deepcopy(initial or {})

    def read_all(self) -> Document:
        return deepcopy(self._document)

    def write_all(self, document: Document) -> None:
        self._document = deepcopy(document)


class JsonFileHeartbeatStore(HeartbeatStore):
    """Ledger persisted as one JSON document on disk."""

    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)
        self.ensure_status_file()

    def ensure_status_file(self):
        """Create the parent directory and an empty document on first use."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.write_text("{}", encoding="utf-8")
            logger.debug("Created heartbeat status file", path=str(self.path))

    def read_all(self) -> Document:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            # write_all recreates the file on the next update
            logger.warning("Heartbeat status file missing, starting empty", path=str(self.path))
            return {}
        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as e:
            logger.error("Heartbeat status file is not valid JSON", path=str(self.path), error=str(e))
            return {}
        if not isinstance(data, dict):
            logger.error("Heartbeat status file is not a JSON object", path=str(self.path))
            return {}
        return data

    def write_all(self, document: Document) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f"{self.path.name}.tmp")
        tmp.write_text(json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(self.path)
