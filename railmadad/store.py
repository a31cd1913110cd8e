# Persistent complaint store: one blob, merge-on-write, external change detection

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional

from pydantic import ValidationError
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from . import config
from .errors import PersistenceError
from .models import ComplaintBase, parse_complaint

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------
class MemoryBackend:
    """Process-local blob. Share one instance between repositories to model
    several writers (browser tabs) on the same store."""

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None):
        self._blob = json.dumps(records or [])
        self._generation = 0

    def load(self) -> List[Dict[str, Any]]:
        return json.loads(self._blob)

    def save(self, records: List[Dict[str, Any]]) -> None:
        try:
            self._blob = json.dumps(records)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Could not serialize complaints: {e}") from e
        self._generation += 1

    def generation(self) -> Hashable:
        return self._generation


class JsonFileBackend:
    """A single JSON array on disk, rewritten whole on every save."""

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> List[Dict[str, Any]]:
        if not self.path.is_file():
            return []
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Could not read {self.path}: {e}") from e
        if not text.strip():
            return []
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Corrupt complaint store {self.path}: {e}") from e
        if not isinstance(data, list):
            raise PersistenceError(f"Complaint store {self.path} must hold a JSON array")
        return data

    def save(self, records: List[Dict[str, Any]]) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            payload = json.dumps(records, ensure_ascii=False)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not write {self.path}: {e}") from e

    def generation(self) -> Hashable:
        # Content digest; mtime alone is too coarse for back-to-back writes
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Could not read {self.path}: {e}") from e
        return hashlib.sha256(data).hexdigest()


class MongoBackend:
    """The whole collection kept as one array inside a single document."""

    def __init__(self, collection, document_id: str = config.STORE_DOCUMENT_ID):
        self.collection = collection
        self.document_id = document_id

    def load(self) -> List[Dict[str, Any]]:
        try:
            doc = self.collection.find_one({"_id": self.document_id})
        except PyMongoError as e:
            raise PersistenceError(f"Could not read complaint document: {e}") from e
        if not doc:
            return []
        data = doc.get("data") or []
        if not isinstance(data, list):
            raise PersistenceError("Complaint document 'data' must be an array")
        return data

    def save(self, records: List[Dict[str, Any]]) -> None:
        try:
            self.collection.update_one(
                {"_id": self.document_id},
                {"$set": {"data": records}, "$inc": {"generation": 1}},
                upsert=True)
        except PyMongoError as e:
            raise PersistenceError(f"Could not write complaint document: {e}") from e

    def generation(self) -> Hashable:
        try:
            doc = self.collection.find_one({"_id": self.document_id}, {"generation": 1})
        except PyMongoError as e:
            raise PersistenceError(f"Could not read complaint generation: {e}") from e
        return doc.get("generation", 0) if doc else 0


def build_backend(kind: Optional[str] = None):
    kind = (kind or config.STORE_BACKEND).lower()
    if kind == "memory":
        return MemoryBackend()
    if kind == "mongo":
        client = MongoClient(config.MONGODB_URL)
        return MongoBackend(client[config.MONGODB_DB].complaints)
    if kind == "file":
        return JsonFileBackend(config.STORE_PATH)
    raise ValueError(f"Unknown STORE_BACKEND: {kind}")

# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------
def _record_id(raw: Any) -> Optional[str]:
    return raw.get("id") if isinstance(raw, dict) else None


class ComplaintRepository:
    """Owns the persisted complaint collection.

    Every write re-reads the current blob and rewrites it whole. There is no
    locking; two writers racing on the same record end last-writer-wins.
    Subscribers are told when the backend shows a write this repository did
    not make itself.
    """

    def __init__(self, backend):
        self.backend = backend
        self._subscribers: List[Callable[[], None]] = []
        try:
            self._seen_generation = backend.generation()
        except PersistenceError as e:
            logger.error("Could not read store generation: %s", e)
            self._seen_generation = None

    # -- reads -------------------------------------------------------------
    def load_raw(self) -> List[Dict[str, Any]]:
        return self.backend.load()

    def load_all(self) -> List[ComplaintBase]:
        complaints = []
        for raw in self.load_raw():
            try:
                complaints.append(parse_complaint(raw))
            except (ValidationError, TypeError, AttributeError) as e:
                logger.warning("Skipping unreadable complaint record %s: %s", _record_id(raw), e)
        return complaints

    def get(self, complaint_id: str) -> Optional[ComplaintBase]:
        for raw in self.load_raw():
            if _record_id(raw) == complaint_id:
                try:
                    return parse_complaint(raw)
                except (ValidationError, TypeError, AttributeError) as e:
                    logger.warning("Complaint record %s is unreadable: %s", complaint_id, e)
                    return None
        return None

    def exists(self, complaint_id: str) -> bool:
        return any(_record_id(raw) == complaint_id for raw in self.load_raw())

    # -- writes ------------------------------------------------------------
    def _write_raw(self, records: List[Dict[str, Any]]) -> None:
        external = self.backend.generation() != self._seen_generation
        self.backend.save(records)
        self._seen_generation = self.backend.generation()
        if external:
            self._notify()

    def save_all(self, complaints: Iterable[ComplaintBase]) -> None:
        self._write_raw([c.to_wire() for c in complaints])

    def merge_write(self, changed: Iterable[ComplaintBase]) -> None:
        """Replace or insert ``changed`` records in the current snapshot.

        Records the snapshot holds but ``changed`` does not (including ones
        this process cannot parse) are written back untouched. New ids go to
        the front, newest first.
        """
        pending = {c.id: c.to_wire() for c in changed}
        merged = []
        for raw in self.load_raw():
            rid = _record_id(raw)
            if rid in pending:
                merged.append(pending.pop(rid))
            else:
                merged.append(raw)
        self._write_raw(list(pending.values()) + merged)

    def remove(self, ids: Iterable[str]) -> int:
        doomed = set(ids)
        current = self.load_raw()
        kept = [raw for raw in current if _record_id(raw) not in doomed]
        removed = len(current) - len(kept)
        if removed:
            self._write_raw(kept)
        return removed

    # -- change signal -----------------------------------------------------
    def subscribe(self, on_external_change: Callable[[], None]) -> Callable[[], None]:
        self._subscribers.append(on_external_change)

        def unsubscribe():
            if on_external_change in self._subscribers:
                self._subscribers.remove(on_external_change)
        return unsubscribe

    def check_for_external_change(self) -> bool:
        current = self.backend.generation()
        if current == self._seen_generation:
            return False
        self._seen_generation = current
        self._notify()
        return True

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception as e:
                logger.error("Change subscriber failed: %s", e)
