"""
govledger/storage.py

Key-value state storage for governance records.

Provides two backends behind one abstract map:
1. Memory - Volatile, used by tests and embedded callers
2. JSON file - Survives restarts, one document per node

Writes go through a Transaction that stages every put and commits them in a
single backend call, so a failed operation never leaves partial state.

Usage:
    backend = FileBackend(Path("/var/lib/govledger/state.json"))

    with backend.transaction() as txn:
        txn.put("gov:tally:0:1", 5)
        txn.put("gov:meta:proposal_count", 1)
"""

import copy
import json
import logging
import os
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .config import DEFAULT_STATE_PATH

logger = logging.getLogger("govledger.storage")

_MISSING = object()


class StorageError(Exception):
    """Backend could not persist a commit."""


# ============================================================================
# STORAGE BACKENDS
# ============================================================================

class StateBackend(ABC):
    """Abstract base class for state backends.

    Values must be JSON-compatible (dicts, lists, str, int, float, bool).
    """

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Get a value by key."""
        pass

    @abstractmethod
    def put_many(self, items: Dict[str, Any]) -> None:
        """Store every item or none of them."""
        pass

    @abstractmethod
    def list_keys(self, prefix: str = "") -> List[str]:
        """List keys with optional prefix filter."""
        pass

    def contains(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def put(self, key: str, value: Any) -> None:
        self.put_many({key: value})

    @contextmanager
    def transaction(self) -> Iterator["Transaction"]:
        """Stage writes and commit them when the block exits cleanly."""
        txn = Transaction(self)
        yield txn
        txn.commit()


class Transaction:
    """Staged writes over a backend.

    Reads see staged values first. Nothing reaches the backend until
    commit(); discarding the object drops every staged write.
    """

    def __init__(self, backend: StateBackend):
        self._backend = backend
        self._staged: Dict[str, Any] = {}
        self._committed = False

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._staged:
            return self._staged[key]
        return self._backend.get(key, default)

    def put(self, key: str, value: Any) -> None:
        if self._committed:
            raise StorageError("transaction already committed")
        self._staged[key] = value

    @property
    def pending(self) -> Dict[str, Any]:
        return dict(self._staged)

    def commit(self) -> None:
        if self._committed:
            return
        if self._staged:
            self._backend.put_many(self._staged)
        self._committed = True


class MemoryBackend(StateBackend):
    """In-memory state backend."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._data:
            return copy.deepcopy(self._data[key])
        return default

    def put_many(self, items: Dict[str, Any]) -> None:
        self._data.update(copy.deepcopy(items))

    def list_keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._data if key.startswith(prefix)]

    def snapshot(self) -> Dict[str, Any]:
        """Copy of the full state (used by tests and persistence)."""
        return copy.deepcopy(self._data)


class FileBackend(MemoryBackend):
    """JSON file state backend.

    Keeps the whole state in memory and rewrites the file on each commit
    through a temporary file and os.replace.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else DEFAULT_STATE_PATH
        super().__init__(self._load())

    def _load(self) -> Dict[str, Any]:
        """Load state from disk."""
        if not self.path.exists():
            return {}
        with open(self.path, "r") as f:
            data = json.load(f)
        logger.info(f"Loaded {len(data)} state records from {self.path}")
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        """Write state to disk atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save state to {self.path}: {e}")
            raise StorageError(str(e)) from e

    def put_many(self, items: Dict[str, Any]) -> None:
        updated = dict(self._data)
        updated.update(copy.deepcopy(items))
        self._save(updated)
        self._data = updated
