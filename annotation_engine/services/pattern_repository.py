"""
Key-value persistence for learned state and feedback records.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

from ..exceptions import PersistenceError

logger = logging.getLogger(__name__)


class PatternRepository(ABC):
    """Durable store addressed by slash-separated composite keys.

    Keys look like ``patterns/<species>/<feature>``; ``list(prefix)``
    returns every live key starting with the prefix.
    """

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Get the value under key, or None when absent or expired."""

    @abstractmethod
    def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a JSON-serializable value, optionally expiring after ttl seconds."""

    @abstractmethod
    def list(self, prefix: str = "") -> list[str]:
        """List live keys starting with prefix, sorted."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete key, returning whether it existed."""


class InMemoryPatternRepository(PatternRepository):
    """Thread-safe in-process repository with per-key TTL."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._data: dict[str, tuple[Any, float | None]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _expired(self, expires_at: float | None) -> bool:
        return expires_at is not None and self._clock() >= expires_at

    def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            value, expires_at = item
            if self._expired(expires_at):
                del self._data[key]
                return None
            return json.loads(json.dumps(value))

    def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        try:
            # Round-trip so stored values are detached and serializable
            stored = json.loads(json.dumps(value))
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Value for {key} is not JSON-serializable: {e}") from e
        expires_at = self._clock() + ttl if ttl is not None else None
        with self._lock:
            self._data[key] = (stored, expires_at)

    def list(self, prefix: str = "") -> list[str]:
        with self._lock:
            expired = [k for k, (_, expires_at) in self._data.items() if self._expired(expires_at)]
            for key in expired:
                del self._data[key]
            return sorted(k for k in self._data if k.startswith(prefix))

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self.list())


class JsonFilePatternRepository(PatternRepository):
    """Repository storing one JSON document per key under a directory.

    TTLs are stored alongside the value and checked against wall-clock time.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Any | None:
        path = self._path(key)
        with self._lock:
            if not path.exists():
                return None
            try:
                document = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise PersistenceError(f"Failed to read {key}: {e}") from e

            expires_at = document.get("expires_at")
            if expires_at is not None and time.time() >= expires_at:
                path.unlink(missing_ok=True)
                return None
            return document["value"]

    def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        document = {
            "key": key,
            "value": value,
            "expires_at": time.time() + ttl if ttl is not None else None,
        }
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        with self._lock:
            try:
                tmp_path.write_text(json.dumps(document, sort_keys=True), encoding="utf-8")
                tmp_path.replace(path)
            except (OSError, TypeError, ValueError) as e:
                tmp_path.unlink(missing_ok=True)
                raise PersistenceError(f"Failed to write {key}: {e}") from e
        logger.debug(f"Wrote {key} to {path}")

    def list(self, prefix: str = "") -> list[str]:
        """List live keys; unreadable files stay listed so callers can report them."""
        keys = [unquote(p.stem) for p in self.root.glob("*.json")]
        return sorted(k for k in keys if k.startswith(prefix) and self._is_live(k))

    def _is_live(self, key: str) -> bool:
        try:
            return self.get(key) is not None
        except PersistenceError:
            return True

    def delete(self, key: str) -> bool:
        path = self._path(key)
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
            return True
