"""Per-key locks for serializing updates to shared model entries."""

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager


class KeyedLock:
    """Hands out one lock per key so unrelated keys never contend.

    The registry lock is held only while looking up or creating a key's
    lock, never while the caller's critical section runs.
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}

    def _lock_for(self, key: Hashable) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Run the enclosed block inside the critical section for key."""
        lock = self._lock_for(key)
        with lock:
            yield

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)
