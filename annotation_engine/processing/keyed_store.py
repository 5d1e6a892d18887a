"""In-memory keyed model storage with per-key critical sections."""

import copy
import threading
from collections.abc import Callable, Hashable
from typing import Generic, TypeVar

from ..utils.locking import KeyedLock

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)


class KeyedStore(Generic[K, T]):
    """Dictionary of mutable models where each key is updated atomically.

    Updates to one key are serialized through that key's lock; updates to
    different keys never wait on each other. Readers always receive deep
    copies so callers cannot mutate shared state.
    """

    def __init__(self) -> None:
        self._items: dict[K, T] = {}
        self._locks = KeyedLock()
        # Guards structural changes to the dict, not item contents
        self._index_lock = threading.Lock()

    def get(self, key: K) -> T | None:
        """Get a snapshot of the item stored under key."""
        with self._locks.hold(key):
            item = self._items.get(key)
            return copy.deepcopy(item) if item is not None else None

    def update(
        self,
        key: K,
        mutate: Callable[[T], None],
        factory: Callable[[], T] | None = None,
        keep: Callable[[T], bool] | None = None,
    ) -> T | None:
        """Apply mutate to the item under key inside its critical section.

        Args:
            key: Item key
            mutate: Function that changes the item in place
            factory: Creates the item when absent; without one a missing
                key is left missing and None is returned
            keep: Predicate a newly created item must satisfy to be stored

        Returns:
            Snapshot of the item after mutation, or None if nothing was stored

        """
        with self._locks.hold(key):
            item = self._items.get(key)
            created = item is None
            if created:
                if factory is None:
                    return None
                item = factory()

            mutate(item)

            if created:
                if keep is not None and not keep(item):
                    return None
                with self._index_lock:
                    self._items[key] = item

            return copy.deepcopy(item)

    def remove_if(self, key: K, predicate: Callable[[T], bool]) -> bool:
        """Remove the item under key when predicate holds for it."""
        with self._locks.hold(key):
            item = self._items.get(key)
            if item is None or not predicate(item):
                return False
            with self._index_lock:
                del self._items[key]
            return True

    def keys(self) -> list[K]:
        with self._index_lock:
            return list(self._items)

    def snapshot(self) -> dict[K, T]:
        """Get deep copies of all items, each read inside its own critical section."""
        result: dict[K, T] = {}
        for key in self.keys():
            item = self.get(key)
            if item is not None:
                result[key] = item
        return result

    def replace_all(self, items: dict[K, T]) -> None:
        """Swap in a complete new set of items."""
        with self._index_lock:
            self._items = dict(items)

    def clear(self) -> None:
        with self._index_lock:
            self._items.clear()

    def __contains__(self, key: object) -> bool:
        with self._index_lock:
            return key in self._items

    def __len__(self) -> int:
        with self._index_lock:
            return len(self._items)
