"""Explicit, thread-safe caches with a synchronous clear operation."""
from threading import Lock
from typing import Callable, Dict, Generic, Hashable, List, TypeVar

V = TypeVar("V")

_registry: List["Cache"] = []


class Cache(Generic[V]):
    """Mapping from hashable keys to computed values.

    Values are computed outside of the lock, so a race on a miss only
    results in duplicate work. Every cache is registered globally,
    so `clear_all` resets all of them at once (used in tests).
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = Lock()
        self._data: Dict[Hashable, V] = {}
        _registry.append(self)

    def __repr__(self):
        return f"Cache({self.name!r}, entries={len(self)})"

    def __len__(self):
        with self._lock:
            return len(self._data)

    def __contains__(self, key: Hashable):
        with self._lock:
            return key in self._data

    def get_or_compute(self, key: Hashable, compute: Callable[[], V]) -> V:
        with self._lock:
            if key in self._data:
                return self._data[key]
        value = compute()
        with self._lock:
            return self._data.setdefault(key, value)

    def invalidate(self, key: Hashable):
        with self._lock:
            self._data.pop(key, None)

    def clear(self):
        with self._lock:
            self._data.clear()


def clear_all():
    """Clear all caches created in this process."""
    for c in _registry:
        c.clear()
