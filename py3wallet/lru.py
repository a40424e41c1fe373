"""Fixed-capacity, thread-safe LRU cache.

Entries live in preallocated slot arrays addressed by integer handles. The
recency list links handles through ``_prev``/``_next`` rather than holding
node objects, and slots freed by eviction or removal are reused.
"""

from __future__ import annotations

import threading
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")
D = TypeVar("D")

_NIL = -1


class LRUCache(Generic[K, V]):
    """Least-recently-used cache with O(1) get, set and eviction."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self._capacity = capacity
        self._lock = threading.Lock()
        self._index: dict[K, int] = {}
        self._keys: list[K | None] = [None] * capacity
        self._values: list[V | None] = [None] * capacity
        self._prev = [_NIL] * capacity
        self._next = [_NIL] * capacity
        self._free = list(range(capacity - 1, -1, -1))
        # head is most recently used, tail least
        self._head = _NIL
        self._tail = _NIL

    @property
    def capacity(self) -> int:
        return self._capacity

    def _unlink(self, handle: int) -> None:
        prev, nxt = self._prev[handle], self._next[handle]
        if prev != _NIL:
            self._next[prev] = nxt
        else:
            self._head = nxt
        if nxt != _NIL:
            self._prev[nxt] = prev
        else:
            self._tail = prev
        self._prev[handle] = self._next[handle] = _NIL

    def _push_front(self, handle: int) -> None:
        self._prev[handle] = _NIL
        self._next[handle] = self._head
        if self._head != _NIL:
            self._prev[self._head] = handle
        self._head = handle
        if self._tail == _NIL:
            self._tail = handle

    def _release(self, handle: int) -> None:
        self._keys[handle] = None
        self._values[handle] = None
        self._free.append(handle)

    def get(self, key: K, default: D | None = None) -> V | D | None:
        """Return the value for key and mark it most recently used.

        A stored None is returned as None, so pass a sentinel default to tell
        it apart from a missing key.
        """
        with self._lock:
            handle = self._index.get(key)
            if handle is None:
                return default
            if handle != self._head:
                self._unlink(handle)
                self._push_front(handle)
            return self._values[handle]

    def peek(self, key: K, default: D | None = None) -> V | D | None:
        """Return the value for key without changing recency."""
        with self._lock:
            handle = self._index.get(key)
            if handle is None:
                return default
            return self._values[handle]

    def set(self, key: K, value: V) -> None:
        """Insert or update key, evicting the least recently used entry if full."""
        with self._lock:
            handle = self._index.get(key)
            if handle is not None:
                self._values[handle] = value
                if handle != self._head:
                    self._unlink(handle)
                    self._push_front(handle)
                return

            if not self._free:
                victim = self._tail
                self._unlink(victim)
                del self._index[self._keys[victim]]  # type: ignore[arg-type]
                self._release(victim)

            handle = self._free.pop()
            self._keys[handle] = key
            self._values[handle] = value
            self._index[key] = handle
            self._push_front(handle)

    def pop(self, key: K, default: D | None = None) -> V | D | None:
        """Remove key and return its value, or default if absent."""
        with self._lock:
            handle = self._index.pop(key, None)
            if handle is None:
                return default
            value = self._values[handle]
            self._unlink(handle)
            self._release(handle)
            return value

    def clear(self) -> None:
        with self._lock:
            self._index.clear()
            self._keys = [None] * self._capacity
            self._values = [None] * self._capacity
            self._prev = [_NIL] * self._capacity
            self._next = [_NIL] * self._capacity
            self._free = list(range(self._capacity - 1, -1, -1))
            self._head = self._tail = _NIL

    def keys(self) -> list[K]:
        """Return keys from most to least recently used."""
        with self._lock:
            result: list[K] = []
            handle = self._head
            while handle != _NIL:
                result.append(self._keys[handle])  # type: ignore[arg-type]
                handle = self._next[handle]
            return result

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._index

    def __len__(self) -> int:
        with self._lock:
            return len(self._index)
