"""A bounded least-recently-used cache of prepared statements."""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Any, Callable

__all__ = ["PreparedLRU", "DEFAULT_MAX_PREPARED_STMTS"]

DEFAULT_MAX_PREPARED_STMTS = 1000


class PreparedLRU:
    """Thread-safe LRU cache; a maximum of 0 means no limit."""

    def __init__(self, max_entries: int = DEFAULT_MAX_PREPARED_STMTS) -> None:
        self._lock = threading.RLock()
        self._entries: OrderedDict[str, Any] = OrderedDict()
        self.max_entries = max_entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def _remove_oldest(self) -> None:
        if self._entries:
            self._entries.popitem(last=False)

    def set_max(self, size: int) -> None:
        """Change the maximum size, dropping the oldest entries above it."""
        with self._lock:
            while len(self._entries) > size:
                self._remove_oldest()
            self.max_entries = size

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()

    def add(self, key: str, value: Any) -> None:
        """Store ``value`` as the most recently used entry."""
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            if self.max_entries and len(self._entries) > self.max_entries:
                self._remove_oldest()

    def remove(self, key: str) -> bool:
        """Drop ``key``; return whether it was present."""
        with self._lock:
            return self._entries.pop(key, _MISSING) is not _MISSING

    def exec_if_missing(self, key: str, fn: Callable[[PreparedLRU], Any]) -> tuple[Any, bool]:
        """Return ``(value, True)`` for a cached key, else ``(fn(self), False)``.

        ``fn`` runs with the cache locked and may add entries to it.
        """
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                return self._entries[key], True
            return fn(self), False

    def key_for(self, addr: str, keyspace: str, statement: str) -> str:
        """Return the cache key of a statement prepared on a host in a keyspace."""
        return addr + keyspace + statement


_MISSING = object()