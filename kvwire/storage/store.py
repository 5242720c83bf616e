"""
Key-Value Store Module

This module implements the shared storage every connection executes
commands against.
"""

import threading
from typing import Any, Dict

from ..errors import KeyNotFoundError


class KVStore:
    """
    In-memory key-value store safe for any number of concurrent callers.

    Every operation runs under a single internal lock, so callers never
    need their own locking and can rely on per-key linearizability: a get
    that follows a completed set on the same key observes that set.

    Only set, get and delete touch values; there is no exists() to
    combine with them. The lock is a threading.Lock, so the store may also
    be shared with worker threads.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._store: Dict[str, str] = {}

    def set(self, key: str, value: str) -> None:
        """
        Insert or overwrite a key-value pair.

        Args:
            key: The key to store
            value: The value to associate with the key
        """
        with self._lock:
            self._store[key] = value

    def get(self, key: str) -> str:
        """
        Retrieve the value for a given key.

        Raises:
            KeyNotFoundError: If the key is not stored
        """
        with self._lock:
            try:
                return self._store[key]
            except KeyError:
                raise KeyNotFoundError(key) from None

    def delete(self, key: str) -> str:
        """
        Remove a key and return the value it held.

        Raises:
            KeyNotFoundError: If the key is not stored
        """
        with self._lock:
            try:
                return self._store.pop(key)
            except KeyError:
                raise KeyNotFoundError(key) from None

    def size(self) -> int:
        """Get the current number of keys in the store."""
        with self._lock:
            return len(self._store)

    def clear(self) -> None:
        """Remove all keys from the store."""
        with self._lock:
            self._store.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the store."""
        with self._lock:
            return {"total_keys": len(self._store)}
