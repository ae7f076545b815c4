"""Bounded memo of directories known to exist.

Used by the filesystem backend to skip redundant ``os.makedirs`` calls.
Least-recently-used entries are evicted once capacity is reached.
Thread-safe for concurrent access within a single process.
"""

from __future__ import annotations

import os
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Final

DEFAULT_DIRECTORY_CACHE_CAPACITY: Final[int] = 100


class DirectoryExistenceCache:
    """Fixed-capacity LRU set of directory paths."""

    def __init__(self, capacity: int = DEFAULT_DIRECTORY_CACHE_CAPACITY) -> None:
        """Initialize the cache.

        Args:
            capacity: Maximum number of directories remembered (must be >= 1).
        """
        if capacity < 1:
            raise ValueError(f"directory cache capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._entries: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, directory: object) -> bool:
        if not isinstance(directory, (str, Path)):
            return False
        return self.contains(directory)

    def contains(self, directory: str | Path) -> bool:
        """Return True if the directory is remembered, marking it most recently used."""
        key = os.fspath(directory)
        with self._lock:
            if key not in self._entries:
                return False
            self._entries.move_to_end(key)
            return True

    def add(self, directory: str | Path) -> None:
        """Remember a directory, evicting the least recently used one if full."""
        key = os.fspath(directory)
        with self._lock:
            self._entries[key] = None
            self._entries.move_to_end(key)
            while len(self._entries) > self._capacity:
                self._entries.popitem(last=False)

    def discard(self, directory: str | Path) -> None:
        """Forget a single directory."""
        with self._lock:
            self._entries.pop(os.fspath(directory), None)

    def discard_tree(self, directory: str | Path) -> int:
        """Forget a directory and every remembered directory beneath it.

        Returns:
            Number of entries removed.
        """
        root = os.fspath(directory)
        nested = root.rstrip(os.sep) + os.sep
        with self._lock:
            stale = [key for key in self._entries if key == root or key.startswith(nested)]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
