from collections.abc import Hashable
from typing import Any, Generic, TypeVar

from cachetools import LRUCache
from loguru import logger

V = TypeVar("V")


class VersionedCache(Generic[V]):
    """
    In-process cache whose entries are tagged with the catalog version they
    were computed against.

    An entry tagged with version V is discarded, never reused, once the caller
    asks for a newer version. Population is last-writer-wins without locking:
    every cached value is a pure function of (catalog snapshot, user data), so
    two concurrent writers store equivalent values.
    """

    def __init__(self, name: str, maxsize: int = 5000):
        self.name = name
        self._entries: LRUCache = LRUCache(maxsize=maxsize)
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable, version: int) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        entry_version, value = entry
        if entry_version < version:
            # Stale: computed against an older snapshot
            self._entries.pop(key, None)
            self.misses += 1
            return None
        if entry_version > version:
            # A reader still holding an older snapshot must not see newer data
            self.misses += 1
            return None
        self.hits += 1
        return value

    def set(self, key: Hashable, version: int, value: V) -> None:
        self._entries[key] = (version, value)

    def invalidate(self, predicate: Any = None) -> int:
        """Drop entries whose key satisfies ``predicate`` (all entries when omitted)."""
        if predicate is None:
            count = len(self._entries)
            self._entries.clear()
        else:
            stale = [k for k in list(self._entries.keys()) if predicate(k)]
            for k in stale:
                self._entries.pop(k, None)
            count = len(stale)
        if count:
            logger.debug(f"[{self.name}] Invalidated {count} cache entries")
        return count

    def __len__(self) -> int:
        return len(self._entries)
