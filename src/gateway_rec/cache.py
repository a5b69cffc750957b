"""
Bounded LRU cache used to memoize feature vectors.

Entries live in a dict index plus an intrusive doubly linked list, so
lookups, recency updates and evictions are all O(1). The list runs from
least recently used (after ``_head``) to most recently used (before
``_tail``).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, TypeVar

from .config import DEFAULT_CACHE_SIZE

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class CacheEntry(Generic[K, V]):
    """A cached value and its bookkeeping."""

    key: K
    value: V
    inserted_at: float
    last_accessed_at: float
    access_count: int = 1


@dataclass
class CacheStats:
    hits: int
    misses: int
    hit_rate: float
    size: int
    max_size: int
    evictions: int


class _Node:
    __slots__ = ("entry", "prev", "next")

    def __init__(self, entry: CacheEntry | None = None):
        self.entry = entry
        self.prev: _Node | None = None
        self.next: _Node | None = None


class LRUCache(Generic[K, V]):
    """
    Size-bounded key/value store with least-recently-used eviction.

    Every successful ``get``/``get_or_compute`` and every ``set`` moves the
    entry to the most-recently-used end. When a new key arrives at capacity,
    the entry that has gone longest without access is evicted.
    """

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE, clock: Callable[[], float] = time.time):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._clock = clock
        self._index: dict[K, _Node] = {}
        self._head = _Node()
        self._tail = _Node()
        self._head.next = self._tail
        self._tail.prev = self._head
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    # Linked list plumbing ------------------------------------------------
    def _unlink(self, node: _Node) -> None:
        node.prev.next = node.next
        node.next.prev = node.prev
        node.prev = node.next = None

    def _append(self, node: _Node) -> None:
        last = self._tail.prev
        last.next = node
        node.prev = last
        node.next = self._tail
        self._tail.prev = node

    def _touch(self, node: _Node) -> None:
        node.entry.access_count += 1
        node.entry.last_accessed_at = self._clock()
        self._unlink(node)
        self._append(node)

    def _evict_lru(self) -> None:
        victim = self._head.next
        if victim is self._tail:
            return
        self._unlink(victim)
        del self._index[victim.entry.key]
        self._evictions += 1
        logger.debug("Evicted cache key %r", victim.entry.key)

    # Public API ------------------------------------------------------------
    def get_or_compute(self, key: K, generator: Callable[[], V]) -> V:
        """Return the cached value, or call ``generator`` once and cache its result."""
        node = self._index.get(key)
        if node is not None:
            self._hits += 1
            self._touch(node)
            return node.entry.value

        self._misses += 1
        value = generator()
        self.set(key, value)
        return value

    def set(self, key: K, value: V) -> None:
        node = self._index.get(key)
        now = self._clock()
        if node is not None:
            node.entry.value = value
            node.entry.inserted_at = now
            self._touch(node)
            return

        if len(self._index) >= self.max_size:
            self._evict_lru()

        node = _Node(CacheEntry(key=key, value=value, inserted_at=now, last_accessed_at=now))
        self._index[key] = node
        self._append(node)

    def get(self, key: K) -> V | None:
        node = self._index.get(key)
        if node is None:
            self._misses += 1
            return None
        self._hits += 1
        self._touch(node)
        return node.entry.value

    def has(self, key: K) -> bool:
        """Membership test; does not change recency or stats."""
        return key in self._index

    def clear(self) -> None:
        self._index.clear()
        self._head.next = self._tail
        self._tail.prev = self._head
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def cleanup(self, max_age_ms: float | None = None) -> int:
        """
        Remove entries inserted more than ``max_age_ms`` milliseconds ago.

        Returns the number of entries removed. Without an age this is a no-op.
        """
        if not max_age_ms:
            return 0

        cutoff = self._clock() - max_age_ms / 1000.0
        removed = 0
        node = self._head.next
        while node is not self._tail:
            nxt = node.next
            if node.entry.inserted_at < cutoff:
                self._unlink(node)
                del self._index[node.entry.key]
                removed += 1
            node = nxt

        if removed:
            logger.debug("Cache cleanup removed %s expired entries", removed)
        return removed

    def get_stats(self) -> CacheStats:
        total = self._hits + self._misses
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            hit_rate=self._hits / total if total > 0 else 0.0,
            size=len(self._index),
            max_size=self.max_size,
            evictions=self._evictions,
        )

    def keys(self) -> list[K]:
        """Keys from least to most recently used."""
        keys = []
        node = self._head.next
        while node is not self._tail:
            keys.append(node.entry.key)
            node = node.next
        return keys

    def entry(self, key: K) -> CacheEntry | None:
        """Peek at an entry's bookkeeping without touching it."""
        node = self._index.get(key)
        return node.entry if node is not None else None

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, key: object) -> bool:
        return key in self._index
