"""In-memory LRU + TTL store for resolved document content."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Set

from docviewer.models import CacheEntry

LOGGER = logging.getLogger(__name__)

InvalidationListener = Callable[[str], None]


class DocumentCache:
    """Size-bounded, TTL-aware cache keyed by document id.

    Reads refresh recency; inserting over capacity evicts the least recently
    used entry. Expired entries behave like misses.
    """

    def __init__(
        self,
        max_entries: int = 100,
        *,
        ttl_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._stale: Set[str] = set()
        self._listeners: List[InvalidationListener] = []
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, document_id: object) -> bool:
        entry = self._entries.get(document_id)  # type: ignore[arg-type]
        return entry is not None and not entry.is_expired(self._clock())

    def ids(self) -> List[str]:
        """Cached ids from least to most recently used."""
        return list(self._entries)

    def new_entry(self, document_id: str, content: str, fingerprint: str) -> CacheEntry:
        now = self._clock()
        expires_at = now + self.ttl_ms / 1000.0 if self.ttl_ms else None
        return CacheEntry(
            document_id=document_id,
            content=content,
            fingerprint=fingerprint,
            inserted_at=now,
            expires_at=expires_at,
        )

    def get(self, document_id: str) -> Optional[CacheEntry]:
        entry = self._entries.get(document_id)
        if entry is None:
            self._misses += 1
            return None
        if entry.is_expired(self._clock()):
            LOGGER.debug("Cache entry for %s expired", document_id)
            del self._entries[document_id]
            self._evictions += 1
            self._misses += 1
            return None
        self._entries.move_to_end(document_id)
        self._hits += 1
        return entry

    def put(self, entry: CacheEntry) -> None:
        doc_id = entry.document_id
        self._stale.discard(doc_id)
        if doc_id in self._entries:
            self._entries[doc_id] = entry
            self._entries.move_to_end(doc_id)
            return

        if len(self._entries) >= self.max_entries:
            self.evict_expired()
        while len(self._entries) >= self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            LOGGER.debug("Evicted %s from cache (capacity %d)", evicted, self.max_entries)
        self._entries[doc_id] = entry

    def invalidate(self, document_id: str) -> bool:
        """Drop the entry and mark the document stale; does not reload."""
        removed = self._entries.pop(document_id, None) is not None
        self._stale.add(document_id)
        for listener in self._listeners:
            listener(document_id)
        return removed

    def is_stale(self, document_id: str) -> bool:
        return document_id in self._stale

    def add_invalidation_listener(self, listener: InvalidationListener) -> None:
        self._listeners.append(listener)

    def evict_expired(self) -> int:
        now = self._clock()
        expired = [doc_id for doc_id, entry in self._entries.items() if entry.is_expired(now)]
        for doc_id in expired:
            del self._entries[doc_id]
        self._evictions += len(expired)
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self._stale.clear()

    def stats(self) -> Dict[str, int]:
        return {
            "size": len(self._entries),
            "capacity": self.max_entries,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
        }
