"""In-memory index of canonical ids seen in listings and searches.

Maps ``audiobook:<slug>`` ids back to what is needed to resolve them later
(title, author, LibriVox id). Bounded two ways:
- LRU: at most ``max_entries`` ids; the least recently used is evicted
- TTL: entries older than ``ttl_seconds`` read as absent and are dropped

Callers that miss fall back to a degraded entry built from the id's slug.
"""

import threading
import time
from collections import OrderedDict
from collections.abc import Callable

from loguru import logger

from .models import CatalogIndexEntry
from .sanitize import canonical_id, slugify, title_from_id

log = logger.bind(stage="index")


class CatalogIndex:
    """Bounded id -> CatalogIndexEntry map. Pass one instance around."""

    def __init__(
        self,
        max_entries: int = 10_000,
        ttl_seconds: float | None = 86_400.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_entries = max(1, max_entries)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        # Map: id -> (stored_at, entry), oldest use first
        self._entries: OrderedDict[str, tuple[float, CatalogIndexEntry]] = OrderedDict()
        self._lock = threading.RLock()
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, item_id: str) -> bool:
        return self.get(item_id) is not None

    def _expired(self, stored_at: float) -> bool:
        return self.ttl_seconds is not None and self._clock() - stored_at > self.ttl_seconds

    def put(self, item_id: str, entry: CatalogIndexEntry) -> None:
        """Record (or refresh) an id."""
        with self._lock:
            self._entries[item_id] = (self._clock(), entry)
            self._entries.move_to_end(item_id)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self.evictions += 1
                log.debug(f"Evicted {evicted} (max_entries={self.max_entries})")

    def get(self, item_id: str) -> CatalogIndexEntry | None:
        """Entry for ``item_id``, or None if unknown or expired."""
        with self._lock:
            stored = self._entries.get(item_id)
            if stored is None:
                return None
            stored_at, entry = stored
            if self._expired(stored_at):
                del self._entries[item_id]
                log.debug(f"Expired {item_id}")
                return None
            self._entries.move_to_end(item_id)
            return entry

    def lookup(self, item_id: str) -> CatalogIndexEntry:
        """Entry for ``item_id``, or a title-only guess derived from its slug."""
        entry = self.get(item_id)
        if entry is not None:
            return entry
        log.debug(f"Index miss for {item_id}; guessing title from slug")
        return CatalogIndexEntry(title=title_from_id(item_id))

    def mint(self, title: str, author: str | None = None, source_key: str | None = None) -> str:
        """Build the canonical id for a work and index it.

        If the plain id is already bound to a different catalog key, the key
        is appended as a disambiguator so both works stay resolvable.
        """
        with self._lock:
            item_id = canonical_id(title, author)
            existing = self.get(item_id)
            if (
                existing is not None
                and source_key
                and existing.source_key
                and existing.source_key != source_key
            ):
                item_id = canonical_id(title, author, disambiguator=slugify(source_key))
                log.debug(f"Slug collision for {title!r}; using {item_id}")

            if existing is not None and not source_key and existing.source_key:
                # A search hit must not erase a catalog key
                return item_id

            self.put(item_id, CatalogIndexEntry(title=title, author=author, source_key=source_key))
            return item_id
