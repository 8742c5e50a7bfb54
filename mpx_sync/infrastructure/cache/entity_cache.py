"""Request-scoped entity cache for media records.

One ``EntityCache`` instance lives for a single listen or queue run and is
handed to the repositories that need it. The importer invalidates every record
it touches so later reads in the same run see saved state.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Iterable
from typing import Any

logger = logging.getLogger(__name__)


class EntityCache:
    """LRU cache of loaded records keyed by primary key.

    Features:
    - bounded size with least-recently-used eviction
    - explicit invalidation by id
    - hit/miss/invalidation statistics
    """

    def __init__(self, max_size: int = 1024) -> None:
        if max_size < 1:
            msg = "max_size must be at least 1"
            raise ValueError(msg)
        self.max_size = max_size
        self.stats = {"hits": 0, "misses": 0, "invalidations": 0}
        self._entries: OrderedDict[int, Any] = OrderedDict()

    def get(self, record_id: int) -> Any | None:
        entry = self._entries.get(record_id)
        if entry is None:
            self.stats["misses"] += 1
            return None
        self._entries.move_to_end(record_id)
        self.stats["hits"] += 1
        return entry

    def put(self, record_id: int, record: Any) -> None:
        self._entries[record_id] = record
        self._entries.move_to_end(record_id)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def invalidate(self, record_ids: Iterable[int | None]) -> int:
        """Drop the given ids; returns how many entries were actually cached."""
        dropped = 0
        for record_id in record_ids:
            if record_id is not None and self._entries.pop(record_id, None) is not None:
                dropped += 1
        self.stats["invalidations"] += dropped
        if dropped:
            logger.debug("entity_cache_invalidated", extra={"count": dropped})
        return dropped

    def clear(self) -> None:
        self.stats["invalidations"] += len(self._entries)
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._entries

    def get_stats(self) -> dict[str, Any]:
        return {**self.stats, "size": len(self._entries), "max_size": self.max_size}
