"""
In-process decision cache for the Policy Service.
"""

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Optional, Tuple, TYPE_CHECKING

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..rules.models import AccessRequest, PolicyDecision


def make_cache_key(request: "AccessRequest") -> Tuple[str, str, str, str]:
    """Request signature used as the cache key.

    Parts stay separate since identifiers may themselves contain colons.
    """
    return (
        request.subject.id,
        request.action.type,
        request.resource.id,
        request.context.timestamp,
    )


class DecisionCache:
    """Thread-safe TTL cache of policy decisions.

    Entries expire ``ttl_seconds`` after they are stored; a TTL of zero
    disables expiry. When ``max_entries`` is reached the oldest entry is
    evicted. Stored and returned decisions are deep copies, so callers can
    never alter a cached decision.
    """

    def __init__(
        self,
        ttl_seconds: float = 5.0,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.logger = get_logger("policy.cache")
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[Hashable, Tuple[float, 'PolicyDecision']]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, key: Hashable) -> Optional["PolicyDecision"]:
        """Get a fresh cached decision, or None."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            expires_at, decision = entry
            if self.ttl_seconds and now >= expires_at:
                del self._entries[key]
                self._misses += 1
                return None

            self._hits += 1

        return decision.model_copy(deep=True)

    def set(self, key: Hashable, decision: "PolicyDecision") -> None:
        """Store a decision."""
        expires_at = self._clock() + self.ttl_seconds
        stored = decision.model_copy(deep=True)
        with self._lock:
            self._entries[key] = (expires_at, stored)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> int:
        """Drop every entry; returns how many were dropped."""
        with self._lock:
            dropped = len(self._entries)
            self._entries = OrderedDict()

        self.logger.debug("Decision cache cleared", entries=dropped)
        return dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / lookups if lookups else 0.0,
                "ttl_seconds": self.ttl_seconds,
                "max_entries": self.max_entries,
            }
