"""Short-lived read cache in front of the list store.

The cache is an injected interface so tests can use ``NullQueryCache`` and a
deployment can plug in a shared cache. Keys are namespaced by collection
(``"Parts:..."``) so a write can drop every cached read of that collection.
Entries are never served past the TTL, and writes invalidate regardless of
age.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from parts_ledger.shared.config import Settings

logger = logging.getLogger(__name__)


class QueryCache(ABC):
    """Cache interface used by the repository."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the cached value, or None when missing or expired."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def invalidate(self, prefix: str | None = None) -> int:
        """Drop entries whose key starts with prefix (all entries when None).

        Returns:
            Number of entries removed
        """
        pass

    @abstractmethod
    def generation(self, prefix: str) -> int:
        """Counter that grows every time prefix (or the whole cache) is invalidated.

        A reader takes it before loading and only stores the loaded value if
        it is unchanged afterwards, so a load that overlapped a write is
        never cached.
        """
        pass


class NullQueryCache(QueryCache):
    """Cache that stores nothing; every read goes to the store."""

    def get(self, key: str) -> Any | None:
        return None

    def set(self, key: str, value: Any) -> None:
        return None

    def invalidate(self, prefix: str | None = None) -> int:
        return 0

    def generation(self, prefix: str) -> int:
        return 0


class TTLQueryCache(QueryCache):
    """In-process cache with a fixed time-to-live and a size bound.

    Attributes:
        ttl_seconds: Maximum age of an entry
        max_entries: Oldest entries are evicted beyond this size
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._generations: dict[str, int] = {}
        self._epoch = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (self._clock(), value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, prefix: str | None = None) -> int:
        if prefix is None:
            self._epoch += 1
            removed = len(self._entries)
            self._entries.clear()
        else:
            self._generations[prefix] = self._generations.get(prefix, 0) + 1
            stale = [key for key in self._entries if key.startswith(prefix)]
            for key in stale:
                del self._entries[key]
            removed = len(stale)
        if removed:
            logger.debug(f"Invalidated {removed} cached read(s) for prefix {prefix!r}")
        return removed

    def generation(self, prefix: str) -> int:
        return self._epoch + self._generations.get(prefix, 0)


def create_query_cache(settings: Settings) -> QueryCache:
    """Build the cache described by settings."""
    if not settings.cache_enabled:
        return NullQueryCache()
    return TTLQueryCache(
        ttl_seconds=settings.cache_ttl_seconds,
        max_entries=settings.cache_max_entries,
    )
