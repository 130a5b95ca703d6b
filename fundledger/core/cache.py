"""
In-memory read cache for the ledger's read endpoints.

Portfolio lists, the stored NAV, holding detail and fund investor lists are
served from here for up to ``CACHE_TTL`` seconds.  Reads may be momentarily
stale; the authoritative numbers are always recomputed under the per-fund
write lock.

Keys are namespaced by prefix.  A subscription touches the holding, the fund
aggregate and the investor list at once, so every ledger write calls
:meth:`TTLCache.invalidate_ledger` and drops all three namespaces together.
Account entries live in their own namespace and survive ledger writes.

The event loop is single-threaded, so plain dict operations need no locking.
"""

import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Optional

from fundledger.core.config import settings

logger = logging.getLogger(__name__)

PORTFOLIOS_PREFIX = "portfolios:"
FUNDS_PREFIX = "funds:"
HOLDINGS_PREFIX = "holdings:"
ACCOUNTS_PREFIX = "accounts:"

LEDGER_PREFIXES = (PORTFOLIOS_PREFIX, FUNDS_PREFIX, HOLDINGS_PREFIX)


class CacheEntry:
    __slots__ = ("value", "created_at")

    def __init__(self, value: Any):
        self.value = value
        self.created_at = time.monotonic()

    def is_expired(self, ttl: float) -> bool:
        return time.monotonic() - self.created_at > ttl


class TTLCache:
    """
    Dict-backed cache with a per-entry time-to-live.

    Holds at most ``max_size`` entries; inserting a new key into a full cache
    drops the entry that was inserted first.  With ``enabled=False`` nothing is
    stored and every read is a miss.
    """

    def __init__(self, ttl: float = 30.0, max_size: int = 1000, enabled: bool = True):
        self._ttl = ttl
        self._max_size = max_size
        self._enabled = enabled
        self._store: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        entry = self._store.get(key)
        if entry is not None and entry.is_expired(self._ttl):
            del self._store[key]
            logger.debug("Cache entry %s expired", key)
            entry = None
        return entry

    def get(self, key: str) -> Optional[Any]:
        if not self._enabled:
            return None
        entry = self._lookup(key)
        if entry is None:
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any) -> None:
        if not self._enabled:
            return
        if key in self._store:
            self._store[key] = CacheEntry(value)
            return
        if len(self._store) >= self._max_size:
            evicted, _ = self._store.popitem(last=False)
            logger.debug("Cache full, evicted %s", evicted)
        self._store[key] = CacheEntry(value)

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """
        Return the cached value for ``key`` or await ``loader`` and cache it.

        ``None`` results are not cached so a missing row is re-checked on the
        next read.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await loader()
        if value is not None:
            self.set(key, value)
        return value

    def invalidate(self, *prefixes: str) -> int:
        """Drop every entry whose key starts with one of ``prefixes``."""
        if not self._enabled:
            return 0
        stale = [key for key in self._store if key.startswith(prefixes)]
        for key in stale:
            del self._store[key]
        if stale:
            logger.debug("Invalidated %d cache entries under %s", len(stale), ", ".join(prefixes))
        return len(stale)

    def invalidate_ledger(self) -> int:
        """Drop every portfolio, fund and holding entry after a ledger write."""
        return self.invalidate(*LEDGER_PREFIXES)

    def clear(self) -> None:
        self._store.clear()

    def get_stats(self) -> dict:
        lookups = self._hits + self._misses
        return {
            "enabled": self._enabled,
            "size": len(self._store),
            "max_size": self._max_size,
            "ttl_seconds": self._ttl,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": f"{self._hits / lookups:.1%}" if lookups else "N/A",
        }


cache = TTLCache(
    ttl=settings.CACHE_TTL,
    max_size=settings.CACHE_MAX_SIZE,
    enabled=settings.CACHE_ENABLED,
)
