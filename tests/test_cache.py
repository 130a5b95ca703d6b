"""
Unit tests for the in-memory TTL read cache.

Covers:
- get / set, TTL expiry, FIFO eviction
- get_or_load (miss loads once, ``None`` not cached)
- prefix invalidation and the ledger-wide sweep
- disabled mode and statistics
"""

import time
from unittest.mock import AsyncMock

import pytest

from fundledger.core.cache import (
    ACCOUNTS_PREFIX,
    FUNDS_PREFIX,
    HOLDINGS_PREFIX,
    PORTFOLIOS_PREFIX,
    CacheEntry,
    TTLCache,
)


class TestCacheEntry:
    def test_fresh_entry_not_expired(self):
        assert not CacheEntry("nav").is_expired(ttl=30.0)

    def test_old_entry_expired(self):
        entry = CacheEntry("nav")
        entry.created_at = time.monotonic() - 31.0
        assert entry.is_expired(ttl=30.0)


class TestGetSet:
    def test_round_trip(self, test_cache: TTLCache):
        test_cache.set("funds:abc:nav", {"nav_per_unit": "12000.000"})
        assert test_cache.get("funds:abc:nav") == {"nav_per_unit": "12000.000"}

    def test_miss(self, test_cache: TTLCache):
        assert test_cache.get("funds:missing:nav") is None

    def test_expired_entry_is_dropped(self):
        short = TTLCache(ttl=0.01, max_size=10)
        short.set("k", "v")
        short._store["k"].created_at = time.monotonic() - 1.0

        assert short.get("k") is None
        assert "k" not in short._store

    def test_evicts_oldest_when_full(self):
        small = TTLCache(ttl=30.0, max_size=2)
        small.set("a", 1)
        small.set("b", 2)
        small.set("c", 3)

        assert small.get("a") is None
        assert small.get("b") == 2
        assert small.get("c") == 3

    def test_updating_existing_key_does_not_evict(self):
        small = TTLCache(ttl=30.0, max_size=2)
        small.set("a", 1)
        small.set("b", 2)
        small.set("a", 10)

        assert small.get("a") == 10
        assert small.get("b") == 2


class TestGetOrLoad:
    @pytest.mark.asyncio
    async def test_loads_once(self, test_cache: TTLCache):
        loader = AsyncMock(return_value="value")

        first = await test_cache.get_or_load("funds:x:nav", loader)
        second = await test_cache.get_or_load("funds:x:nav", loader)

        assert first == second == "value"
        loader.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_none_is_not_cached(self, test_cache: TTLCache):
        loader = AsyncMock(return_value=None)

        await test_cache.get_or_load("holdings:x", loader)
        await test_cache.get_or_load("holdings:x", loader)

        assert loader.await_count == 2

    @pytest.mark.asyncio
    async def test_loader_error_propagates(self, test_cache: TTLCache):
        loader = AsyncMock(side_effect=LookupError("gone"))

        with pytest.raises(LookupError):
            await test_cache.get_or_load("funds:x:nav", loader)
        assert test_cache.get("funds:x:nav") is None


class TestInvalidation:
    def test_by_prefix(self, test_cache: TTLCache):
        test_cache.set("portfolios:list:0:100", [])
        test_cache.set("portfolios:abc", "p")
        test_cache.set("accounts:list:0:100", [])

        assert test_cache.invalidate(PORTFOLIOS_PREFIX) == 2
        assert test_cache.get("accounts:list:0:100") == []

    def test_ledger_sweep_keeps_accounts(self, test_cache: TTLCache):
        test_cache.set(f"{PORTFOLIOS_PREFIX}list:0:100", [])
        test_cache.set(f"{FUNDS_PREFIX}abc:nav", "nav")
        test_cache.set(f"{FUNDS_PREFIX}abc:investors:0:100", [])
        test_cache.set(f"{HOLDINGS_PREFIX}h1:detail", "detail")
        test_cache.set(f"{ACCOUNTS_PREFIX}list:0:100", ["acct"])

        assert test_cache.invalidate_ledger() == 4
        assert test_cache.get(f"{FUNDS_PREFIX}abc:nav") is None
        assert test_cache.get(f"{ACCOUNTS_PREFIX}list:0:100") == ["acct"]

    def test_clear(self, test_cache: TTLCache):
        test_cache.set("a", 1)
        test_cache.clear()
        assert test_cache.get("a") is None


class TestDisabled:
    def test_everything_is_a_noop(self, disabled_cache: TTLCache):
        disabled_cache.set("k", "v")
        assert disabled_cache.get("k") is None
        assert disabled_cache.invalidate_ledger() == 0
        assert disabled_cache.get_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_get_or_load_always_loads(self, disabled_cache: TTLCache):
        loader = AsyncMock(return_value="v")
        await disabled_cache.get_or_load("k", loader)
        await disabled_cache.get_or_load("k", loader)
        assert loader.await_count == 2


class TestStats:
    def test_initial(self, test_cache: TTLCache):
        stats = test_cache.get_stats()
        assert stats["enabled"] is True
        assert stats["hit_rate"] == "N/A"

    def test_hit_rate(self, test_cache: TTLCache):
        test_cache.set("k", "v")
        test_cache.get("k")
        test_cache.get("missing")

        stats = test_cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == "50.0%"
