"""
Tiered Cache Tests

Validates key derivation, TTL expiry, tier degradation, tag
invalidation and the read-through helper.

Test Categories:
1. TestKeys - Deterministic, order-independent keys
2. TestMemoryTier - Expiry, eviction and sweeping
3. TestTieredCache - Reads, writes, invalidation and statistics
4. TestDegradation - Failing tiers fall back without raising
5. TestGetOrCompute - Read-through memoization and presets
6. TestRedisTier - JSON payloads and tag sets over a mocked client
"""

import json
from unittest.mock import MagicMock

import pytest

from aiops.cache import CACHE_PRESETS, CacheEntry, MemoryTier, RedisTier, TieredCache


class BrokenTier(MemoryTier):
    """Tier whose every operation raises."""

    def __init__(self):
        super().__init__(name="broken")

    def get(self, key):
        raise ConnectionError("tier down")

    def set(self, entry):
        raise ConnectionError("tier down")

    def delete(self, key):
        raise ConnectionError("tier down")

    def delete_tag(self, tag):
        raise ConnectionError("tier down")

    def size(self):
        raise ConnectionError("tier down")


class OutageTier(MemoryTier):
    """Memory tier that refuses writes while ``down`` is set."""

    def __init__(self, clock):
        super().__init__(name="outage", clock=clock)
        self.down = False

    def set(self, entry):
        if self.down:
            raise ConnectionError("tier down")
        super().set(entry)


@pytest.fixture
def cache(clock):
    """Single memory tier cache on the fake clock."""
    return TieredCache([MemoryTier(clock=clock)], clock=clock)


class TestKeys:
    """Tests for TieredCache.make_key()."""

    def test_parameter_order_is_irrelevant(self):
        """Equal parameters in any order produce the same key."""
        first = TieredCache.make_key("insights", {"user": "u1", "range": "24h"})
        second = TieredCache.make_key("insights", {"range": "24h", "user": "u1"})

        assert first == second

    def test_operation_is_part_of_key(self):
        """The same parameters under different operations differ."""
        params = {"user": "u1"}

        assert TieredCache.make_key("insights", params) != TieredCache.make_key(
            "suggestions", params
        )

    def test_key_is_sha256_hex(self):
        """Keys are 64 hex characters."""
        key = TieredCache.make_key("insights")

        assert len(key) == 64
        int(key, 16)


class TestMemoryTier:
    """Tests for MemoryTier."""

    def test_entry_expires_after_ttl(self, clock):
        """An entry is served until its TTL has passed."""
        tier = MemoryTier(clock=clock)
        tier.set(CacheEntry(key="k", value=1, written_at=clock(), ttl=60))

        clock.advance(60)
        assert tier.get("k") is not None

        clock.advance(1)
        assert tier.get("k") is None

    def test_oldest_write_is_evicted(self, clock):
        """A full tier drops its oldest write first."""
        tier = MemoryTier(max_entries=2, clock=clock)
        for key in ("a", "b", "c"):
            tier.set(CacheEntry(key=key, value=key, written_at=clock(), ttl=60))

        assert tier.get("a") is None
        assert tier.get("b").value == "b"
        assert tier.size() == 2

    def test_hits_are_counted(self, clock):
        """Each read of a live entry increments its hit count."""
        tier = MemoryTier(clock=clock)
        tier.set(CacheEntry(key="k", value=1, written_at=clock(), ttl=60))

        tier.get("k")

        assert tier.get("k").hits == 2

    def test_sweep_purges_expired(self, clock):
        """sweep removes expired entries and reports how many."""
        tier = MemoryTier(clock=clock)
        tier.set(CacheEntry(key="short", value=1, written_at=clock(), ttl=10))
        tier.set(CacheEntry(key="long", value=2, written_at=clock(), ttl=100))

        clock.advance(50)

        assert tier.sweep() == 1
        assert tier.size() == 1


class TestTieredCache:
    """Tests for TieredCache reads and writes."""

    def test_set_then_get(self, cache):
        """A written value is read back."""
        cache.set("insights", {"user": "u1"}, {"score": 91})

        assert cache.get("insights", {"user": "u1"}) == {"score": 91}
        assert cache.has("insights", {"user": "u1"})

    def test_miss_returns_default(self, cache):
        """A missing key yields the default."""
        assert cache.get("insights", {"user": "nobody"}, default="none") == "none"

    def test_ttl_expiry(self, cache, clock):
        """Values vanish once their TTL passes."""
        cache.set("insights", {"user": "u1"}, "v", ttl=30)

        clock.advance(31)

        assert cache.get("insights", {"user": "u1"}) is None

    def test_default_ttl(self, clock):
        """Writes without a TTL use the cache default."""
        cache = TieredCache([MemoryTier(clock=clock)], default_ttl=10, clock=clock)
        cache.set("static", None, "v")

        clock.advance(11)

        assert not cache.has("static")

    def test_per_tier_ttl(self, clock):
        """tier_ttls overrides the lifetime for a named tier."""
        fast = MemoryTier(name="fast", clock=clock)
        slow = MemoryTier(name="slow", clock=clock)
        cache = TieredCache([fast, slow], clock=clock)

        cache.set("insights", None, "v", ttl=600, tier_ttls={"fast": 5})
        clock.advance(10)

        assert cache.get("insights") == "v"
        stats = cache.get_stats()
        assert stats.hits_by_tier == {"slow": 1}

    def test_delete(self, cache):
        """delete removes the entry from every tier."""
        cache.set("insights", {"user": "u1"}, "v")

        assert cache.delete("insights", {"user": "u1"}) is True
        assert cache.delete("insights", {"user": "u1"}) is False
        assert not cache.has("insights", {"user": "u1"})

    def test_clear_by_tag(self, cache):
        """Only entries carrying the tag are removed."""
        cache.set("dashboard", {"range": "1h"}, 1, tags=("dashboard",))
        cache.set("dashboard", {"range": "24h"}, 2, tags=("dashboard",))
        cache.set("insights", {"user": "u1"}, 3, tags=("insights",))

        assert cache.clear_by_tag("dashboard") == 2
        assert not cache.has("dashboard", {"range": "1h"})
        assert cache.get("insights", {"user": "u1"}) == 3

    def test_clear(self, cache):
        """clear empties every tier."""
        cache.set("insights", None, 1)

        cache.clear()

        assert not cache.has("insights")

    def test_hit_rate(self, cache):
        """Hit rate is hits over lookups as a percentage."""
        cache.set("insights", None, 1)
        cache.get("insights")
        cache.get("insights")
        cache.get("suggestions")

        stats = cache.get_stats()

        assert stats.hits == 2
        assert stats.misses == 1
        assert stats.hit_rate == pytest.approx(200 / 3)

    def test_hit_rate_without_lookups(self, cache):
        """No lookups means a zero hit rate."""
        assert cache.get_stats().hit_rate == 0.0

    def test_tier_names(self, clock):
        """The fallback is always the last tier."""
        cache = TieredCache([MemoryTier(name="memory", clock=clock)], clock=clock)

        assert cache.tier_names == ["memory", "fallback"]

    def test_sweep(self, cache, clock):
        """sweep purges across tiers."""
        cache.set("insights", None, 1, ttl=5)
        clock.advance(6)

        assert cache.sweep() == 1


class TestDegradation:
    """Tests for failing tiers."""

    @pytest.fixture
    def degraded(self, clock):
        """Cache whose only tier always fails."""
        return TieredCache([BrokenTier()], clock=clock)

    def test_refused_write_lands_in_fallback(self, degraded):
        """A write the tier refuses is served from the fallback."""
        degraded.set("insights", {"user": "u1"}, "v")

        assert degraded.get("insights", {"user": "u1"}) == "v"
        assert degraded.get_stats().hits_by_tier == {"fallback": 1}

    def test_errors_are_counted_not_raised(self, degraded):
        """Every tier error is recorded and swallowed."""
        degraded.set("insights", None, "v")
        degraded.get("insights")
        degraded.delete("insights")
        degraded.clear_by_tag("insights")

        stats = degraded.get_stats()

        assert stats.errors_by_tier["broken"] == 5
        assert stats.entries_by_tier["broken"] is None

    def test_healthy_tier_after_broken_one(self, clock):
        """A broken first tier is skipped in favour of the next."""
        healthy = MemoryTier(name="memory", clock=clock)
        cache = TieredCache([BrokenTier(), healthy], clock=clock)

        cache.set("insights", None, "v")

        assert cache.get("insights") == "v"
        assert cache.get_stats().hits_by_tier == {"memory": 1}

    def test_recovered_write_clears_stale_fallback(self, clock):
        """A write every tier accepts drops the older fallback copy."""
        tier = OutageTier(clock)
        cache = TieredCache([tier], clock=clock)

        tier.down = True
        cache.set("insights", {"user": "u1"}, "stale")
        tier.down = False
        cache.set("insights", {"user": "u1"}, "fresh")

        assert cache.get("insights", {"user": "u1"}) == "fresh"

        tier.clear()

        assert cache.get("insights", {"user": "u1"}) is None
        assert cache.get_stats().entries_by_tier["fallback"] == 0

    @pytest.mark.asyncio
    async def test_get_or_compute_survives_broken_tier(self, degraded):
        """The computed value is returned even with a broken tier."""

        async def compute():
            return {"answer": 42}

        result = await degraded.get_or_compute("insights", None, compute)

        assert result == {"answer": 42}


class TestGetOrCompute:
    """Tests for TieredCache.get_or_compute()."""

    @pytest.mark.asyncio
    async def test_compute_runs_once(self, cache):
        """A second call is served from the cache."""
        calls = []

        async def compute():
            calls.append(1)
            return "result"

        first = await cache.get_or_compute("insights", {"user": "u1"}, compute)
        second = await cache.get_or_compute("insights", {"user": "u1"}, compute)

        assert first == second == "result"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_preset_ttl_and_tags(self, cache, clock):
        """Presets supply the TTL and invalidation tags."""

        async def compute():
            return "view"

        await cache.get_or_compute("dashboard", {"range": "1h"}, compute, preset="dashboard")

        clock.advance(CACHE_PRESETS["dashboard"].ttl - 1)
        assert cache.has("dashboard", {"range": "1h"})

        assert cache.clear_by_tag("dashboard") == 1

    @pytest.mark.asyncio
    async def test_preset_expiry(self, cache, clock):
        """Preset entries expire after the preset TTL."""

        async def compute():
            return "view"

        await cache.get_or_compute("dashboard", None, compute, preset="dashboard")
        clock.advance(CACHE_PRESETS["dashboard"].ttl + 1)

        assert not cache.has("dashboard")

    @pytest.mark.asyncio
    async def test_compute_errors_propagate(self, cache):
        """Errors from the computation reach the caller and are not cached."""

        async def compute():
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await cache.get_or_compute("insights", None, compute)

        assert not cache.has("insights")

    @pytest.mark.asyncio
    async def test_unknown_preset_rejected_before_compute(self, cache):
        """An unknown preset fails without running the computation."""
        calls = []

        async def compute():
            calls.append(1)
            return "view"

        with pytest.raises(KeyError):
            await cache.get_or_compute("dashboard", None, compute, preset="weekly")

        assert calls == []
        assert not cache.has("dashboard")

    def test_presets(self):
        """Preset lifetimes match their result families."""
        assert CACHE_PRESETS["dashboard"].ttl == 300
        assert CACHE_PRESETS["insights"].ttl == 1800
        assert CACHE_PRESETS["embeddings"].ttl == 86400


class TestRedisTier:
    """Tests for RedisTier over a mocked redis client."""

    def test_set_uses_setex_and_tag_sets(self, clock):
        """Writes expire natively and register tag membership."""
        client = MagicMock()
        tier = RedisTier(client, prefix="t:", clock=clock)

        tier.set(CacheEntry(key="k", value={"a": 1}, written_at=clock(), ttl=2.5, tags=("x",)))

        pipe = client.pipeline.return_value
        name, expiry, body = pipe.setex.call_args.args
        assert name == "t:k"
        assert expiry == 3
        assert json.loads(body)["value"] == {"a": 1}
        pipe.sadd.assert_called_once_with("t:tag:x", "k")
        pipe.execute.assert_called_once()

    def test_get_decodes_payload(self, clock):
        """Stored JSON is decoded into a CacheEntry."""
        client = MagicMock()
        client.get.return_value = json.dumps(
            {"value": [1, 2], "written_at": clock(), "ttl": 60, "tags": ["x"]}
        )
        tier = RedisTier(client, clock=clock)

        entry = tier.get("k")

        assert entry.value == [1, 2]
        assert entry.tags == ("x",)

    def test_get_missing(self, clock):
        """A missing key is None."""
        client = MagicMock()
        client.get.return_value = None

        assert RedisTier(client, clock=clock).get("k") is None

    def test_delete_tag(self, clock):
        """Tag deletion removes member keys and the tag set."""
        client = MagicMock()
        client.smembers.return_value = {"k1"}
        client.delete.return_value = 1
        tier = RedisTier(client, prefix="t:", clock=clock)

        assert tier.delete_tag("x") == 1
        client.delete.assert_any_call("t:k1")
        client.delete.assert_any_call("t:tag:x")
