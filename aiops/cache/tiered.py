"""
Tiered Cache

Memoizes expensive operation results behind a chain of tiers (process
memory, then a shared Redis tier) with a last-resort in-memory fallback.

Keys are the sha256 of the canonical JSON of ``{"operation": op,
**params}``, so equal parameters in any order hit the same entry.

A failing tier is logged and skipped; writes a tier refuses go to the
fallback map. No cache failure ever propagates to the caller, and
``get_or_compute`` always returns the computed value when the cache is
unusable.
"""

import asyncio
import hashlib
import json
import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from aiops.cache.tiers import CacheEntry, CacheTier, MemoryTier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachePreset:
    """Named TTL and tags for a family of cached results."""

    ttl: float
    tags: tuple[str, ...] = ()


CACHE_PRESETS: dict[str, CachePreset] = {
    "insights": CachePreset(ttl=30 * 60, tags=("insights",)),
    "suggestions": CachePreset(ttl=60 * 60, tags=("suggestions",)),
    "embeddings": CachePreset(ttl=24 * 60 * 60, tags=("embeddings",)),
    "static": CachePreset(ttl=6 * 60 * 60, tags=("static",)),
    "templates": CachePreset(ttl=2 * 60 * 60, tags=("templates",)),
    "dashboard": CachePreset(ttl=5 * 60, tags=("dashboard",)),
}


@dataclass
class CacheStats:
    """Snapshot of cache counters."""

    hits: int
    misses: int
    hit_rate: float
    hits_by_tier: dict[str, int]
    errors_by_tier: dict[str, int]
    entries_by_tier: dict[str, int | None]


class TieredCache:
    """
    Read-through cache over ordered tiers.

    Example:
        cache = TieredCache([MemoryTier(), RedisTier.from_url(url)])
        cache.set("insights", {"user": "u1"}, payload, ttl=1800)
        cache.get("insights", {"user": "u1"})

        result = await cache.get_or_compute(
            "insights", {"user": "u1"}, lambda: build_insights("u1"),
            preset="insights",
        )
    """

    def __init__(
        self,
        tiers: list[CacheTier],
        fallback: MemoryTier | None = None,
        default_ttl: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            tiers: Tiers in lookup order, fastest first
            fallback: Last-resort map; a fresh MemoryTier when None
            default_ttl: TTL for writes without an explicit one
            clock: Time source (unix seconds)
        """
        self._tiers = list(tiers)
        self._fallback = fallback or MemoryTier(name="fallback", clock=clock)
        self._default_ttl = default_ttl
        self._clock = clock

        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._hits_by_tier: dict[str, int] = defaultdict(int)
        self._errors_by_tier: dict[str, int] = defaultdict(int)

    @staticmethod
    def make_key(operation: str, params: dict[str, Any] | None = None) -> str:
        """Deterministic key for an operation and its parameters."""
        canonical = json.dumps(
            {"operation": operation, **(params or {})},
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    @property
    def _chain(self) -> list[CacheTier]:
        return [*self._tiers, self._fallback]

    @property
    def tier_names(self) -> list[str]:
        """Tier names in lookup order, fallback last."""
        return [tier.name for tier in self._chain]

    def _tier_failed(self, tier: CacheTier, action: str, error: Exception) -> None:
        with self._lock:
            self._errors_by_tier[tier.name] += 1
        logger.warning(f"Cache tier {tier.name} failed on {action}: {error}")

    def _lookup(self, key: str) -> tuple[bool, Any]:
        for tier in self._chain:
            try:
                entry = tier.get(key)
            except Exception as e:
                self._tier_failed(tier, "get", e)
                continue
            if entry is not None:
                with self._lock:
                    self._hits += 1
                    self._hits_by_tier[tier.name] += 1
                return True, entry.value
        with self._lock:
            self._misses += 1
        return False, None

    def get(
        self, operation: str, params: dict[str, Any] | None = None, default: Any = None
    ) -> Any:
        """
        Return the cached value or ``default``.

        Tiers are consulted fastest first; a hit is not promoted.
        """
        found, value = self._lookup(self.make_key(operation, params))
        return value if found else default

    def has(self, operation: str, params: dict[str, Any] | None = None) -> bool:
        """Whether a live entry exists in any tier."""
        found, _ = self._lookup(self.make_key(operation, params))
        return found

    def set(
        self,
        operation: str,
        params: dict[str, Any] | None,
        value: Any,
        ttl: float | None = None,
        tier_ttls: dict[str, float] | None = None,
        tags: tuple[str, ...] | list[str] = (),
    ) -> None:
        """
        Write a value to every tier.

        Args:
            operation: Operation name
            params: Operation parameters
            value: Payload to cache
            ttl: Lifetime in seconds for every tier (default TTL when None)
            tier_ttls: Per-tier overrides keyed by tier name
            tags: Labels for ``clear_by_tag``
        """
        key = self.make_key(operation, params)
        now = self._clock()
        base_ttl = ttl if ttl is not None else self._default_ttl
        tier_ttls = tier_ttls or {}

        refused = False
        for tier in self._tiers:
            entry = CacheEntry(
                key=key,
                value=value,
                written_at=now,
                ttl=tier_ttls.get(tier.name, base_ttl),
                tags=tuple(tags),
            )
            try:
                tier.set(entry)
            except Exception as e:
                self._tier_failed(tier, "set", e)
                refused = True

        if refused or not self._tiers:
            try:
                self._fallback.set(
                    CacheEntry(
                        key=key,
                        value=value,
                        written_at=now,
                        ttl=tier_ttls.get(self._fallback.name, base_ttl),
                        tags=tuple(tags),
                    )
                )
            except Exception as e:
                self._tier_failed(self._fallback, "set", e)
        else:
            # every tier took the write; an older fallback copy is now stale
            try:
                self._fallback.delete(key)
            except Exception as e:
                self._tier_failed(self._fallback, "delete", e)

    def delete(self, operation: str, params: dict[str, Any] | None = None) -> bool:
        """Remove an entry from every tier; True if any tier held it."""
        key = self.make_key(operation, params)
        removed = False
        for tier in self._chain:
            try:
                removed = tier.delete(key) or removed
            except Exception as e:
                self._tier_failed(tier, "delete", e)
        return removed

    def clear(self) -> None:
        """Empty every tier."""
        for tier in self._chain:
            try:
                tier.clear()
            except Exception as e:
                self._tier_failed(tier, "clear", e)

    def clear_by_tag(self, tag: str) -> int:
        """Remove entries carrying ``tag``; returns the count removed."""
        removed = 0
        for tier in self._chain:
            try:
                removed += tier.delete_tag(tag)
            except Exception as e:
                self._tier_failed(tier, "delete_tag", e)
        return removed

    async def get_or_compute(
        self,
        operation: str,
        params: dict[str, Any] | None,
        compute: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
        preset: str | None = None,
        tags: tuple[str, ...] = (),
    ) -> Any:
        """
        Return the cached value, computing and caching it on a miss.

        Errors from ``compute`` propagate; cache errors never do.

        Raises:
            KeyError: If ``preset`` is not a known preset, before computing
        """
        chosen = CACHE_PRESETS[preset] if preset is not None else None

        found, value = self._lookup(self.make_key(operation, params))
        if found:
            return value

        result = await compute()

        if chosen is not None:
            ttl = ttl if ttl is not None else chosen.ttl
            tags = tuple(tags) + chosen.tags
        self.set(operation, params, result, ttl=ttl, tags=tags)
        return result

    def sweep(self) -> int:
        """Purge expired entries from tiers that need it."""
        purged = 0
        for tier in self._chain:
            try:
                purged += tier.sweep()
            except Exception as e:
                self._tier_failed(tier, "sweep", e)
        if purged:
            logger.debug(f"Cache sweep purged {purged} expired entries")
        return purged

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Periodic sweep loop; runs until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()

    def get_stats(self) -> CacheStats:
        """Counters and per-tier sizes."""
        entries: dict[str, int | None] = {}
        for tier in self._chain:
            try:
                entries[tier.name] = tier.size()
            except Exception as e:
                self._tier_failed(tier, "size", e)
                entries[tier.name] = None
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                hit_rate=self._hits / total * 100 if total else 0.0,
                hits_by_tier=dict(self._hits_by_tier),
                errors_by_tier=dict(self._errors_by_tier),
                entries_by_tier=entries,
            )
