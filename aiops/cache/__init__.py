"""
Cache module: tiered memoization with degrade-to-fallback.

Components:
    TieredCache: Read-through cache over ordered tiers
    CacheTier: Tier interface
    MemoryTier: Process-local bounded tier
    RedisTier: Shared tier over redis-py
    CACHE_PRESETS: Named TTLs for common result families
"""

from aiops.cache.tiered import CACHE_PRESETS, CachePreset, CacheStats, TieredCache
from aiops.cache.tiers import CacheEntry, CacheTier, MemoryTier, RedisTier

__all__ = [
    "TieredCache",
    "CacheStats",
    "CachePreset",
    "CACHE_PRESETS",
    "CacheEntry",
    "CacheTier",
    "MemoryTier",
    "RedisTier",
]
