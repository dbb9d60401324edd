"""
Cache Tiers

Key/value stores that make up the tiered cache, fastest first:

- MemoryTier: process-local, bounded, oldest-write eviction
- RedisTier: shared across processes through redis-py

Tiers are allowed to raise; TieredCache catches every tier error and
degrades to the next tier.
"""

import json
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable

import redis

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """
    One cached payload.

    Attributes:
        key: Deterministic hash of operation and parameters
        value: Cached payload
        written_at: Unix timestamp of the write
        ttl: Lifetime in seconds
        hits: Number of reads served
        tags: Labels for bulk invalidation
    """

    key: str
    value: Any
    written_at: float
    ttl: float
    hits: int = 0
    tags: tuple[str, ...] = field(default_factory=tuple)

    def is_expired(self, now: float) -> bool:
        """An entry is dead once ``now - written_at > ttl``."""
        return now - self.written_at > self.ttl


class CacheTier(ABC):
    """Interface of a single cache tier."""

    name: str = "tier"

    @abstractmethod
    def get(self, key: str) -> CacheEntry | None:
        """Return a live entry or None."""

    @abstractmethod
    def set(self, entry: CacheEntry) -> None:
        """Store an entry, replacing any previous one."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a key; True if it existed."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every entry owned by this tier."""

    @abstractmethod
    def delete_tag(self, tag: str) -> int:
        """Remove every entry carrying ``tag``; returns the count removed."""

    def sweep(self) -> int:
        """Purge expired entries; tiers with native expiry return 0."""
        return 0

    def size(self) -> int | None:
        """Number of entries, None when unknown."""
        return None


class MemoryTier(CacheTier):
    """
    Process-local tier.

    Entries are kept in write order; when ``max_entries`` is reached the
    oldest write is evicted. Expired entries are dropped lazily on read
    and eagerly by ``sweep``.
    """

    def __init__(
        self,
        name: str = "memory",
        max_entries: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self._max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            entry.hits += 1
            return entry

    def set(self, entry: CacheEntry) -> None:
        with self._lock:
            self._entries.pop(entry.key, None)
            while len(self._entries) >= self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"{self.name} tier evicted {evicted}")
            self._entries[entry.key] = entry

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def delete_tag(self, tag: str) -> int:
        with self._lock:
            doomed = [k for k, e in self._entries.items() if tag in e.tags]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            doomed = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisTier(CacheTier):
    """
    Shared tier backed by Redis.

    Payloads are stored as JSON with ``SETEX`` so Redis expires them on
    its own; tag membership is kept in Redis sets. Values must be JSON
    serializable.
    """

    def __init__(
        self,
        client: redis.Redis,
        prefix: str = "aiops:cache:",
        clock: Callable[[], float] = time.time,
    ):
        self.name = "redis"
        self._client = client
        self._prefix = prefix
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisTier":
        """Create a tier from a ``redis://`` URL."""
        client = redis.Redis.from_url(url, decode_responses=True)
        logger.info("Redis cache tier configured")
        return cls(client, **kwargs)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self._prefix}tag:{tag}"

    def get(self, key: str) -> CacheEntry | None:
        raw = self._client.get(self._key(key))
        if raw is None:
            return None
        payload = json.loads(raw)
        entry = CacheEntry(
            key=key,
            value=payload["value"],
            written_at=payload["written_at"],
            ttl=payload["ttl"],
            tags=tuple(payload.get("tags", ())),
        )
        if entry.is_expired(self._clock()):
            self._client.delete(self._key(key))
            return None
        return entry

    def set(self, entry: CacheEntry) -> None:
        body = json.dumps(
            {
                "value": entry.value,
                "written_at": entry.written_at,
                "ttl": entry.ttl,
                "tags": list(entry.tags),
            }
        )
        expiry = max(1, math.ceil(entry.ttl))
        pipe = self._client.pipeline()
        pipe.setex(self._key(entry.key), expiry, body)
        for tag in entry.tags:
            pipe.sadd(self._tag_key(tag), entry.key)
        pipe.execute()

    def delete(self, key: str) -> bool:
        return bool(self._client.delete(self._key(key)))

    def clear(self) -> None:
        keys = list(self._client.scan_iter(match=f"{self._prefix}*"))
        if keys:
            self._client.delete(*keys)

    def delete_tag(self, tag: str) -> int:
        members = self._client.smembers(self._tag_key(tag))
        removed = 0
        if members:
            removed = self._client.delete(*(self._key(k) for k in members))
        self._client.delete(self._tag_key(tag))
        return removed
