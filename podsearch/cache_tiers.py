"""
Cache tiers: in-process memory, pre-generated static files, and a Redis edge
store. They share one async get/set/delete/clear shape (CacheTier) and are
composed by CacheService, which decides lookup order and swallows failures.

Values crossing a tier are JSON-compatible dicts.
"""

import asyncio
import json
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from podsearch.errors import CacheError

log = logging.getLogger(__name__)

_SLUG = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def now_ms() -> float:
    return time.time() * 1000


class CacheTier(Protocol):
    name: str

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> None: ...


# ---------------------- memory ----------------------

@dataclass
class CacheEntry:
    data: Any
    timestamp: float  # epoch ms
    ttl: float        # ms, relative to timestamp

    def expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl


class MemoryCache:
    """
    Bounded in-process cache. Expired entries are dropped when read; when
    full, the oldest inserted key is evicted (insertion order, not recency).
    """

    name = "memory"

    def __init__(self, max_size: int = 200, default_ttl_ms: int = 5 * 60 * 1000):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self.default_ttl_ms = default_ttl_ms
        self._entries: Dict[str, CacheEntry] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(now_ms()):
            self._entries.pop(key, None)
            return None
        return entry.data

    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        self.put(key, value, ttl_ms)

    def put(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        # size check, eviction and insert must not be split by an await
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
        self._entries[key] = CacheEntry(data=value, timestamp=now_ms(), ttl=ttl)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()

    def size(self) -> int:
        now = now_ms()
        for key in [k for k, e in self._entries.items() if e.expired(now)]:
            del self._entries[key]
        return len(self._entries)


# ---------------------- static files ----------------------

class StaticFileCache:
    """
    Read-only tier over `<cache_dir>/<slug>.json` files written by
    scripts/prewarm_cache.py. Files carry an absolute `expiresAt` (epoch ms).
    """

    name = "static"

    def __init__(self, cache_dir: str):
        self.cache_dir = cache_dir

    def path_for(self, slug: str) -> str:
        return os.path.join(self.cache_dir, f"{slug}.json")

    async def get(self, key: str) -> Optional[Any]:
        if not _SLUG.match(key):
            return None
        path = self.path_for(key)
        if not os.path.exists(path):
            return None
        try:
            data = await asyncio.to_thread(_read_json, path)
        except (OSError, ValueError) as e:
            log.warning(json.dumps({"event": "cache_tier_error", "tier": self.name, "key": key, "error": str(e)}))
            return None
        if not isinstance(data, dict) or now_ms() > data.get("expiresAt", 0):
            return None
        return data.get("result")

    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        raise CacheError("Cannot write to static cache")

    async def delete(self, key: str) -> None:
        raise CacheError("Cannot delete from static cache")

    async def clear(self) -> None:
        raise CacheError("Cannot clear static cache")


def _read_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


# ---------------------- redis edge ----------------------

class EdgeCache:
    """
    Remote key-value tier. Entries are stored as
    {query, timestamp, expiresAt, result} with a matching Redis PX expiry.
    Reads never raise; writes raise CacheError for CacheService to log.
    """

    name = "edge"

    def __init__(self, redis: Redis, namespace: str = "podsearch", default_ttl_ms: int = 5 * 60 * 1000):
        self.redis = redis
        self.namespace = namespace
        self.default_ttl_ms = default_ttl_ms

    def _name(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.redis.get(self._name(key))
            if raw is None:
                return None
            envelope = json.loads(raw)
        except (RedisError, OSError, ValueError) as e:
            log.warning(json.dumps({"event": "cache_tier_error", "tier": self.name, "key": key, "error": str(e)}))
            return None
        if now_ms() > envelope.get("expiresAt", 0):
            return None
        return envelope.get("result")

    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        ts = int(now_ms())
        envelope = {"query": key, "timestamp": ts, "expiresAt": ts + ttl, "result": value}
        try:
            await self.redis.set(self._name(key), json.dumps(envelope), px=int(ttl))
        except (RedisError, OSError) as e:
            raise CacheError(f"Failed to set edge cache: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(self._name(key))
        except (RedisError, OSError) as e:
            raise CacheError(f"Failed to delete from edge cache: {e}") from e

    async def clear(self) -> None:
        try:
            async for name in self.redis.scan_iter(match=f"{self.namespace}:*"):
                await self.redis.delete(name)
        except (RedisError, OSError) as e:
            raise CacheError(f"Failed to clear edge cache: {e}") from e
