"""In-process stand-ins for the search backend and the Redis client."""
from fnmatch import fnmatch
from typing import Dict, List, Optional

from redis.exceptions import ConnectionError as RedisConnectionError

from podsearch.models import BackendResult, SearchParams


def make_hits(start: int, stop: int) -> List[dict]:
    return [
        {"id": str(i), "season": "s01", "episode": "e01", "time": "0:00:01", "speaker": "Matt", "line": f"line {i}", "edited": False}
        for i in range(start, stop)
    ]


class StubBackend:
    """Serves `total` numbered hits, paged by params.offset / params.limit."""

    def __init__(self, total: int = 50, facets: Optional[Dict[str, Dict[str, int]]] = None, error: Exception = None):
        self.total = total
        self.facets = facets if facets is not None else {"season": {"s01": 30, "s02": 20}}
        self.error = error
        self.calls: List[SearchParams] = []
        self.closed = False

    async def search(self, params: SearchParams) -> BackendResult:
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        stop = min(params.offset + params.limit, self.total)
        return BackendResult(
            hits=make_hits(params.offset, stop),
            estimated_total_hits=self.total,
            processing_time_ms=3,
            facet_distribution=self.facets,
        )

    async def aclose(self) -> None:
        self.closed = True


class FakeRedis:
    """The subset of redis.asyncio.Redis used by EdgeCache."""

    def __init__(self):
        self.store: Dict[str, bytes] = {}
        self.px: Dict[str, Optional[int]] = {}

    async def get(self, name):
        return self.store.get(name)

    async def set(self, name, value, px=None):
        self.store[name] = value.encode("utf-8") if isinstance(value, str) else value
        self.px[name] = px
        return True

    async def delete(self, *names):
        removed = 0
        for name in names:
            if self.store.pop(name, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match=None):
        for name in list(self.store):
            if match is None or fnmatch(name, match):
                yield name

    async def aclose(self):
        pass


class BrokenRedis(FakeRedis):
    async def get(self, name):
        raise RedisConnectionError("connection refused")

    async def set(self, name, value, px=None):
        raise RedisConnectionError("connection refused")

    async def delete(self, *names):
        raise RedisConnectionError("connection refused")


class BrokenTier:
    """A cache tier whose every operation fails."""

    def __init__(self, name: str):
        self.name = name

    async def get(self, key):
        raise RuntimeError(f"{self.name} down")

    async def set(self, key, value, ttl_ms=None):
        raise RuntimeError(f"{self.name} down")

    async def delete(self, key):
        raise RuntimeError(f"{self.name} down")

    async def clear(self):
        raise RuntimeError(f"{self.name} down")
