import asyncio
import json
import logging
import random
import re
import time
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence

from pydantic import ValidationError

from podsearch.cache_tiers import CacheTier
from podsearch.models import CACHE_METADATA_FIELDS, CachedResult, CacheSource, Hit, SearchStats
from podsearch.validation import sanitize_search_query

log = logging.getLogger(__name__)

DEFAULT_TTL_MS = 5 * 60 * 1000

# Curated demo queries. scripts/prewarm_cache.py writes one static file per
# entry; requests for them are served from the static tier.
POPULAR_QUERIES = [
    "guinness",
    "ridiculous voice",
    "bronco",
    "lasagna",
    "big nightmare",
    "el chapo",
    "cheetah man",
    "see you in court",
    "beef diaper",
    "bottomless piggy bank",
    "scarecrow",
    "south pole santa",
    "obsessed with corn",
    "permit crab",
    "Wimberley",
    "tricky dick",
    "picasso",
    "grotesque genitals",
    "bethany hart",
    "morrissey",
    "goths",
    "famously",
    "oj simpson",
    "let's just say",
    "real hair",
    "refrigerator",
    "large olive",
    "Gandhi",
    "gazpacho",
]
_POPULAR = {sanitize_search_query(q).lower() for q in POPULAR_QUERIES}

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(query: str) -> str:
    """Filesystem-safe form: lowercase, non-alphanumeric runs -> '-', no edge dashes."""
    return _NON_ALNUM.sub("-", query.lower()).strip("-")


def normalize_key_query(query: str) -> str:
    """Lowercase, whitespace-collapsed query text. Punctuation is kept: `cat -dog` != `cat dog`."""
    return " ".join(query.lower().split())


def generate_cache_key(query: str, filters: Optional[Sequence[str]] = None, edited_only: bool = False) -> str:
    key = f"search:{normalize_key_query(query)}"
    if filters:
        key += ":" + ",".join(sorted(filters))
    if edited_only:
        key += ":edited"
    return key


def is_random_query(query: str) -> bool:
    return sanitize_search_query(query).lower() in _POPULAR


def random_query() -> str:
    return random.choice(POPULAR_QUERIES)


def should_cache(query: str, stats: SearchStats) -> bool:
    # popular queries already live in the static tier
    if is_random_query(query):
        return False
    return len(query.strip()) > 2 and stats.estimated_total_hits > 0


class CacheHit(NamedTuple):
    value: Any
    source: str


class CachedSearch(NamedTuple):
    hits: List[Hit]
    stats: SearchStats
    has_more: bool
    source: CacheSource
    response_time_ms: float


class CacheService:
    """
    Composes cache tiers. Tier failures are logged and treated as a miss
    (reads) or a no-op (writes); nothing raised by a tier escapes.
    """

    def __init__(self, tiers: Iterable[CacheTier], ttl_ms: int = DEFAULT_TTL_MS):
        self.tiers: Dict[str, CacheTier] = {t.name: t for t in tiers}
        self.ttl_ms = ttl_ms

    # ---------------------- generic tier access ----------------------

    async def get(self, key: str, sources: Sequence[str] = ("static", "edge", "memory")) -> Optional[CacheHit]:
        for source in sources:
            tier = self.tiers.get(source)
            if tier is None:
                continue
            try:
                value = await tier.get(key)
            except Exception as e:
                log.warning(json.dumps({"event": "cache_tier_error", "tier": source, "op": "get", "key": key, "error": str(e)}))
                continue
            if value is not None:
                log.debug(json.dumps({"event": "cache_hit", "tier": source, "key": key}))
                return CacheHit(value, source)
        log.debug(json.dumps({"event": "cache_miss", "key": key, "sources": list(sources)}))
        return None

    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None, sources: Sequence[str] = ("memory",)) -> None:
        ttl = self.ttl_ms if ttl_ms is None else ttl_ms
        await self._each(sources, "set", lambda tier: tier.set(key, value, ttl), key)

    async def delete(self, key: str, sources: Sequence[str] = ("memory", "edge")) -> None:
        await self._each(sources, "delete", lambda tier: tier.delete(key), key)

    async def clear(self, sources: Sequence[str] = ("memory",)) -> None:
        await self._each(sources, "clear", lambda tier: tier.clear(), None)

    async def _each(self, sources, op, call, key) -> None:
        # settle all: one tier failing never blocks the others
        async def run(source: str, tier: CacheTier):
            try:
                await call(tier)
            except Exception as e:
                log.warning(json.dumps({"event": "cache_write_failed", "tier": source, "op": op, "key": key, "error": str(e)}))

        jobs = [run(s, self.tiers[s]) for s in sources if s in self.tiers]
        if jobs:
            await asyncio.gather(*jobs)

    # ---------------------- search results ----------------------

    async def lookup(
        self, query: str, filters: Optional[Sequence[str]] = None, edited_only: bool = False
    ) -> Optional[CachedSearch]:
        """static (popular, unfiltered only) -> edge -> memory; first hit wins."""
        t0 = time.perf_counter()
        hit = None
        if is_random_query(query) and not filters and not edited_only:
            hit = await self.get(slugify(query), ("static",))
        if hit is None:
            hit = await self.get(generate_cache_key(query, filters, edited_only), ("edge", "memory"))
        if hit is None:
            return None

        try:
            cached = CachedResult.model_validate(hit.value)
        except ValidationError as e:
            log.warning(json.dumps({"event": "cache_tier_error", "tier": hit.source, "op": "decode", "error": str(e)}))
            return None

        took_ms = round((time.perf_counter() - t0) * 1000, 3)
        return CachedSearch(cached.hits, cached.stats, cached.has_more, hit.source, took_ms)

    async def store(
        self,
        query: str,
        filters: Optional[Sequence[str]],
        edited_only: bool,
        hits: List[Hit],
        stats: SearchStats,
        has_more: bool,
    ) -> None:
        """Write-through to edge and memory. The static tier is never written here."""
        payload = CachedResult(hits=hits, stats=stats, has_more=has_more).model_dump(
            mode="json", by_alias=True, exclude={"stats": CACHE_METADATA_FIELDS}
        )
        key = generate_cache_key(query, filters, edited_only)
        await self.set(key, payload, self.ttl_ms, sources=("edge", "memory"))
