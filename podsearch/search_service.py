import json
import logging
import time
from typing import Dict, List, Optional, Sequence

from podsearch import config
from podsearch.backends import SearchBackend
from podsearch.cache_service import CachedSearch, CacheService, should_cache
from podsearch.errors import SearchError, handle_error
from podsearch.facets import aggregate_facets
from podsearch.models import CacheStats, Hit, PaginatedResult, SearchMoreResult, SearchParams, SearchStats
from podsearch.query_parser import build_search_query, parse_search_query
from podsearch.validation import sanitize_search_query, validate_search_params, validate_search_query

log = logging.getLogger(__name__)


class SearchService:
    """
    Entry point for transcript search. Pass `cache=None` to always hit the
    backend (the pre-warm job does this).

    There is no request coalescing: two concurrent first-page requests for
    the same uncached query both reach the backend.
    """

    def __init__(
        self,
        backend: SearchBackend,
        cache: Optional[CacheService] = None,
        page_size: int = config.PAGE_SIZE,
    ):
        self.backend = backend
        self.cache = cache
        self.page_size = page_size

        # ----- Cache accounting -----
        self.cache_hits = 0
        self.cache_misses = 0
        self.hits_by_source: Dict[str, int] = {}
        self.backend_calls = 0

    # ---------------------- public API ----------------------

    async def search(
        self,
        query: str,
        filter: Optional[Sequence[str]] = None,
        offset: int = 0,
        edited_only: bool = False,
        limit: Optional[int] = None,
    ) -> PaginatedResult:
        """
        Flow: validate → sanitize → cache lookup (offset 0 only) → parse/build
        → backend → facets → cache write-through (offset 0 only).

        `offset` is the start position, `limit` the page size (defaults to
        the service page size). Raises SearchError, NetworkError or AppError.
        """
        t0 = time.perf_counter()
        filters = list(filter or [])
        try:
            return await self._search(query, filters, offset, edited_only, self.page_size if limit is None else limit)
        except Exception as e:
            err = handle_error(e)
            log.error(
                json.dumps(
                    {
                        "event": "search_failed",
                        "query": str(query)[:50],
                        "code": err.code,
                        "error": err.message,
                        "took_ms": int((time.perf_counter() - t0) * 1000),
                    }
                )
            )
            if err is e:
                raise
            raise err from e

    async def search_more(
        self,
        query: str,
        current_hits: List[Hit],
        filter: Optional[Sequence[str]] = None,
        edited_only: bool = False,
    ) -> SearchMoreResult:
        """Fetch the page after `current_hits` and append it. Callers must not overlap calls."""
        result = await self.search(query, filter=filter, offset=len(current_hits), edited_only=edited_only)
        return SearchMoreResult(hits=[*current_hits, *result.items], has_more=result.has_more, stats=result.stats)

    def stats(self) -> CacheStats:
        total = self.cache_hits + self.cache_misses
        hit_rate = self.cache_hits / total if total > 0 else 0.0
        return CacheStats(
            cache_hits=self.cache_hits,
            cache_misses=self.cache_misses,
            cache_hit_rate=round(hit_rate, 3),
            hits_by_source=dict(self.hits_by_source),
            backend_calls=self.backend_calls,
        )

    # ---------------------- internals ----------------------

    async def _search(
        self, query: str, filters: List[str], offset: int, edited_only: bool, limit: int
    ) -> PaginatedResult:
        check = validate_search_query(query)
        if check.valid:
            check = validate_search_params({"filter": filters, "offset": offset})
        if not check.valid:
            raise SearchError(check.error)
        if limit < 1:
            raise SearchError("Limit must be at least 1")

        q = sanitize_search_query(query)
        if not q.strip():
            # e.g. a query made only of stripped characters
            raise SearchError("Search query cannot be empty")

        if offset == 0 and self.cache is not None:
            cached = await self.cache.lookup(q, filters, edited_only)
            if cached is not None:
                return self._from_cache(cached, q, filters, edited_only)
            self.cache_misses += 1

        params = SearchParams(
            query=build_search_query(parse_search_query(q)),
            original_query=q,
            filter=filters,
            offset=offset,
            limit=limit,
            edited_only=edited_only,
        )
        self.backend_calls += 1
        raw = await self.backend.search(params)

        stats = SearchStats(
            estimated_total_hits=raw.estimated_total_hits,
            processing_time=raw.processing_time_ms,
            facets=aggregate_facets(raw.facet_distribution),
            cache_hit=False,
            cache_source="none",
        )
        result = PaginatedResult(
            items=raw.hits,
            total=raw.estimated_total_hits,
            page=offset // limit + 1,
            limit=limit,
            has_more=len(raw.hits) == limit,
            stats=stats,
        )

        cached_now = False
        if offset == 0 and self.cache is not None and should_cache(q, stats):
            await self.cache.store(q, filters, edited_only, result.items, stats, result.has_more)
            cached_now = True

        log.info(
            json.dumps(
                {
                    "event": "search",
                    "query_len": len(q),
                    "backend_query": params.query[:50],
                    "filters": len(filters),
                    "offset": offset,
                    "limit": limit,
                    "edited_only": edited_only,
                    "hits": len(result.items),
                    "total": result.total,
                    "cached_now": cached_now,
                    "backend_took_ms": raw.processing_time_ms,
                }
            )
        )
        return result

    def _from_cache(self, cached: CachedSearch, query: str, filters: List[str], edited_only: bool) -> PaginatedResult:
        self.cache_hits += 1
        self.hits_by_source[cached.source] = self.hits_by_source.get(cached.source, 0) + 1

        stats = cached.stats.model_copy(
            update={"cache_hit": True, "cache_source": cached.source, "cache_response_time": cached.response_time_ms}
        )
        log.info(
            json.dumps(
                {
                    "event": "search_cache_hit",
                    "query": query[:50],
                    "source": cached.source,
                    "hits": len(cached.hits),
                    "filters": len(filters),
                    "edited_only": edited_only,
                    "lookup_ms": cached.response_time_ms,
                }
            )
        )
        return PaginatedResult(
            items=cached.hits,
            total=stats.estimated_total_hits,
            page=1,
            limit=len(cached.hits),
            has_more=cached.has_more,
            stats=stats,
        )
