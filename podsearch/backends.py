"""
Full-text search providers behind a single async `search(params)` call.

MeiliSearchBackend talks to a Meilisearch index; SupabaseSearchBackend calls
the transcript search RPCs exposed through PostgREST. Both raise
NetworkError for transport failures and non-2xx responses.
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import httpx

from podsearch import config
from podsearch.cache_service import generate_cache_key
from podsearch.cache_tiers import MemoryCache
from podsearch.errors import AppError, NetworkError
from podsearch.facets import aggregate_facet_rows, distribution_from_rows, facets_to_rows
from podsearch.models import BackendResult, Hit, SearchParams

log = logging.getLogger(__name__)

FACET_ATTRIBUTES = ["season", "episode"]


class SearchBackend(Protocol):
    async def search(self, params: SearchParams) -> BackendResult: ...

    async def aclose(self) -> None: ...


def has_season_or_episode_filters(filters: Sequence[str]) -> bool:
    return any("season = " in f or "episode = " in f for f in filters)


def build_filter_expression(filters: Sequence[str], edited_only: bool) -> str:
    """Filters are OR-ed together; edited_only is AND-ed onto the result."""
    expr = " OR ".join(filters)
    if edited_only:
        expr = f"({expr}) AND edited=true" if expr else "edited=true"
    return expr


def split_filters(filters: Sequence[str]) -> Tuple[List[str], List[str]]:
    """`season = "s01"` / `episode = "e12"` expressions -> (seasons, episodes)."""
    seasons: List[str] = []
    episodes: List[str] = []
    for f in filters:
        if "season = " in f:
            seasons.append(f.replace("season = ", "").replace('"', "").strip())
        elif "episode = " in f:
            episodes.append(f.replace("episode = ", "").replace('"', "").strip())
    return seasons, episodes


async def _post_json(client: httpx.AsyncClient, path: str, body: Dict[str, Any], backend: str) -> Any:
    try:
        resp = await client.post(path, json=body)
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        log.error(json.dumps({"event": "backend_error", "backend": backend, "status": e.response.status_code}))
        raise NetworkError(f"{backend} returned HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        log.error(json.dumps({"event": "backend_error", "backend": backend, "error": str(e)}))
        raise NetworkError(f"Failed to connect to {backend}") from e
    try:
        return resp.json()
    except ValueError as e:
        raise AppError(f"{backend} returned a malformed response") from e


class MeiliSearchBackend:
    def __init__(self, client: httpx.AsyncClient, index: str = "transcripts"):
        self.client = client
        self.index = index

    async def search(self, params: SearchParams) -> BackendResult:
        path = f"/indexes/{self.index}/search"
        body: Dict[str, Any] = {
            "q": params.query,
            "facets": FACET_ATTRIBUTES,
            "attributesToHighlight": ["line"],
            "limit": params.limit,
            "offset": params.offset,
        }
        expr = build_filter_expression(params.filter, params.edited_only)
        if expr:
            body["filter"] = expr

        calls = [_post_json(self.client, path, body, "meilisearch")]
        if has_season_or_episode_filters(params.filter):
            # facet counts ignore season/episode filters so the panel keeps
            # showing every season and episode that matches the text
            facet_body: Dict[str, Any] = {"q": params.query, "facets": FACET_ATTRIBUTES, "limit": 0}
            if params.edited_only:
                facet_body["filter"] = "edited=true"
            calls.append(_post_json(self.client, path, facet_body, "meilisearch"))

        responses = await asyncio.gather(*calls)
        data = responses[0]
        if not isinstance(data, dict):
            raise AppError("meilisearch returned a malformed response")
        facet_data = responses[1] if len(responses) > 1 else data
        distribution = (facet_data or {}).get("facetDistribution") or data.get("facetDistribution") or {}

        return BackendResult(
            hits=data.get("hits", []),
            estimated_total_hits=data.get("estimatedTotalHits", 0),
            processing_time_ms=data.get("processingTimeMs", 0),
            facet_distribution=distribution,
        )

    async def aclose(self) -> None:
        await self.client.aclose()


def result_cache_key(params: SearchParams) -> str:
    """query|sorted filters|offset|limit|edited_only. Covers later pages too."""
    return "|".join(
        [
            " ".join(params.query.lower().split()),
            ",".join(sorted(params.filter)),
            str(params.offset),
            str(params.limit),
            "edited" if params.edited_only else "all",
        ]
    )


def _row_to_hit(row: Dict[str, Any]) -> Hit:
    hit = {
        "id": row.get("id"),
        "season": row.get("season"),
        "time": row.get("timestamp_str"),
        "speaker": row.get("speaker"),
        "line": row.get("line"),
        "episode": row.get("episode"),
        "edited": bool(row.get("edited", False)),
    }
    hit["_formatted"] = dict(hit)
    return hit


class SupabaseSearchBackend:
    SEARCH_RPC = "/rest/v1/rpc/optimized_search_transcripts"
    FACETS_RPC = "/rest/v1/rpc/optimized_search_facets"

    def __init__(
        self,
        client: httpx.AsyncClient,
        facet_cache: Optional[MemoryCache] = None,
        result_cache: Optional[MemoryCache] = None,
    ):
        self.client = client
        self.facet_cache = facet_cache
        self.result_cache = result_cache

    async def search(self, params: SearchParams) -> BackendResult:
        key = result_cache_key(params)
        if self.result_cache is not None:
            cached = await self.result_cache.get(key)
            if cached is not None:
                log.debug(json.dumps({"event": "backend_cache_hit", "offset": params.offset}))
                return cached

        seasons, episodes = split_filters(params.filter)
        t0 = time.perf_counter()
        rows = await _post_json(
            self.client,
            self.SEARCH_RPC,
            {
                "search_query": params.query,
                "season_filter": seasons or None,
                "episode_filter": episodes or None,
                "edited_only_filter": params.edited_only,
                "limit_count": params.limit,
                "offset_count": params.offset,
            },
            "supabase",
        )
        took_ms = round((time.perf_counter() - t0) * 1000, 3)
        if not isinstance(rows, list):
            raise AppError("supabase returned a malformed response")

        distribution = await self._facets(params.query, params.edited_only)
        total = (rows[0].get("total_count") or 0) if rows else 0

        result = BackendResult(
            hits=[_row_to_hit(r) for r in rows],
            estimated_total_hits=total,
            processing_time_ms=took_ms,
            facet_distribution=distribution,
        )
        if self.result_cache is not None:
            await self.result_cache.set(key, result)
        return result

    async def _facets(self, query: str, edited_only: bool) -> Dict[str, Dict[str, int]]:
        key = generate_cache_key(query, None, edited_only)
        if self.facet_cache is not None:
            cached = await self.facet_cache.get(key)
            if cached is not None:
                return distribution_from_rows(facets_to_rows(cached))

        try:
            rows = await _post_json(
                self.client,
                self.FACETS_RPC,
                {"search_query": query, "edited_only_filter": edited_only},
                "supabase",
            )
        except AppError as e:
            # a search without facet counts is still a usable search
            log.warning(json.dumps({"event": "facet_query_failed", "error": e.message}))
            return {}

        rows = rows or []
        if self.facet_cache is not None:
            # stored aggregated (top values only), like the facet panel shows them
            await self.facet_cache.set(key, aggregate_facet_rows(rows))
        return distribution_from_rows(rows)

    async def aclose(self) -> None:
        await self.client.aclose()


def create_search_backend(
    name: str = config.SEARCH_BACKEND,
    timeout: float = config.SEARCH_TIMEOUT_SECONDS,
    facet_cache: Optional[MemoryCache] = None,
    result_cache: Optional[MemoryCache] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SearchBackend:
    if name == "meilisearch":
        headers = {"Authorization": f"Bearer {config.MEILI_API_KEY}"} if config.MEILI_API_KEY else {}
        client = httpx.AsyncClient(base_url=config.MEILI_URL, headers=headers, timeout=timeout, transport=transport)
        return MeiliSearchBackend(client, index=config.MEILI_INDEX)
    if name == "supabase":
        headers = {"apikey": config.SUPABASE_KEY, "Authorization": f"Bearer {config.SUPABASE_KEY}"}
        client = httpx.AsyncClient(base_url=config.SUPABASE_URL, headers=headers, timeout=timeout, transport=transport)
        return SupabaseSearchBackend(client, facet_cache=facet_cache, result_cache=result_cache)
    raise ValueError(f"unknown search backend: {name!r}")
