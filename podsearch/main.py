# podsearch/main.py
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from redis.asyncio import Redis

from podsearch import config, metrics
from podsearch.backends import create_search_backend
from podsearch.cache_service import CacheService, random_query
from podsearch.cache_tiers import EdgeCache, MemoryCache, StaticFileCache
from podsearch.errors import AppError, SearchError
from podsearch.models import CacheStats, RandomQueryResponse, SearchResponse
from podsearch.search_service import SearchService

# ---------- Logging: JSON lines ----------
logging.basicConfig(level=logging.INFO, format="%(message)s")
log = logging.getLogger("podsearch")

CACHE_CONTROL = "public, max-age=259200, s-maxage=259200, stale-while-revalidate=604800"


def build_search_service() -> SearchService:
    """Wire tiers, cache and backend from config. Called once per process."""
    tiers = [StaticFileCache(config.STATIC_CACHE_DIR)]
    if config.REDIS_URL:
        redis = Redis.from_url(config.REDIS_URL, socket_timeout=config.SEARCH_TIMEOUT_SECONDS)
        tiers.append(EdgeCache(redis, namespace=config.CACHE_NAMESPACE, default_ttl_ms=config.SEARCH_CACHE_TTL_MS))
    tiers.append(MemoryCache(max_size=config.MEMORY_CACHE_MAX_SIZE, default_ttl_ms=config.SEARCH_CACHE_TTL_MS))
    cache = CacheService(tiers, ttl_ms=config.SEARCH_CACHE_TTL_MS)

    facet_cache = MemoryCache(max_size=config.FACET_CACHE_MAX_SIZE, default_ttl_ms=config.FACET_CACHE_TTL_MS)
    result_cache = MemoryCache(max_size=config.RESULT_CACHE_MAX_SIZE, default_ttl_ms=config.RESULT_CACHE_TTL_MS)
    backend = create_search_backend(config.SEARCH_BACKEND, facet_cache=facet_cache, result_cache=result_cache)
    return SearchService(backend, cache, page_size=config.PAGE_SIZE)


async def close_search_service(service: SearchService) -> None:
    await service.backend.aclose()
    if service.cache is not None:
        edge = service.cache.tiers.get("edge")
        if isinstance(edge, EdgeCache):
            await edge.redis.aclose()


def create_app(service_factory: Callable[[], SearchService] = build_search_service) -> FastAPI:
    # ---------- Lifespan: one service per process, no module singletons ----------
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.service = service_factory()
        try:
            yield
        finally:
            await close_search_service(app.state.service)
            app.state.service = None

    app = FastAPI(title="Transcript Search API", version="0.1.0", lifespan=lifespan)

    # Prometheus metrics at /metrics
    app.mount("/metrics", make_asgi_app())

    # Access-log middleware (timing every request)
    @app.middleware("http")
    async def access_log(request: Request, call_next):
        t0 = time.perf_counter()
        resp = await call_next(request)
        took = time.perf_counter() - t0
        took_ms = int(took * 1000)

        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        metrics.HTTP_REQUESTS.labels(request.method, path, str(resp.status_code)).inc()
        metrics.HTTP_LATENCY.labels(request.method, path).observe(took)

        log.info(
            json.dumps(
                {
                    "event": "http_request",
                    "method": request.method,
                    "path": request.url.path,
                    "status": resp.status_code,
                    "took_ms": took_ms,
                }
            )
        )
        return resp

    # "no matches" is a 200 with empty hits; failures always carry an error body
    @app.exception_handler(AppError)
    async def app_error(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    # ---------- Endpoints ----------
    @app.get("/healthz")
    def healthz():
        return {"status": "ok", "message": "service running"}

    @app.get("/cache/stats", response_model=CacheStats)
    def cache_stats(request: Request):
        return request.app.state.service.stats()

    @app.get("/api/random", response_model=RandomQueryResponse)
    def random():
        return RandomQueryResponse(query=random_query())

    @app.get("/api/search", response_model=SearchResponse)
    async def search(request: Request, response: Response, q: str = "", f: Optional[str] = None, o: int = 0):
        service: SearchService = request.app.state.service
        if not q.strip():
            raise SearchError("Query parameter is required")
        filters = [x for x in f.split(",") if x] if f else []
        edited_only = "e" in request.query_params

        t0 = time.perf_counter()
        result = await service.search(q, filter=filters, offset=o, edited_only=edited_only)
        total_ms = int((time.perf_counter() - t0) * 1000)
        metrics.SEARCHES.labels(result.stats.cache_source or "none").inc()

        response.headers["Cache-Control"] = CACHE_CONTROL
        response.headers["Vary"] = "Accept-Encoding"

        # structured search event
        log.info(
            json.dumps(
                {
                    "event": "search_api_request",
                    "query_len": len(q),
                    "cache_hit": bool(result.stats.cache_hit),
                    "cache_source": result.stats.cache_source or "none",
                    "search_took_ms": result.stats.cache_response_time or result.stats.processing_time,
                    "endpoint_took_ms": total_ms,
                    "hits": len(result.items),
                    "has_filters": bool(filters),
                    "is_page_load": o == 0,
                    "edited_only": edited_only,
                }
            )
        )
        return SearchResponse(hits=result.items, stats=result.stats)

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn using the PORT / WORKERS / timeout settings."""
    uvicorn.run(
        "podsearch.main:app",
        host="0.0.0.0",
        port=config.PORT,
        workers=config.WORKERS,
        timeout_keep_alive=config.KEEPALIVE,
        timeout_graceful_shutdown=config.GRACEFUL_TIMEOUT,
    )


if __name__ == "__main__":
    run()
