# tests/test_api.py
from fastapi.testclient import TestClient

from fakes import StubBackend
from podsearch import config, main
from podsearch.cache_service import POPULAR_QUERIES, CacheService
from podsearch.cache_tiers import MemoryCache
from podsearch.errors import NetworkError
from podsearch.main import create_app
from podsearch.search_service import SearchService


def make_client(backend=None):
    backend = backend or StubBackend()
    service = SearchService(backend, CacheService([MemoryCache()]), page_size=20)
    return TestClient(create_app(lambda: service)), backend


def test_healthz():
    client, _ = make_client()
    with client:
        r = client.get("/healthz")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"


def test_search_basic():
    client, backend = make_client()
    with client:
        r = client.get("/api/search", params={"q": "space mission"})
        assert r.status_code == 200
        assert r.headers["cache-control"].startswith("public, max-age=259200")
        data = r.json()
        assert len(data["hits"]) == 20
        assert data["stats"]["estimatedTotalHits"] == 50
        assert data["stats"]["cacheHit"] is False
        assert data["stats"]["cacheSource"] == "none"
        assert data["stats"]["facets"][0]["facetName"] == "season"
    assert backend.closed is True


def test_normalized_cache_and_paging():
    client, backend = make_client()
    with client:
        r1 = client.get("/api/search", params={"q": "Astronaut stranded on Mars"}).json()
        assert r1["stats"]["cacheHit"] is False

        # same query, different case and spacing → served from cache
        r2 = client.get("/api/search", params={"q": "  astronaut   stranded on mars"}).json()
        assert r2["stats"]["cacheHit"] is True
        assert r2["stats"]["cacheSource"] == "memory"
        assert r2["hits"] == r1["hits"]

        # next page
        r3 = client.get("/api/search", params={"q": "astronaut stranded on mars", "o": 20}).json()
        assert r3["hits"][0]["id"] == "20"
        assert backend.calls[-1].offset == 20

        stats = client.get("/cache/stats").json()
        assert stats["cacheHits"] == 1
        assert stats["backendCalls"] == 2


def test_filters_and_edited_flag_reach_backend():
    client, backend = make_client()
    with client:
        r = client.get("/api/search", params={"q": "cat", "f": 'season = "s01",episode = "e02"', "e": ""})
        assert r.status_code == 200
    params = backend.calls[-1]
    assert params.filter == ['season = "s01"', 'episode = "e02"']
    assert params.edited_only is True


def test_missing_query_is_400():
    client, backend = make_client()
    with client:
        r = client.get("/api/search", params={"q": "   "})
        assert r.status_code == 400
        assert r.json() == {"error": "Query parameter is required"}
    assert backend.calls == []


def test_bad_offset_is_400():
    client, _ = make_client()
    with client:
        r = client.get("/api/search", params={"q": "cat", "o": 20000})
        assert r.status_code == 400
        assert "Offset" in r.json()["error"]


def test_backend_down_is_503_not_empty_results():
    client, _ = make_client(StubBackend(error=NetworkError("Failed to connect to supabase")))
    with client:
        r = client.get("/api/search", params={"q": "cat"})
        assert r.status_code == 503
        assert r.json() == {"error": "Failed to connect to supabase"}


def test_unexpected_backend_failure_is_500():
    client, _ = make_client(StubBackend(error=KeyError("hits")))
    with client:
        r = client.get("/api/search", params={"q": "cat"})
        assert r.status_code == 500
        assert "hits" in r.json()["error"]


def test_random_query():
    client, _ = make_client()
    with client:
        r = client.get("/api/random")
        assert r.status_code == 200
        assert r.json()["query"] in POPULAR_QUERIES


def test_metrics_exposed():
    client, _ = make_client()
    with client:
        client.get("/api/search", params={"q": "cat"})
        r = client.get("/metrics/")
        assert r.status_code == 200
        assert "podsearch_searches_total" in r.text


def test_run_uses_server_settings(monkeypatch):
    seen = {}
    monkeypatch.setattr(main.uvicorn, "run", lambda app, **kw: seen.update(app=app, **kw))
    main.run()
    assert seen["app"] == "podsearch.main:app"
    assert seen["port"] == config.PORT
    assert seen["workers"] == config.WORKERS
    assert seen["timeout_keep_alive"] == config.KEEPALIVE
    assert seen["timeout_graceful_shutdown"] == config.GRACEFUL_TIMEOUT
