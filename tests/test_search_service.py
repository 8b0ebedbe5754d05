import json
import time

import pytest

from fakes import BrokenTier, StubBackend
from podsearch.cache_service import CacheService
from podsearch.cache_tiers import MemoryCache, StaticFileCache
from podsearch.errors import AppError, NetworkError, SearchError
from podsearch.search_service import SearchService


def make_service(backend=None, tiers=None, page_size=20):
    backend = backend or StubBackend()
    cache = CacheService(tiers if tiers is not None else [MemoryCache()])
    return SearchService(backend, cache, page_size=page_size), backend


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["", "   ", None, "a" * 501])
async def test_invalid_query_raises_before_any_io(query):
    service, backend = make_service()
    with pytest.raises(SearchError):
        await service.search(query)
    assert backend.calls == []


@pytest.mark.asyncio
async def test_query_of_only_stripped_characters_is_rejected():
    service, backend = make_service()
    with pytest.raises(SearchError):
        await service.search("<>&")
    assert backend.calls == []


@pytest.mark.asyncio
async def test_invalid_offset_and_filters():
    service, backend = make_service()
    with pytest.raises(SearchError) as exc:
        await service.search("cat", offset=10001)
    assert exc.value.status_code == 400
    with pytest.raises(SearchError):
        await service.search("cat", filter=["f"] * 51)
    assert backend.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [0, -5])
async def test_limit_below_one_is_rejected(limit):
    service, backend = make_service()
    with pytest.raises(SearchError, match="Limit must be at least 1"):
        await service.search("cat", limit=limit)
    assert backend.calls == []


@pytest.mark.asyncio
async def test_miss_builds_backend_query_and_result():
    service, backend = make_service()
    result = await service.search("  cat   -dog ", filter=['season = "s01"'], edited_only=True)

    [params] = backend.calls
    assert params.query == "cat -dog"
    assert params.original_query == "cat -dog"
    assert params.filter == ['season = "s01"']
    assert params.offset == 0
    assert params.limit == 20
    assert params.edited_only is True

    assert len(result.items) == 20
    assert result.total == 50
    assert result.page == 1
    assert result.limit == 20
    assert result.has_more is True
    assert result.stats.cache_hit is False
    assert result.stats.cache_source == "none"
    assert result.stats.processing_time == 3
    assert [h.ep for h in result.stats.facets[0].facet_hits] == ["s01", "s02"]


@pytest.mark.asyncio
async def test_quotes_are_sanitized_before_parsing():
    service, backend = make_service()
    await service.search('cat "big dog"')
    assert backend.calls[0].query == "cat big dog"


@pytest.mark.asyncio
async def test_first_page_is_cached_and_reused():
    service, backend = make_service()
    first = await service.search("cat")
    second = await service.search("CAT")

    assert len(backend.calls) == 1
    assert second.items == first.items
    assert second.stats.cache_hit is True
    assert second.stats.cache_source == "memory"
    assert second.stats.cache_response_time is not None
    assert second.page == 1
    assert second.limit == 20
    assert second.has_more is True
    assert second.total == 50

    stats = service.stats()
    assert stats.cache_hits == 1
    assert stats.cache_misses == 1
    assert stats.cache_hit_rate == 0.5
    assert stats.hits_by_source == {"memory": 1}
    assert stats.backend_calls == 1


@pytest.mark.asyncio
async def test_filters_are_part_of_the_cache_key():
    service, backend = make_service()
    await service.search("cat", filter=["b", "a"])
    await service.search("cat", filter=["a", "b"])
    assert len(backend.calls) == 1
    await service.search("cat", filter=["a"])
    await service.search("cat", filter=["a", "b"], edited_only=True)
    assert len(backend.calls) == 3


@pytest.mark.asyncio
async def test_exclusions_are_part_of_the_cache_key():
    service, backend = make_service()
    await service.search("cat dog")
    result = await service.search("cat -dog")
    assert [p.query for p in backend.calls] == ["cat dog", "cat -dog"]
    assert result.stats.cache_hit is False
    assert result.stats.cache_source == "none"


@pytest.mark.asyncio
async def test_empty_results_and_short_queries_are_not_cached():
    service, backend = make_service(StubBackend(total=0))
    await service.search("zzzz")
    await service.search("zzzz")
    assert len(backend.calls) == 2

    service, backend = make_service()
    await service.search("ab")
    await service.search("ab")
    assert len(backend.calls) == 2


@pytest.mark.asyncio
async def test_later_pages_bypass_cache():
    service, backend = make_service()
    await service.search("cat", offset=20)
    await service.search("cat", offset=20)
    assert len(backend.calls) == 2
    assert service.stats().cache_misses == 0


@pytest.mark.asyncio
async def test_page_numbers():
    service, backend = make_service()
    result = await service.search("cat", offset=40)
    assert result.page == 3
    assert len(result.items) == 10
    assert result.has_more is False


@pytest.mark.asyncio
async def test_search_more_advances_offset_by_accumulated_hits():
    service, backend = make_service()
    first = await service.search("cat")

    more = await service.search_more("cat", first.items)
    assert backend.calls[-1].offset == 20
    assert len(more.hits) == 40
    assert more.has_more is True

    more = await service.search_more("cat", more.hits)
    assert backend.calls[-1].offset == 40
    assert len(more.hits) == 50
    assert more.has_more is False
    assert [h["id"] for h in more.hits] == [str(i) for i in range(50)]


@pytest.mark.asyncio
async def test_backend_network_error_propagates():
    service, _ = make_service(StubBackend(error=NetworkError("Failed to connect to supabase")))
    with pytest.raises(NetworkError) as exc:
        await service.search("cat")
    assert exc.value.status_code == 503


@pytest.mark.asyncio
async def test_unexpected_errors_are_wrapped():
    service, _ = make_service(StubBackend(error=RuntimeError("boom")))
    with pytest.raises(AppError) as exc:
        await service.search("cat")
    assert type(exc.value) is AppError
    assert exc.value.message == "boom"
    assert exc.value.code == "UNKNOWN_ERROR"
    assert isinstance(exc.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_cache_failures_do_not_fail_the_search():
    service, backend = make_service(tiers=[BrokenTier("edge"), BrokenTier("memory")])
    result = await service.search("cat")
    assert len(result.items) == 20
    assert len(backend.calls) == 1


@pytest.mark.asyncio
async def test_popular_query_served_from_static_tier(tmp_path):
    now = int(time.time() * 1000)
    payload = {
        "query": "lasagna",
        "timestamp": now,
        "expiresAt": now + 60_000,
        "result": {"hits": [{"id": "x"}], "stats": {"estimatedTotalHits": 7, "processingTime": 1, "facets": []}, "hasMore": True},
    }
    (tmp_path / "lasagna.json").write_text(json.dumps(payload), encoding="utf-8")
    service, backend = make_service(tiers=[StaticFileCache(str(tmp_path)), MemoryCache()])

    result = await service.search("Lasagna")
    assert backend.calls == []
    assert result.stats.cache_source == "static"
    assert result.total == 7
    assert result.limit == 1
    assert result.has_more is True


@pytest.mark.asyncio
async def test_popular_query_miss_is_not_written_to_request_time_tiers(tmp_path):
    memory = MemoryCache()
    service, backend = make_service(tiers=[StaticFileCache(str(tmp_path)), memory])
    await service.search("lasagna")
    assert memory.size() == 0
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_without_cache_every_call_hits_backend():
    backend = StubBackend()
    service = SearchService(backend, cache=None)
    await service.search("cat")
    await service.search("cat")
    assert len(backend.calls) == 2
