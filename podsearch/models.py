from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Hits are passed through as the backend returns them (id, season, episode,
# time, speaker, line, edited, _formatted)
Hit = Dict[str, Any]

CacheSource = Literal["static", "edge", "memory", "none"]


class WireModel(BaseModel):
    """camelCase on the wire / in cache files, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ParsedQuery(BaseModel):
    terms: List[str] = Field(default_factory=list)
    exact_phrases: List[str] = Field(default_factory=list)
    excluded_terms: List[str] = Field(default_factory=list)
    excluded_phrases: List[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    valid: bool
    error: Optional[str] = None


class SearchParams(WireModel):
    query: str
    original_query: str = ""
    filter: List[str] = Field(default_factory=list)
    offset: int = 0          # start position
    limit: int = 20          # page size
    edited_only: bool = False


class FacetHit(WireModel):
    ep: str
    hits: int


class SearchFacet(WireModel):
    facet_name: str
    facet_hits: List[FacetHit] = Field(default_factory=list)


class SearchStats(WireModel):
    estimated_total_hits: int = 0
    processing_time: float = 0
    facets: List[SearchFacet] = Field(default_factory=list)

    # observability only, never written to a cache tier
    cache_hit: Optional[bool] = None
    cache_source: Optional[CacheSource] = None
    cache_response_time: Optional[float] = None


CACHE_METADATA_FIELDS = {"cache_hit", "cache_source", "cache_response_time"}


class PaginatedResult(WireModel):
    items: List[Hit]
    total: int
    page: int
    limit: int
    has_more: bool
    stats: SearchStats


class SearchMoreResult(WireModel):
    hits: List[Hit]
    has_more: bool
    stats: SearchStats


class BackendResult(BaseModel):
    hits: List[Hit] = Field(default_factory=list)
    estimated_total_hits: int = 0
    processing_time_ms: float = 0
    facet_distribution: Dict[str, Dict[str, int]] = Field(default_factory=dict)


# ---------- cache artifacts ----------

class CachedResult(WireModel):
    hits: List[Hit] = Field(default_factory=list)
    stats: SearchStats = Field(default_factory=SearchStats)
    has_more: bool = False


class CacheFile(WireModel):
    """Persisted form: absolute expiry instant (epoch ms), not a relative TTL."""

    query: str
    timestamp: int
    expires_at: int
    result: CachedResult


class ManifestEntry(WireModel):
    query: str
    file_name: Optional[str] = None
    hit_count: int = 0
    total_hits: int = 0
    cached: bool
    error: Optional[str] = None


class ManifestStats(WireModel):
    total: int
    cached: int
    failed: int
    total_hits: int


class CacheManifest(WireModel):
    generated: int
    version: str
    queries: List[ManifestEntry]
    stats: ManifestStats


# ---------- HTTP ----------

class SearchResponse(WireModel):
    hits: List[Hit]
    stats: SearchStats


class RandomQueryResponse(BaseModel):
    query: str


class CacheStats(WireModel):
    cache_hits: int
    cache_misses: int
    cache_hit_rate: float = 0.0
    hits_by_source: Dict[str, int] = Field(default_factory=dict)
    backend_calls: int = 0
