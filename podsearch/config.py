import os

# API port served by `podsearch` (podsearch.main:run)
PORT = int(os.getenv("PORT", "8000"))

# Uvicorn worker processes
WORKERS = int(os.getenv("WORKERS", "2"))

# Redis connection for the edge cache tier; empty string disables the tier
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")

# Prefix for every edge cache key (keeps deployments from sharing entries)
CACHE_NAMESPACE = os.getenv("CACHE_NAMESPACE", "podsearch")

# Full-text search provider: "meilisearch" or "supabase"
SEARCH_BACKEND = os.getenv("SEARCH_BACKEND", "supabase")

MEILI_URL = os.getenv("MEILI_URL", "http://meilisearch:7700")
MEILI_API_KEY = os.getenv("MEILI_API_KEY", "")
MEILI_INDEX = os.getenv("MEILI_INDEX", "transcripts")

SUPABASE_URL = os.getenv("SUPABASE_URL", "http://supabase:8000")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")

# Backend statement timeout (seconds); surfaces as NetworkError
SEARCH_TIMEOUT_SECONDS = float(os.getenv("SEARCH_TIMEOUT_SECONDS", "1.0"))

# Pre-warmed popular query results, one JSON file per query
STATIC_CACHE_DIR = os.getenv("STATIC_CACHE_DIR", "static/cache")

# Cache policy (milliseconds / entry counts)
SEARCH_CACHE_TTL_MS = int(os.getenv("SEARCH_CACHE_TTL_MS", str(5 * 60 * 1000)))
MEMORY_CACHE_MAX_SIZE = int(os.getenv("MEMORY_CACHE_MAX_SIZE", "200"))
FACET_CACHE_TTL_MS = int(os.getenv("FACET_CACHE_TTL_MS", str(15 * 60 * 1000)))
FACET_CACHE_MAX_SIZE = int(os.getenv("FACET_CACHE_MAX_SIZE", "100"))
# Supabase backend result cache; keyed per page, so later pages are covered too
RESULT_CACHE_TTL_MS = int(os.getenv("RESULT_CACHE_TTL_MS", str(10 * 60 * 1000)))
RESULT_CACHE_MAX_SIZE = int(os.getenv("RESULT_CACHE_MAX_SIZE", "500"))

# Results per page
PAGE_SIZE = int(os.getenv("PAGE_SIZE", "20"))

# Uvicorn keep-alive and graceful shutdown timeouts (seconds)
GRACEFUL_TIMEOUT = int(os.getenv("GRACEFUL_TIMEOUT", "30"))
KEEPALIVE = int(os.getenv("KEEPALIVE", "5"))
