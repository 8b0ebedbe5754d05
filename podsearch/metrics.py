from prometheus_client import Counter, Histogram

# Defined once per process; every app instance shares the default registry.
HTTP_REQUESTS = Counter(
    "podsearch_http_requests_total",
    "HTTP requests by method, route and status",
    ["method", "path", "status"],
)

HTTP_LATENCY = Histogram(
    "podsearch_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path"],
)

SEARCHES = Counter(
    "podsearch_searches_total",
    "Searches served, by cache source (none = backend)",
    ["cache_source"],
)
