"""Prometheus metrics for the API service.

Exposes:
- Request counts by endpoint and status
- Request duration histograms
- Typed error responses by error code

Domain counters (ledger movements, floor events, shortfalls, reconciliation
outcomes, store requests) are defined next to the code that increments them
and are served from the same default registry.

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Error responses
api_errors_total = Counter(
    "api_errors_total",
    "Typed error responses returned by the API",
    ["code"],
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
