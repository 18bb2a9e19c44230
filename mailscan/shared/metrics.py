"""Prometheus metrics shared by the API and the extraction pipeline.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- Extraction outcomes, provider attempts and fallback hops
- Scan store write failures

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

# Extraction metrics
extractions_total = Counter(
    "extractions_total",
    "Total extraction requests",
    ["status"],  # success, exhausted
)

provider_attempts_total = Counter(
    "provider_attempts_total",
    "Provider attempts by outcome and error kind",
    ["provider", "outcome", "error_kind"],
)

provider_call_duration_seconds = Histogram(
    "provider_call_duration_seconds",
    "Provider call duration in seconds",
    ["provider"],
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

fallback_hops_total = Counter(
    "fallback_hops_total",
    "Fallback hops between providers",
    ["from_provider", "to_provider"],
)

store_failures_total = Counter(
    "store_failures_total",
    "Scan store writes that failed (extraction still returned)",
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
