"""Prometheus metrics for sync observability.

Counters and histograms for outbound Eight Sleep calls, sync runs,
per-night upserts, and the HTTP API. Exposed via /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, make_asgi_app

# Outbound third-party calls
eight_sleep_api_requests_total = Counter(
    "eight_sleep_api_requests_total",
    "Total Eight Sleep API calls by final outcome",
    ["endpoint", "outcome"],  # outcome: success, auth, rate_limit, api, network
)

eight_sleep_api_duration_seconds = Histogram(
    "eight_sleep_api_duration_seconds",
    "Duration of Eight Sleep API calls, retries included",
    ["endpoint"],
)

# Sync pipeline
sync_runs_total = Counter(
    "sync_runs_total",
    "Total sync runs by terminal status",
    ["status"],  # status: success, failed, not_connected
)

sleep_sessions_upserted_total = Counter(
    "sleep_sessions_upserted_total",
    "Per-night outcomes inside sync runs",
    ["status"],  # status: upserted, skipped, failed
)

# API counters
api_requests_total = Counter(
    "api_requests_total",
    "Total API requests",
    ["endpoint", "method", "status_code"],
)

api_response_duration_seconds = Histogram(
    "api_response_duration_seconds",
    "Duration of API responses",
    ["endpoint"],
)


def create_metrics_app():
    """Create ASGI app for /metrics endpoint."""
    return make_asgi_app()
