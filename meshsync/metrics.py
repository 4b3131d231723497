"""
Prometheus metrics for the sync API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Sync outcome counter (outcome)
- Sync conflict counter (strategy)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

# HTTP request counter with labels for method, path, and status code
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# Request latency histogram in seconds, default buckets
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# Per-message sync outcome counter
# outcome: saved, updated, skipped, error
sync_records_total = Counter(
    "sync_records_total",
    "Total synced messages by outcome",
    labelnames=["outcome"]
)

# Same-id collisions by the strategy that resolved them
sync_conflicts_total = Counter(
    "sync_conflicts_total",
    "Total same-id conflicts by strategy",
    labelnames=["strategy"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    # Normalize path to avoid high-cardinality labels
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_sync_outcomes(saved: int, updated: int, skipped: int, errors: int) -> None:
    """Add one batch's outcome counts."""
    for outcome, count in (
        ("saved", saved),
        ("updated", updated),
        ("skipped", skipped),
        ("error", errors),
    ):
        if count:
            sync_records_total.labels(outcome=outcome).inc(count)


def record_sync_conflicts(strategy: str, count: int) -> None:
    """Add one batch's conflict count under its strategy."""
    if count:
        sync_conflicts_total.labels(strategy=strategy).inc(count)


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    """Content type for the Prometheus exposition format."""
    return CONTENT_TYPE_LATEST
