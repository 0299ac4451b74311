"""
Prometheus metrics for the message relay.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Scheduler tick counter and dispatch outcome counter (result)
- Sent-message read source counter (source)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

scheduler_ticks_total = Counter(
    "scheduler_ticks_total",
    "Total dispatch scheduler ticks"
)

# result: sent, failed
messages_dispatched_total = Counter(
    "messages_dispatched_total",
    "Outcome of each message dispatch attempt",
    labelnames=["result"]
)

# source: cache, store, store_error
sent_messages_reads_total = Counter(
    "sent_messages_reads_total",
    "Where list-sent reads were answered from",
    labelnames=["source"]
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


def record_tick() -> None:
    scheduler_ticks_total.inc()


def record_dispatch_outcome(result: str) -> None:
    """
    Record a dispatch attempt.

    Args:
        result: "sent" when the webhook accepted the message, "failed" otherwise
    """
    messages_dispatched_total.labels(result=result).inc()


def record_read_source(source: str) -> None:
    sent_messages_reads_total.labels(source=source).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
