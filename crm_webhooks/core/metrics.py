"""Prometheus metrics for monitoring webhook dispatch and delivery."""

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, generate_latest

webhook_delivery_total = Counter(
    "webhook_delivery_total",
    "Total webhook delivery series by final status",
    ["entity_type", "event_type", "status"],
)

webhook_delivery_duration = Histogram(
    "webhook_delivery_duration_seconds",
    "Webhook delivery series latency in seconds, backoff included",
    ["entity_type", "event_type"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

webhook_delivery_attempts = Histogram(
    "webhook_delivery_attempts",
    "Number of HTTP attempts per delivery series",
    ["entity_type", "event_type"],
    buckets=[1, 2, 3, 4, 5],
)

webhook_dispatch_errors = Counter(
    "webhook_dispatch_errors_total",
    "Errors swallowed by the dispatcher, by stage",
    ["stage"],
)

webhook_auto_disabled_total = Counter(
    "webhook_auto_disabled_total",
    "Subscriptions disabled after too many consecutive failures",
    ["entity_type"],
)

webhook_deliveries_in_flight = Gauge(
    "webhook_deliveries_in_flight",
    "Delivery series currently running",
)


def get_metrics_text() -> str:
    """Return current metrics in Prometheus text format."""
    return generate_latest(REGISTRY).decode("utf-8")
