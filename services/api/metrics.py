"""Prometheus metrics for the invoicing service.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- Payment events by type and outcome
- Pipeline stage failures
- Invoice rendering and delivery outcomes

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

# Payment event metrics
payment_events_total = Counter(
    "payment_events_total",
    "Total payment events received",
    ["event_type", "outcome"],  # processed, ignored, failed, rejected
)

pipeline_stage_failures_total = Counter(
    "pipeline_stage_failures_total",
    "Pipeline stage failures absorbed without failing the event",
    ["stage"],
)

# Invoice metrics
invoices_rendered_total = Counter(
    "invoices_rendered_total",
    "Total invoice render attempts",
    ["status"],  # success, failed
)

invoice_render_duration_seconds = Histogram(
    "invoice_render_duration_seconds",
    "Invoice PDF render duration in seconds",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

invoice_deliveries_total = Counter(
    "invoice_deliveries_total",
    "Invoice deliveries by channel",
    ["channel", "status"],  # storage/email, success/failed/skipped
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
