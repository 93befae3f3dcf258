"""Prometheus metric definitions for the settlement service."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


payment_initializations_total = Counter(
    "payment_initializations_total",
    "Payment initialization attempts by outcome",
    ["service", "outcome"],
)
settlement_outcomes_total = Counter(
    "settlement_outcomes_total",
    "Settlements applied by gateway outcome and trigger",
    ["service", "outcome", "trigger"],
)
duplicate_settlements_skipped_total = Counter(
    "duplicate_settlements_skipped_total",
    "Reconciliations that found the reference already settled",
    ["service", "trigger"],
)
webhook_signature_rejections_total = Counter(
    "webhook_signature_rejections_total",
    "Webhook deliveries rejected before reconciliation",
    ["service", "reason"],
)
settlement_amount_mismatch_total = Counter(
    "settlement_amount_mismatch_total",
    "Successful charges whose amount differs from the ledger row",
    ["service"],
)
ledger_write_failures_total = Counter(
    "ledger_write_failures_total",
    "Ledger updates that failed after the order was settled",
    ["service"],
)
gateway_latency_seconds = Histogram(
    "gateway_latency_seconds",
    "Latency of outbound payment gateway calls",
    ["service", "operation"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
