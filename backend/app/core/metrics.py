"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# Booking metrics
booking_attempts = Counter(
    "booking_attempts_total",
    "Total booking attempts",
    ["status"],  # success, conflict, invalid, error
)

booking_latency = Histogram(
    "booking_latency_seconds",
    "Booking creation latency",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)

seat_reserve_retries = Counter(
    "seat_reserve_retries_total",
    "Seat reservation retries due to trip version conflicts",
)

seats_released = Counter(
    "seats_released_total",
    "Seat holds released back to inventory",
    ["reason"],  # cancelled, payment_failed, expired, review_rejected
)

# Payment metrics
payment_initializations = Counter(
    "payment_initializations_total",
    "Payment initializations",
    ["provider"],
)

payment_gateway_errors = Counter(
    "payment_gateway_errors_total",
    "Payment gateway calls that timed out or failed",
    ["provider", "operation"],
)

reconciliation_outcomes = Counter(
    "reconciliation_outcomes_total",
    "Outcome of folding a gateway verification into a booking",
    ["outcome"],  # confirmed, cancelled, pending, under_review, already_final, unknown_reference
)

# Loyalty metrics
loyalty_points = Counter(
    "loyalty_points_total",
    "Loyalty points moved through the ledger",
    ["transaction_type"],
)

# Ticket metrics
ticket_scans = Counter(
    "ticket_scans_total",
    "Ticket scans by resulting state",
    ["state"],
)

# Cache metrics
cache_operations = Counter(
    "cache_operations_total",
    "Cache operations",
    ["operation", "result"],  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


def record_booking_attempt(status: str):
    """Record booking attempt. Status: success, conflict, invalid, error"""
    booking_attempts.labels(status=status).inc()


def record_reconciliation(outcome: str):
    reconciliation_outcomes.labels(outcome=outcome).inc()


def record_gateway_error(provider: str, operation: str):
    payment_gateway_errors.labels(provider=provider, operation=operation).inc()


def record_seats_released(reason: str, count: int):
    if count:
        seats_released.labels(reason=reason).inc(count)


def record_ticket_scan(state: str):
    ticket_scans.labels(state=state).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
