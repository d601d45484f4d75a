"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
ledger_operations_total = Counter(
    "ledger_operations_total",
    "Total applied ledger transactions",
    ["operation"],  # credit, debit, refund
)

balance_rejected_total = Counter(
    "balance_rejected_total",
    "Total debits rejected for insufficient balance",
)

integrity_violations_total = Counter(
    "ledger_integrity_violations_total",
    "Balance records that failed digest or sum verification",
)

duplicate_credits_total = Counter(
    "ledger_duplicate_credits_total",
    "Credits ignored because the payment hash was already applied",
)

ledger_write_conflicts_total = Counter(
    "ledger_write_conflicts_total",
    "Compare-and-swap conflicts while persisting balance records",
)

transaction_log_failures_total = Counter(
    "transaction_log_failures_total",
    "Failed appends to the transaction audit log",
)

payment_outcomes_total = Counter(
    "payment_outcomes_total",
    "Terminal invoice outcomes",
    ["state"],  # paid, expired, canceled
)

payment_status_errors_total = Counter(
    "payment_status_errors_total",
    "Failed payment status checks",
)

reconciliation_items_total = Counter(
    "reconciliation_items_total",
    "Reconciled pending payments",
    ["result"],  # verified, unverified
)

reconciliation_batches_rejected_total = Counter(
    "reconciliation_batches_rejected_total",
    "Reconciliation batches rejected before any network call",
)

generation_jobs_total = Counter(
    "generation_jobs_total",
    "Generation jobs reaching a terminal state",
    ["state"],  # completed, failed
)

asset_probe_failures_total = Counter(
    "asset_probe_failures_total",
    "Asset reachability probes that failed",
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
payment_settlement_seconds = Histogram(
    "payment_settlement_seconds",
    "Time from invoice creation to observed settlement",
    buckets=[5, 15, 30, 60, 120, 300, 600],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
