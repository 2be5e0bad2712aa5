"""
Prometheus metrics for the PPOB payment service.

Tracks:
- Submission counts by status
- Gateway request counts, errors and latency
- Reconciliation outcomes and cycle duration
- Terminal status conflicts
- Deposit balance and its staleness
- Webhook events
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Submission metrics
transaction_submissions_total = Counter(
    "ppob_transaction_submissions_total",
    "Total transaction submissions",
    ["status"],  # Pending, Sukses, Gagal, duplicate, error
)

# Gateway metrics
gateway_requests_total = Counter(
    "ppob_gateway_requests_total",
    "Total Digiflazz API requests",
    ["operation", "status"],  # operation: transaction, status, balance, price_list
)

gateway_errors_total = Counter(
    "ppob_gateway_errors_total",
    "Total Digiflazz API errors",
    ["error_type"],  # transient, permanent, rate_limit
)

gateway_duration_seconds = Histogram(
    "ppob_gateway_duration_seconds",
    "Digiflazz API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

gateway_circuit_breaker_state = Gauge(
    "ppob_gateway_circuit_breaker_state",
    "Gateway circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Reconciliation metrics
reconciliation_items_total = Counter(
    "ppob_reconciliation_items_total",
    "Pending transactions processed by reconciliation",
    ["outcome"],  # updated, still_pending, unchanged, conflict, unrecognized, error
)

reconciliation_duration_seconds = Histogram(
    "ppob_reconciliation_duration_seconds",
    "Reconciliation cycle duration in seconds",
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120),
)

reconciliation_last_run_timestamp = Gauge(
    "ppob_reconciliation_last_run_timestamp",
    "Timestamp of last reconciliation cycle",
)

pending_transactions = Gauge(
    "ppob_pending_transactions",
    "Pending transactions seen by the last reconciliation cycle",
)

status_conflicts_total = Counter(
    "ppob_status_conflicts_total",
    "Gateway answers contradicting a stored terminal status",
    ["source"],  # poller, webhook
)

# Balance metrics
deposit_balance = Gauge(
    "ppob_deposit_balance",
    "Last known Digiflazz deposit balance",
)

deposit_balance_stale = Gauge(
    "ppob_deposit_balance_stale",
    "1 when the last balance check failed",
)

# Webhook metrics
webhook_events_total = Counter(
    "ppob_webhook_events_total",
    "Webhook events processed",
    ["event_type", "status"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_submission(status: str) -> None:
        transaction_submissions_total.labels(status=status).inc()

    @staticmethod
    def record_gateway_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record a gateway API call."""
        gateway_requests_total.labels(operation=operation, status=status).inc()
        gateway_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_gateway_error(error_type: str) -> None:
        gateway_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        gateway_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_reconciliation_cycle(
        outcomes: dict[str, int], pending_count: int, duration_seconds: float
    ) -> None:
        """Record the result of one reconciliation cycle."""
        for outcome, count in outcomes.items():
            if count:
                reconciliation_items_total.labels(outcome=outcome).inc(count)
        pending_transactions.set(pending_count)
        reconciliation_duration_seconds.observe(duration_seconds)
        reconciliation_last_run_timestamp.set(time.time())

    @staticmethod
    def record_status_conflict(source: str) -> None:
        status_conflicts_total.labels(source=source).inc()

    @staticmethod
    def set_balance(amount: float, stale: bool) -> None:
        deposit_balance.set(amount)
        deposit_balance_stale.set(1 if stale else 0)

    @staticmethod
    def record_webhook_event(event_type: str, status: str) -> None:
        webhook_events_total.labels(event_type=event_type, status=status).inc()


# Export singleton instance
metrics = MetricsCollector()
