"""Prometheus metrics shared across the application."""

from prometheus_client import CollectorRegistry, Counter

registry = CollectorRegistry()

rpc_failovers = Counter(
    "rpc_failovers_total",
    "RPC calls that fell through to the next endpoint",
    ["method"],
    registry=registry,
)
payment_verifications = Counter(
    "payment_verifications_total",
    "Payment verification attempts by terminal state",
    ["outcome"],
    registry=registry,
)
payments_granted = Counter(
    "payments_granted_total",
    "Entitlements granted from confirmed payments",
    ["source"],
    registry=registry,
)
webhook_transactions = Counter(
    "webhook_transactions_total",
    "Webhook transactions by processing outcome",
    ["outcome"],
    registry=registry,
)
