"""Prometheus metrics for ledger movements, AutoShop cycles and outbound calls"""

from prometheus_client import Counter, Histogram

# Ledger metrics
ledger_append_counter = Counter(
    "daswos_ledger_append_total",
    "Ledger transactions appended",
    ["kind"],  # purchase | spend | refund | bonus
)

ledger_rejected_spend_counter = Counter(
    "daswos_ledger_rejected_spend_total",
    "Spends refused for insufficient balance",
)

# AutoShop metrics
cycle_counter = Counter(
    "daswos_autoshop_cycle_total",
    "AutoShop scheduler cycles by outcome",
    ["outcome"],
)

rejection_counter = Counter(
    "daswos_recommendation_rejected_total",
    "Recommendations rejected by reason",
    ["reason"],
)

purchase_price_bucket_counter = Counter(
    "daswos_autoshop_purchase_bucket",
    "Autonomous purchases by price bucket",
    ["bucket"],  # <=100, 100-500, 500-2000, 2000+
)

# Catalog / payment metrics
catalog_failures_counter = Counter(
    "catalog_fetch_failures_total",
    "Failed catalog API calls",
)

payment_latency_histogram = Histogram(
    "payment_settlement_latency_seconds",
    "Payment provider settlement response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

payment_failure_counter = Counter(
    "payment_settlement_failures_total",
    "Failed payment settlement attempts",
)

settlement_reversal_counter = Counter(
    "payment_settlement_reversals_total",
    "Settled payments given back because they could not be recorded",
    ["outcome"],  # refunded, failed
)

fallback_counter = Counter(
    "daswos_fallback_total",
    "Operations served by the fallback backend",
    ["backend", "operation"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_purchase(amount: int) -> None:
    """Record a settled autonomous purchase bucketed by price"""
    if amount <= 100:
        bucket = "<=100"
    elif amount <= 500:
        bucket = "100-500"
    elif amount <= 2000:
        bucket = "500-2000"
    else:
        bucket = "2000+"

    purchase_price_bucket_counter.labels(bucket=bucket).inc()


def record_append(kind: str) -> None:
    """Count a ledger append by kind"""
    ledger_append_counter.labels(kind=kind).inc()
