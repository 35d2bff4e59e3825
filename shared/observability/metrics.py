from prometheus_client import Counter, Histogram, Gauge

# Persistence Metrics
fulfillment_db_retry_total = Counter(
    "fulfillment_db_retry_total",
    "Transient data-store failures that were retried",
    ["operation"]
)

fulfillment_db_failure_total = Counter(
    "fulfillment_db_failure_total",
    "Operations that failed for good",
    ["operation", "kind"] # Labels: kind='fatal' or 'exhausted'
)

fulfillment_transaction_duration_seconds = Histogram(
    "fulfillment_transaction_duration_seconds",
    "Duration of a single transaction attempt in seconds",
    ["operation"]
)

fulfillment_db_up = Gauge(
    "fulfillment_db_up",
    "1 when the last health probe reached the database, 0 otherwise"
)

# Business Metrics
fulfillment_allocation_total = Counter(
    "fulfillment_allocation_total",
    "Order lines allocated against stock",
    ["outcome"] # Labels: 'fulfilled', 'partial'
)

fulfillment_backorder_units_total = Counter(
    "fulfillment_backorder_units_total",
    "Units deferred to the backorder queue"
)
