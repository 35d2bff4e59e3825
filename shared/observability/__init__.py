from .setup import setup_observability
from .metrics import (
    fulfillment_db_retry_total,
    fulfillment_db_failure_total,
    fulfillment_transaction_duration_seconds,
    fulfillment_db_up,
    fulfillment_allocation_total,
    fulfillment_backorder_units_total
)
