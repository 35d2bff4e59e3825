"""
Typed failures returned to callers of the fulfillment core.

Three families matter to callers:
  * ValidationFailure   - the request itself is wrong; never retried.
  * InvariantViolation  - the request would break a ledger invariant; never retried.
  * TemporarilyUnavailable - the data store kept failing transiently until the
    retry budget ran out.
"""


class FulfillmentError(Exception):
    """Base class for every error raised by the fulfillment core."""


class ValidationFailure(FulfillmentError):
    pass


class InvalidQuantity(ValidationFailure):
    def __init__(self, quantity):
        self.quantity = quantity
        super().__init__(f"Quantity must be a positive integer, got {quantity!r}")


class ProductNotFound(ValidationFailure):
    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class OrderNotFound(ValidationFailure):
    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class UnshippedItemNotFound(ValidationFailure):
    def __init__(self, item_ids):
        self.item_ids = sorted(item_ids)
        super().__init__(f"Unshipped items not found: {self.item_ids}")


class InvalidOrderStatus(ValidationFailure):
    def __init__(self, status):
        self.status = status
        super().__init__(f"Unknown order status {status!r}")


class InvalidStatusTransition(ValidationFailure):
    def __init__(self, order_id: int, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Order {order_id} is '{current}' and cannot transition to '{requested}'"
        )


class OrderNotAllocatable(ValidationFailure):
    def __init__(self, order_id: int, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is '{status}'; stock cannot be allocated to it")


class BackorderNotReconcilable(ValidationFailure):
    pass


class EmptyOrder(ValidationFailure):
    def __init__(self):
        super().__init__("An order needs at least one item")


class InvalidOrderUpdate(ValidationFailure):
    pass


class InvariantViolation(FulfillmentError):
    pass


class InsufficientStock(InvariantViolation):
    def __init__(self, product_id: int, current_stock: int, delta: int):
        self.product_id = product_id
        self.current_stock = current_stock
        self.delta = delta
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"{current_stock} on hand, change of {delta} requested"
        )


class TemporarilyUnavailable(FulfillmentError):
    def __init__(self, label: str):
        self.label = label
        super().__init__(f"'{label}' is temporarily unavailable, please try again later")
