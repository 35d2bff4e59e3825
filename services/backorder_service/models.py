from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from shared.config.database import Base, utcnow

class UnshippedItem(Base):
    """
    A backordered remainder of an order line.

    Lifecycle: created (unauthorized, unshipped) -> authorized -> shipped.
    Rows are never deleted; `shipped` flips to true exactly once.
    """
    __tablename__ = "unshipped_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)

    # Customer reference is optional: a name with no matching customer still backorders
    customer_name = Column(String, nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    original_order_number = Column(String, nullable=False)
    date = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    authorized = Column(Boolean, nullable=False, default=False)
    authorized_by_id = Column(Integer, nullable=True)
    authorized_at = Column(DateTime(timezone=True), nullable=True)

    shipped = Column(Boolean, nullable=False, default=False)
    shipped_in_order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)

    notes = Column(Text, nullable=True)
