import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from shared.config.database import Base, utcnow


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PICKED = "picked"
    PARTIALLY_SHIPPED = "partially_shipped"
    SHIPPED = "shipped"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = {OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value}


class ShippingStatus(str, enum.Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    PARTIAL = "partial"
    CANCELLED = "cancelled"


class OrderPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String, unique=True, nullable=False)  # ORD-0001, derived from id
    customer_name = Column(String, nullable=False, index=True)
    order_date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    estimated_shipping_date = Column(DateTime(timezone=True), nullable=True)
    actual_shipping_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False, default=OrderStatus.PENDING.value, index=True)
    priority = Column(String, nullable=False, default=OrderPriority.MEDIUM.value)
    area = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    has_shipping_document = Column(Boolean, nullable=False, default=False)
    is_partial_fulfillment = Column(Boolean, nullable=False, default=False)
    percentage_shipped = Column(Integer, nullable=False, default=0)
    created_by_id = Column(Integer, nullable=True)
    updated_by_id = Column(Integer, nullable=True)
    last_updated = Column(DateTime(timezone=True), nullable=True)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)  # requested
    shipped_quantity = Column(Integer, nullable=False, default=0)
    shipping_status = Column(String, nullable=False, default=ShippingStatus.PENDING.value)


class ShippingDocument(Base):
    __tablename__ = "shipping_documents"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=False)
    document_path = Column(String, nullable=False)
    document_type = Column(String, nullable=False)
    tracking_number = Column(String, nullable=True)
    upload_date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    notes = Column(Text, nullable=True)
