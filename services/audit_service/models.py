import enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from shared.config.database import Base, utcnow


class ChangeType(str, enum.Enum):
    MANUAL_ADJUSTMENT = "manual_adjustment"
    ORDER_CONSUMPTION = "order_consumption"
    ORDER_CANCELLATION = "order_cancellation"
    STOCK_REPLENISHMENT = "stock_replenishment"
    INVENTORY_CORRECTION = "inventory_correction"
    RETURN = "return"
    ERROR_ADJUSTMENT = "error_adjustment"
    OTHER = "other"


class ChangelogAction(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    STATUS_CHANGE = "status_change"
    UNSHIPPED_AUTHORIZATION = "unshipped_authorization"
    ERROR_REPORT = "error_report"


# Both tables are append-only: rows are inserted, never updated or deleted.

class InventoryChange(Base):
    __tablename__ = "inventory_changes"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=True)
    change_type = Column(String, nullable=False)
    previous_quantity = Column(Integer, nullable=False)
    new_quantity = Column(Integer, nullable=False)
    quantity_changed = Column(Integer, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    notes = Column(Text, nullable=True)


class OrderChangelog(Base):
    __tablename__ = "order_changelogs"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=True)
    action = Column(String, nullable=False)
    changes = Column(JSON, nullable=False, default=dict)
    previous_values = Column(JSON, nullable=False, default=dict)
    notes = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
