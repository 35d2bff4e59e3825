from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from shared.config.database import Base

class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("current_stock >= 0", name="ck_products_current_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    current_stock = Column(Integer, nullable=False, default=0)
    min_stock_level = Column(Integer, nullable=False, default=10)
    last_stock_update = Column(DateTime(timezone=True), nullable=True)

    # Optimistic concurrency: every UPDATE is "... WHERE version = <what we read>"
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
