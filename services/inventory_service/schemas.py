from datetime import datetime
from pydantic import BaseModel

class ProductCreate(BaseModel):
    sku: str
    name: str
    initial_stock: int = 0
    min_stock_level: int = 10

class StockAdjustment(BaseModel):
    product_id: int
    delta: int

class ProductResponse(BaseModel):
    id: int
    sku: str
    name: str
    current_stock: int
    min_stock_level: int
    last_stock_update: datetime | None = None

    class Config:
        from_attributes = True
