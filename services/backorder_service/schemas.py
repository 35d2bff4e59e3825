from datetime import datetime
from pydantic import BaseModel

class UnshippedItemResponse(BaseModel):
    id: int
    order_id: int
    order_item_id: int | None
    product_id: int
    quantity: int
    customer_name: str
    customer_id: int | None
    original_order_number: str
    date: datetime
    authorized: bool
    authorized_by_id: int | None
    authorized_at: datetime | None
    shipped: bool
    shipped_in_order_id: int | None
    shipped_at: datetime | None
    notes: str | None

    class Config:
        from_attributes = True
