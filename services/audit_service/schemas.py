from datetime import datetime
from pydantic import BaseModel

class InventoryChangeResponse(BaseModel):
    id: int
    product_id: int
    user_id: int | None
    change_type: str
    previous_quantity: int
    new_quantity: int
    quantity_changed: int
    timestamp: datetime
    notes: str | None

    class Config:
        from_attributes = True

class OrderChangelogResponse(BaseModel):
    id: int
    order_id: int
    user_id: int | None
    action: str
    changes: dict
    previous_values: dict
    notes: str | None
    timestamp: datetime

    class Config:
        from_attributes = True
