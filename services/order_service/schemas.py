from datetime import datetime
from pydantic import BaseModel, field_validator

from .models import OrderPriority

class OrderItemCreate(BaseModel):
    product_id: int
    quantity: int

class ShippingDocumentInfo(BaseModel):
    document_path: str
    document_type: str = "bill_of_lading"
    tracking_number: str | None = None
    notes: str | None = None

class OrderUpdate(BaseModel):
    customer_name: str | None = None
    notes: str | None = None
    priority: OrderPriority | None = None
    area: str | None = None
    estimated_shipping_date: datetime | None = None

    @field_validator("customer_name", "priority")
    @classmethod
    def required_when_given(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be cleared")
        return v

class ErrorAdjustment(BaseModel):
    product_id: int
    delta: int

class CustomerResponse(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True

class OrderItemResponse(BaseModel):
    id: int
    order_id: int
    product_id: int
    quantity: int
    shipped_quantity: int
    shipping_status: str

    class Config:
        from_attributes = True

class ShippingDocumentResponse(BaseModel):
    id: int
    order_id: int
    document_path: str
    document_type: str
    tracking_number: str | None
    upload_date: datetime
    notes: str | None

    class Config:
        from_attributes = True

class OrderResponse(BaseModel):
    id: int
    order_number: str
    customer_name: str
    order_date: datetime
    estimated_shipping_date: datetime | None
    actual_shipping_date: datetime | None
    status: str
    priority: str
    area: str | None
    notes: str | None
    has_shipping_document: bool
    is_partial_fulfillment: bool
    percentage_shipped: int
    created_by_id: int | None
    updated_by_id: int | None
    last_updated: datetime | None

    class Config:
        from_attributes = True

class OrderDetailResponse(OrderResponse):
    items: list[OrderItemResponse] = []
    shipping_document: ShippingDocumentResponse | None = None
