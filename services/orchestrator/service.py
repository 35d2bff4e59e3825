"""
FulfillmentService: the function-level contract the API layer calls.

Every public method is one gateway transaction, retried as a whole on
transient failures, and returns pydantic models built before the
transaction ends (never live ORM rows).
"""
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from services.audit_service.models import ChangeType
from services.audit_service.schemas import InventoryChangeResponse, OrderChangelogResponse
from services.audit_service.service import AuditTrail
from services.backorder_service.schemas import UnshippedItemResponse
from services.backorder_service.service import BackorderQueue
from services.inventory_service.schemas import ProductCreate, ProductResponse
from services.inventory_service.service import InventoryLedger
from services.order_service.models import OrderPriority
from services.order_service.schemas import (
    CustomerResponse,
    ErrorAdjustment,
    OrderDetailResponse,
    OrderItemCreate,
    OrderItemResponse,
    OrderResponse,
    ShippingDocumentInfo,
    ShippingDocumentResponse,
)
from services.order_service.service import OrderService
from shared.errors import ValidationFailure
from shared.persistence import PersistenceGateway


def _coerce(model, value):
    if value is None or isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as e:
        raise ValidationFailure(str(e)) from None


def _detail(order, items, document=None) -> OrderDetailResponse:
    return OrderDetailResponse(
        **OrderResponse.model_validate(order).model_dump(),
        items=[OrderItemResponse.model_validate(item) for item in items],
        shipping_document=ShippingDocumentResponse.model_validate(document) if document else None,
    )


class FulfillmentService:
    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway

    # --- ORDERS ---

    async def create_order(
        self,
        customer_name: str,
        items: list,
        actor_id: int | None,
        priority: OrderPriority | str = OrderPriority.MEDIUM,
        area: str | None = None,
        notes: str | None = None,
        estimated_shipping_date: datetime | None = None,
    ) -> OrderDetailResponse:
        lines = [_coerce(OrderItemCreate, item) for item in items]

        async def op(db: AsyncSession):
            order, order_items = await OrderService.create_order(
                db,
                customer_name,
                lines,
                actor_id,
                priority=priority,
                area=area,
                notes=notes,
                estimated_shipping_date=estimated_shipping_date,
            )
            return _detail(order, order_items)

        return await self.gateway.run(op, label="create_order")

    async def allocate(self, order_id: int, product_id: int, quantity: int) -> OrderItemResponse:
        async def op(db: AsyncSession):
            item = await OrderService.allocate(db, order_id, product_id, quantity)
            return OrderItemResponse.model_validate(item)

        return await self.gateway.run(op, label="allocate")

    async def update_order_status(
        self,
        order_id: int,
        status: str,
        shipping_document=None,
        actor_id: int | None = None,
    ) -> OrderResponse:
        document = _coerce(ShippingDocumentInfo, shipping_document)

        async def op(db: AsyncSession):
            order = await OrderService.update_status(db, order_id, status, actor_id, document)
            return OrderResponse.model_validate(order)

        return await self.gateway.run(op, label="update_order_status")

    async def complete_shipment(self, order_id: int, actor_id: int | None = None) -> bool:
        async def op(db: AsyncSession):
            return await OrderService.complete_shipment(db, order_id, actor_id)

        return await self.gateway.run(op, label="complete_shipment")

    async def update_order(self, order_id: int, fields: dict, actor_id: int | None) -> OrderResponse:
        async def op(db: AsyncSession):
            order = await OrderService.update_order(db, order_id, fields, actor_id)
            return OrderResponse.model_validate(order)

        return await self.gateway.run(op, label="update_order")

    async def report_order_error(
        self,
        order_id: int,
        actor_id: int | None,
        description: str,
        adjustments: list | None = None,
    ) -> OrderChangelogResponse:
        parsed = [_coerce(ErrorAdjustment, a) for a in adjustments or []]

        async def op(db: AsyncSession):
            entry = await OrderService.report_order_error(db, order_id, actor_id, description, parsed)
            return OrderChangelogResponse.model_validate(entry)

        return await self.gateway.run(op, label="report_order_error")

    async def get_order(self, order_id: int) -> OrderDetailResponse:
        async def op(db: AsyncSession):
            order, items, document = await OrderService.get_order(db, order_id)
            return _detail(order, items, document)

        return await self.gateway.run(op, label="get_order")

    async def create_customer(self, name: str) -> CustomerResponse:
        async def op(db: AsyncSession):
            customer = await OrderService.create_customer(db, name)
            return CustomerResponse.model_validate(customer)

        return await self.gateway.run(op, label="create_customer")

    # --- BACKORDERS ---

    async def list_unshipped_items_for_authorization(self) -> list[UnshippedItemResponse]:
        async def op(db: AsyncSession):
            items = await BackorderQueue.list_for_authorization(db)
            return [UnshippedItemResponse.model_validate(i) for i in items]

        return await self.gateway.run(op, label="list_unshipped_items_for_authorization")

    async def authorize_unshipped_items(self, ids: list[int], actor_id: int) -> None:
        async def op(db: AsyncSession):
            await OrderService.authorize_backorders(db, ids, actor_id)

        await self.gateway.run(op, label="authorize_unshipped_items")

    async def reconcile_shipped(self, ids: list[int], new_order_id: int) -> None:
        async def op(db: AsyncSession):
            await OrderService.reconcile_backorders(db, ids, new_order_id)

        await self.gateway.run(op, label="reconcile_shipped")

    async def get_unshipped_items(self, customer_name: str | None = None) -> list[UnshippedItemResponse]:
        async def op(db: AsyncSession):
            items = await BackorderQueue.get_open_items(db, customer_name)
            return [UnshippedItemResponse.model_validate(i) for i in items]

        return await self.gateway.run(op, label="get_unshipped_items")

    async def get_unshipped_items_by_order(self, order_id: int) -> list[UnshippedItemResponse]:
        async def op(db: AsyncSession):
            items = await BackorderQueue.get_by_order(db, order_id)
            return [UnshippedItemResponse.model_validate(i) for i in items]

        return await self.gateway.run(op, label="get_unshipped_items_by_order")

    # --- INVENTORY ---

    async def create_product(
        self,
        sku: str,
        name: str,
        initial_stock: int = 0,
        min_stock_level: int = 10,
        actor_id: int | None = None,
    ) -> ProductResponse:
        data = _coerce(ProductCreate, {
            "sku": sku,
            "name": name,
            "initial_stock": initial_stock,
            "min_stock_level": min_stock_level,
        })

        async def op(db: AsyncSession):
            product = await InventoryLedger.create_product(db, data, actor_id)
            return ProductResponse.model_validate(product)

        return await self.gateway.run(op, label="create_product")

    async def adjust_stock(
        self,
        product_id: int,
        delta: int,
        actor_id: int | None,
        change_type: ChangeType | str = ChangeType.MANUAL_ADJUSTMENT,
        notes: str | None = None,
    ) -> ProductResponse:
        try:
            change_type = ChangeType(change_type)
        except ValueError:
            raise ValidationFailure(f"Unknown inventory change type {change_type!r}") from None

        async def op(db: AsyncSession):
            product = await InventoryLedger.mutate_stock(db, product_id, delta, actor_id, change_type, notes)
            return ProductResponse.model_validate(product)

        return await self.gateway.run(op, label="adjust_stock")

    async def get_product(self, product_id: int) -> ProductResponse:
        async def op(db: AsyncSession):
            return ProductResponse.model_validate(await InventoryLedger.get_product(db, product_id))

        return await self.gateway.run(op, label="get_product")

    async def get_low_stock_products(self) -> list[ProductResponse]:
        async def op(db: AsyncSession):
            products = await InventoryLedger.get_low_stock_products(db)
            return [ProductResponse.model_validate(p) for p in products]

        return await self.gateway.run(op, label="get_low_stock_products")

    # --- AUDIT ---

    async def get_inventory_changes(self, product_id: int | None = None) -> list[InventoryChangeResponse]:
        async def op(db: AsyncSession):
            changes = await AuditTrail.get_inventory_changes(db, product_id)
            return [InventoryChangeResponse.model_validate(c) for c in changes]

        return await self.gateway.run(op, label="get_inventory_changes")

    async def get_inventory_changes_between(self, start: datetime, end: datetime) -> list[InventoryChangeResponse]:
        async def op(db: AsyncSession):
            changes = await AuditTrail.get_inventory_changes_between(db, start, end)
            return [InventoryChangeResponse.model_validate(c) for c in changes]

        return await self.gateway.run(op, label="get_inventory_changes_between")

    async def get_order_changelogs(self, order_id: int) -> list[OrderChangelogResponse]:
        async def op(db: AsyncSession):
            entries = await AuditTrail.get_order_changelogs(db, order_id)
            return [OrderChangelogResponse.model_validate(e) for e in entries]

        return await self.gateway.run(op, label="get_order_changelogs")
