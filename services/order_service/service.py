from uuid import uuid4

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from services.allocation_service.service import AllocationEngine
from services.audit_service.models import ChangelogAction, ChangeType
from services.audit_service.service import AuditTrail
from services.backorder_service.service import BackorderQueue
from services.inventory_service.service import InventoryLedger
from shared.config.database import utcnow
from shared.errors import (
    BackorderNotReconcilable,
    EmptyOrder,
    InvalidOrderStatus,
    InvalidOrderUpdate,
    InvalidQuantity,
    InvalidStatusTransition,
    OrderNotAllocatable,
    OrderNotFound,
)
from .models import (
    TERMINAL_STATUSES,
    Customer,
    Order,
    OrderPriority,
    OrderStatus,
    ShippingDocument,
    ShippingStatus,
)
from .repository import CustomerRepository, OrderRepository
from .schemas import ErrorAdjustment, OrderItemCreate, OrderUpdate, ShippingDocumentInfo

logger = structlog.get_logger(__name__)

ALLOCATABLE_STATUSES = {OrderStatus.PENDING.value, OrderStatus.PICKED.value}


def _parse_status(status) -> str:
    try:
        return OrderStatus(status).value
    except ValueError:
        raise InvalidOrderStatus(status) from None


def _percentage_shipped(items) -> int:
    requested = sum(item.quantity for item in items)
    if requested == 0:
        return 0
    return (100 * sum(item.shipped_quantity for item in items)) // requested


class OrderService:

    @staticmethod
    async def _get_order(db: AsyncSession, order_id: int, for_update: bool = True) -> Order:
        if for_update:
            order = await OrderRepository.get_order_for_update(db, order_id)
        else:
            order = await OrderRepository.get_order(db, order_id)
        if not order:
            raise OrderNotFound(order_id)
        return order

    @staticmethod
    def _touch(order: Order, actor_id: int | None):
        order.last_updated = utcnow()
        order.updated_by_id = actor_id

    # --- CREATION & ALLOCATION ---

    @staticmethod
    async def create_order(
        db: AsyncSession,
        customer_name: str,
        items: list[OrderItemCreate],
        actor_id: int | None,
        priority: OrderPriority | str = OrderPriority.MEDIUM,
        area: str | None = None,
        notes: str | None = None,
        estimated_shipping_date=None,
    ):
        if not items:
            raise EmptyOrder()
        # Reject bad lines before anything is written
        for line in items:
            if line.quantity <= 0:
                raise InvalidQuantity(line.quantity)
        try:
            priority = OrderPriority(priority).value
        except ValueError:
            raise InvalidOrderUpdate(f"Unknown priority {priority!r}") from None

        # The order number is derived from the id, so insert a placeholder first
        order = Order(
            order_number=f"TMP-{uuid4().hex}",
            customer_name=customer_name,
            order_date=utcnow(),
            estimated_shipping_date=estimated_shipping_date,
            status=OrderStatus.PENDING.value,
            priority=priority,
            area=area,
            notes=notes,
            has_shipping_document=False,
            is_partial_fulfillment=False,
            percentage_shipped=0,
            created_by_id=actor_id,
        )
        await OrderRepository.create_order(db, order)
        order.order_number = f"ORD-{order.id:04d}"
        await db.flush()

        await AuditTrail.record_order_change(
            db,
            order_id=order.id,
            user_id=actor_id,
            action=ChangelogAction.CREATE,
            changes={
                "order_number": order.order_number,
                "customer_name": customer_name,
                "priority": priority,
                "area": area,
                "notes": notes,
                "estimated_shipping_date": estimated_shipping_date,
                "items": [line.model_dump() for line in items],
            },
            notes=f"Order {order.order_number} created",
        )

        open_backorders = await BackorderQueue.count_open_for_customer(db, customer_name)
        if open_backorders:
            logger.warning(
                "customer_has_open_backorders",
                order_id=order.id,
                customer_name=customer_name,
                open_unshipped_items=open_backorders,
            )

        order_items = []
        for line in items:
            order_items.append(
                await AllocationEngine.allocate(db, order, line.product_id, line.quantity, actor_id)
            )

        logger.info("order_created", order_id=order.id, order_number=order.order_number, items=len(order_items))
        return order, order_items

    @staticmethod
    async def allocate(db: AsyncSession, order_id: int, product_id: int, quantity: int):
        order = await OrderService._get_order(db, order_id)
        if order.status not in ALLOCATABLE_STATUSES:
            raise OrderNotAllocatable(order_id, order.status)
        return await AllocationEngine.allocate(db, order, product_id, quantity)

    # --- TRANSITIONS ---

    @staticmethod
    async def update_status(
        db: AsyncSession,
        order_id: int,
        status: OrderStatus | str,
        actor_id: int | None,
        shipping_document: ShippingDocumentInfo | None = None,
    ) -> Order:
        new_status = _parse_status(status)
        order = await OrderService._get_order(db, order_id)
        old_status = order.status

        if old_status in TERMINAL_STATUSES:
            raise InvalidStatusTransition(order_id, old_status, new_status)

        changes = {"status": new_status}
        previous = {"status": old_status}
        items = await OrderRepository.get_items(db, order_id)

        if new_status == OrderStatus.CANCELLED.value:
            # Units settled through another order came out of that order's stock
            shipped_elsewhere: dict[int, int] = {}
            for backorder in await BackorderQueue.get_by_order(db, order_id):
                if backorder.shipped and backorder.shipped_in_order_id != order_id:
                    key = backorder.order_item_id
                    shipped_elsewhere[key] = shipped_elsewhere.get(key, 0) + backorder.quantity

            restocked = []
            for item in items:
                quantity = item.shipped_quantity - shipped_elsewhere.get(item.id, 0)
                if quantity > 0:
                    await InventoryLedger.mutate_stock(
                        db,
                        item.product_id,
                        quantity,
                        actor_id,
                        ChangeType.ORDER_CANCELLATION,
                        notes=f"Order {order.order_number} cancelled",
                    )
                    restocked.append({"product_id": item.product_id, "quantity": quantity})
                item.shipping_status = ShippingStatus.CANCELLED.value
            if restocked:
                changes["restocked"] = restocked

        elif new_status in (OrderStatus.PARTIALLY_SHIPPED.value, OrderStatus.SHIPPED.value):
            percentage = _percentage_shipped(items)
            is_partial = new_status == OrderStatus.PARTIALLY_SHIPPED.value or percentage < 100
            if percentage != order.percentage_shipped:
                previous["percentage_shipped"] = order.percentage_shipped
                changes["percentage_shipped"] = percentage
                order.percentage_shipped = percentage
            if is_partial != order.is_partial_fulfillment:
                previous["is_partial_fulfillment"] = order.is_partial_fulfillment
                changes["is_partial_fulfillment"] = is_partial
                order.is_partial_fulfillment = is_partial

        if new_status == OrderStatus.SHIPPED.value:
            order.actual_shipping_date = utcnow()
            changes["actual_shipping_date"] = order.actual_shipping_date
            if shipping_document is not None:
                await OrderService._attach_shipping_document(db, order, shipping_document)
                changes["shipping_document"] = shipping_document.model_dump()

        order.status = new_status
        OrderService._touch(order, actor_id)
        await db.flush()

        await AuditTrail.record_order_change(
            db,
            order_id=order.id,
            user_id=actor_id,
            action=ChangelogAction.STATUS_CHANGE,
            changes=changes,
            previous_values=previous,
            notes=f"Status changed from {old_status} to {new_status}",
        )
        logger.info("order_status_changed", order_id=order.id, old_status=old_status, new_status=new_status)
        return order

    @staticmethod
    async def _attach_shipping_document(db: AsyncSession, order: Order, info: ShippingDocumentInfo):
        # One document per order: a second upload replaces the first
        document = await OrderRepository.get_shipping_document(db, order.id)
        is_new = document is None
        if is_new:
            document = ShippingDocument(order_id=order.id)
        for field, value in info.model_dump().items():
            setattr(document, field, value)
        document.upload_date = utcnow()
        if is_new:
            await OrderRepository.add_shipping_document(db, document)
        order.has_shipping_document = True
        return document

    @staticmethod
    async def complete_shipment(db: AsyncSession, order_id: int, actor_id: int | None = None) -> bool:
        order = await OrderService._get_order(db, order_id)
        old_status = order.status
        if old_status in TERMINAL_STATUSES:
            raise InvalidStatusTransition(order_id, old_status, OrderStatus.SHIPPED.value)

        actor_id = actor_id if actor_id is not None else order.created_by_id
        changes = {"status": OrderStatus.SHIPPED.value}
        previous = {"status": old_status, "percentage_shipped": order.percentage_shipped}

        # Whatever is still backordered on this order ships with it
        open_backorders = await BackorderQueue.get_by_order(db, order_id, open_only=True)
        if open_backorders:
            unauthorized = [b.id for b in open_backorders if not b.authorized]
            if unauthorized:
                await BackorderQueue.authorize(db, unauthorized, actor_id)
                changes["authorized_unshipped_items"] = unauthorized
            ids = [b.id for b in open_backorders]
            await BackorderQueue.reconcile_shipped(db, ids, order_id)
            settled = await AllocationEngine.settle_backorders(db, open_backorders)
            changes["reconciled_unshipped_items"] = ids
            changes["items"] = settled.get(order_id, [])

        order.status = OrderStatus.SHIPPED.value
        order.percentage_shipped = 100
        order.actual_shipping_date = utcnow()
        changes["percentage_shipped"] = 100
        changes["actual_shipping_date"] = order.actual_shipping_date
        OrderService._touch(order, actor_id)
        await db.flush()

        await AuditTrail.record_order_change(
            db,
            order_id=order.id,
            user_id=actor_id,
            action=ChangelogAction.STATUS_CHANGE,
            changes=changes,
            previous_values=previous,
            notes=f"Shipment completed for order {order.order_number}",
        )
        logger.info(
            "shipment_completed",
            order_id=order.id,
            old_status=old_status,
            reconciled=len(open_backorders),
        )
        return True

    # --- BACKORDERS ---

    @staticmethod
    async def authorize_backorders(db: AsyncSession, ids: list[int], actor_id: int):
        items = await BackorderQueue.authorize(db, ids, actor_id)

        by_order: dict[int, list[int]] = {}
        for item in items:
            by_order.setdefault(item.order_id, []).append(item.id)
        for order_id, item_ids in by_order.items():
            await AuditTrail.record_order_change(
                db,
                order_id=order_id,
                user_id=actor_id,
                action=ChangelogAction.UNSHIPPED_AUTHORIZATION,
                changes={"authorized_unshipped_items": item_ids},
                notes=f"Authorized {len(item_ids)} unshipped item(s) for shipment",
            )
        return items

    @staticmethod
    async def reconcile_backorders(db: AsyncSession, ids: list[int], new_order_id: int):
        ids = list(dict.fromkeys(ids))
        if not ids:
            return []

        new_order = await OrderService._get_order(db, new_order_id)
        if new_order.status == OrderStatus.CANCELLED.value:
            raise BackorderNotReconcilable(
                f"Order {new_order_id} is cancelled and cannot carry unshipped items"
            )

        backorders = await BackorderQueue.get_items(db, ids)
        for backorder in backorders:
            if backorder.shipped:
                raise BackorderNotReconcilable(f"Unshipped item {backorder.id} has already shipped")
            if not backorder.authorized:
                raise BackorderNotReconcilable(f"Unshipped item {backorder.id} has not been authorized")
        for original_order_id in {b.order_id for b in backorders}:
            original = await OrderService._get_order(db, original_order_id, for_update=False)
            if original.status == OrderStatus.CANCELLED.value:
                raise BackorderNotReconcilable(
                    f"Order {original.order_number} was cancelled; its unshipped items can no longer ship"
                )

        # The replacement order must have stock allocated for everything it is said to carry
        needed: dict[int, int] = {}
        for backorder in backorders:
            needed[backorder.product_id] = needed.get(backorder.product_id, 0) + backorder.quantity
        covered: dict[int, int] = {}
        for item in await OrderRepository.get_items(db, new_order_id):
            covered[item.product_id] = covered.get(item.product_id, 0) + item.shipped_quantity
        for earlier in await BackorderQueue.get_shipped_in_order(db, new_order_id):
            covered[earlier.product_id] = covered.get(earlier.product_id, 0) - earlier.quantity
        for product_id, quantity in needed.items():
            if covered.get(product_id, 0) < quantity:
                raise BackorderNotReconcilable(
                    f"Order {new_order_id} does not cover {quantity} unit(s) of product {product_id}"
                )

        await BackorderQueue.reconcile_shipped(db, ids, new_order_id)
        settled = await AllocationEngine.settle_backorders(db, backorders)

        for original_order_id, item_changes in settled.items():
            await AuditTrail.record_order_change(
                db,
                order_id=original_order_id,
                user_id=new_order.created_by_id,
                action=ChangelogAction.UPDATE,
                changes={
                    "shipped_unshipped_items": [
                        b.id for b in backorders if b.order_id == original_order_id
                    ],
                    "shipped_in_order_id": new_order_id,
                    "items": item_changes,
                },
                notes=f"Unshipped items shipped in order {new_order.order_number}",
            )
        return backorders

    # --- EDITS ---

    @staticmethod
    async def update_order(db: AsyncSession, order_id: int, fields, actor_id: int | None) -> Order:
        try:
            update = OrderUpdate.model_validate(fields)
        except ValidationError as e:
            raise InvalidOrderUpdate(str(e)) from None

        order = await OrderService._get_order(db, order_id)
        if order.status in TERMINAL_STATUSES:
            raise InvalidOrderUpdate(f"Order {order_id} is '{order.status}' and can no longer be edited")

        changes, previous = {}, {}
        for field, value in update.model_dump(exclude_unset=True).items():
            if isinstance(value, OrderPriority):
                value = value.value
            if getattr(order, field) != value:
                previous[field] = getattr(order, field)
                changes[field] = value
                setattr(order, field, value)

        if not changes:
            return order

        OrderService._touch(order, actor_id)
        await db.flush()
        await AuditTrail.record_order_change(
            db,
            order_id=order.id,
            user_id=actor_id,
            action=ChangelogAction.UPDATE,
            changes=changes,
            previous_values=previous,
        )
        return order

    @staticmethod
    async def report_order_error(
        db: AsyncSession,
        order_id: int,
        actor_id: int | None,
        description: str,
        adjustments: list[ErrorAdjustment],
    ):
        order = await OrderService._get_order(db, order_id, for_update=False)

        applied = []
        for adjustment in adjustments:
            product = await InventoryLedger.mutate_stock(
                db,
                adjustment.product_id,
                adjustment.delta,
                actor_id,
                ChangeType.ERROR_ADJUSTMENT,
                notes=f"Error report for order {order.order_number}: {description}",
            )
            applied.append({
                "product_id": adjustment.product_id,
                "delta": adjustment.delta,
                "new_quantity": product.current_stock,
            })

        entry = await AuditTrail.record_order_change(
            db,
            order_id=order.id,
            user_id=actor_id,
            action=ChangelogAction.ERROR_REPORT,
            changes={"description": description, "adjustments": applied},
            notes=description,
        )
        logger.info("order_error_reported", order_id=order.id, adjustments=len(applied))
        return entry

    # --- READS ---

    @staticmethod
    async def get_order(db: AsyncSession, order_id: int):
        order = await OrderService._get_order(db, order_id, for_update=False)
        items = await OrderRepository.get_items(db, order_id)
        document = await OrderRepository.get_shipping_document(db, order_id)
        return order, items, document

    @staticmethod
    async def create_customer(db: AsyncSession, name: str) -> Customer:
        return await CustomerRepository.create_customer(db, Customer(name=name.strip()))
