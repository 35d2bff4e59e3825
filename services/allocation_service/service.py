import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.audit_service.models import ChangelogAction, ChangeType
from services.audit_service.service import AuditTrail
from services.backorder_service.service import BackorderQueue
from services.inventory_service.repository import ProductRepository
from services.inventory_service.service import InventoryLedger
from services.order_service.models import Order, OrderItem, ShippingStatus
from services.order_service.repository import CustomerRepository, OrderRepository
from shared.errors import InvalidQuantity, ProductNotFound
from shared.observability import fulfillment_allocation_total, fulfillment_backorder_units_total

logger = structlog.get_logger(__name__)


class AllocationEngine:

    @staticmethod
    async def allocate(
        db: AsyncSession,
        order: Order,
        product_id: int,
        requested_quantity: int,
        actor_id: int | None = None,
    ) -> OrderItem:
        if (
            not isinstance(requested_quantity, int)
            or isinstance(requested_quantity, bool)
            or requested_quantity <= 0
        ):
            raise InvalidQuantity(requested_quantity)

        actor_id = actor_id if actor_id is not None else order.created_by_id

        # Lock the stock row first; everything below is decided from this read
        product = await ProductRepository.get_product_for_update(db, product_id)
        if not product:
            raise ProductNotFound(product_id)

        # 1. The order line, nothing shipped yet
        item = OrderItem(
            order_id=order.id,
            product_id=product_id,
            quantity=requested_quantity,
            shipped_quantity=0,
            shipping_status=ShippingStatus.PENDING.value,
        )
        await OrderRepository.add_item(db, item)

        # 2. What can stock cover?
        available = product.current_stock
        backorder = None

        if available >= requested_quantity:
            # 3. Full fulfillment
            await InventoryLedger.mutate_stock(
                db,
                product_id,
                -requested_quantity,
                actor_id,
                ChangeType.ORDER_CONSUMPTION,
                notes=f"Allocated to order {order.order_number}",
            )
            item.shipped_quantity = requested_quantity
            item.shipping_status = ShippingStatus.FULFILLED.value
            outcome = "fulfilled"
            notes = f"Allocated {requested_quantity} units of product {product_id}"
        else:
            # 4. Shortfall: take everything on hand, backorder the rest
            if available > 0:
                await InventoryLedger.mutate_stock(
                    db,
                    product_id,
                    -available,
                    actor_id,
                    ChangeType.ORDER_CONSUMPTION,
                    notes=f"Partially allocated to order {order.order_number}",
                    allow_clamp=True,
                )
            item.shipped_quantity = available
            item.shipping_status = ShippingStatus.PARTIAL.value
            outcome = "partial"
            notes = f"Partially fulfilled order. {available} out of {requested_quantity} shipped."

            # No matching customer is fine: the backorder just carries the name
            customer = await CustomerRepository.find_by_name(db, order.customer_name)
            if customer is None:
                logger.info(
                    "backorder_without_customer",
                    order_id=order.id,
                    customer_name=order.customer_name,
                )
            backorder = await BackorderQueue.enqueue(
                db,
                order,
                item,
                quantity=requested_quantity - available,
                customer=customer,
                notes=notes,
            )
        await db.flush()

        # 5. Changelog entry for the outcome
        changes = {
            "order_item_id": item.id,
            "product_id": product_id,
            "requested_quantity": requested_quantity,
            "shipped_quantity": item.shipped_quantity,
            "shipping_status": item.shipping_status,
        }
        if backorder is not None:
            changes["unshipped_item_id"] = backorder.id
            changes["backordered_quantity"] = backorder.quantity
        await AuditTrail.record_order_change(
            db,
            order_id=order.id,
            user_id=actor_id,
            action=ChangelogAction.UPDATE,
            changes=changes,
            notes=notes,
        )

        fulfillment_allocation_total.labels(outcome=outcome).inc()
        if backorder is not None:
            fulfillment_backorder_units_total.inc(backorder.quantity)

        logger.info(
            "allocation_completed",
            order_id=order.id,
            order_item_id=item.id,
            product_id=product_id,
            requested=requested_quantity,
            shipped=item.shipped_quantity,
            outcome=outcome,
        )
        return item

    @staticmethod
    async def settle_backorders(db: AsyncSession, backorders) -> dict[int, list[dict]]:
        """
        Credit shipped backorders back to the order lines they came from, so
        `shipped_quantity + open backorders == quantity` keeps holding once a
        backorder stops being open. Call after the backorders are marked shipped.

        Returns the per-line changes grouped by original order id.
        """
        by_item: dict[int, int] = {}
        for backorder in backorders:
            if backorder.order_item_id is None:
                continue
            by_item[backorder.order_item_id] = by_item.get(backorder.order_item_id, 0) + backorder.quantity

        if not by_item:
            return {}

        settled: dict[int, list[dict]] = {}
        items = await OrderRepository.get_items_by_ids(db, list(by_item))
        for item in items:
            previous_shipped = item.shipped_quantity
            previous_status = item.shipping_status
            item.shipped_quantity = min(item.quantity, previous_shipped + by_item[item.id])
            if (
                item.shipped_quantity == item.quantity
                and previous_status != ShippingStatus.CANCELLED.value
            ):
                item.shipping_status = ShippingStatus.FULFILLED.value

            settled.setdefault(item.order_id, []).append({
                "order_item_id": item.id,
                "product_id": item.product_id,
                "shipped_quantity": [previous_shipped, item.shipped_quantity],
                "shipping_status": [previous_status, item.shipping_status],
            })
        await db.flush()
        return settled
