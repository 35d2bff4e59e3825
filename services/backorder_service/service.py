import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import utcnow
from shared.errors import UnshippedItemNotFound
from .models import UnshippedItem
from .repository import UnshippedItemRepository

logger = structlog.get_logger(__name__)


class BackorderQueue:
    """
    Holds unfulfilled remainders until they are authorized and shipped.

    The queue only records state changes. Deciding whether a reconciliation is
    legitimate (authorized first, quantity covered by the new order) belongs to
    the order state machine.
    """

    @staticmethod
    async def enqueue(
        db: AsyncSession,
        order,
        order_item,
        quantity: int,
        customer=None,
        notes: str | None = None,
    ) -> UnshippedItem:
        item = UnshippedItem(
            order_id=order.id,
            order_item_id=order_item.id,
            product_id=order_item.product_id,
            quantity=quantity,
            customer_name=order.customer_name,
            customer_id=customer.id if customer else None,
            original_order_number=order.order_number,
            date=utcnow(),
            authorized=False,
            shipped=False,
            notes=notes,
        )
        await UnshippedItemRepository.create(db, item)
        logger.info(
            "backorder_created",
            unshipped_item_id=item.id,
            order_id=order.id,
            product_id=order_item.product_id,
            quantity=quantity,
            customer_id=item.customer_id,
        )
        return item

    @staticmethod
    async def get_items(db: AsyncSession, ids: list[int]) -> list[UnshippedItem]:
        """Lock and return the given items; any unknown id is a validation failure."""
        unique_ids = list(dict.fromkeys(ids))
        items = await UnshippedItemRepository.get_by_ids(db, unique_ids, for_update=True)
        missing = set(unique_ids) - {item.id for item in items}
        if missing:
            raise UnshippedItemNotFound(missing)
        return list(items)

    @staticmethod
    async def authorize(db: AsyncSession, ids: list[int], user_id: int) -> list[UnshippedItem]:
        """Re-authorizing an already authorized item simply refreshes who/when."""
        if not ids:
            return []
        items = await BackorderQueue.get_items(db, ids)
        now = utcnow()
        for item in items:
            item.authorized = True
            item.authorized_by_id = user_id
            item.authorized_at = now
        await db.flush()
        logger.info("backorders_authorized", unshipped_item_ids=[i.id for i in items], user_id=user_id)
        return items

    @staticmethod
    async def reconcile_shipped(db: AsyncSession, ids: list[int], new_order_id: int) -> list[UnshippedItem]:
        if not ids:
            return []
        items = await BackorderQueue.get_items(db, ids)
        now = utcnow()
        for item in items:
            item.shipped = True
            item.shipped_in_order_id = new_order_id
            item.shipped_at = now
        await db.flush()
        logger.info(
            "backorders_shipped",
            unshipped_item_ids=[i.id for i in items],
            shipped_in_order_id=new_order_id,
        )
        return items

    @staticmethod
    async def list_for_authorization(db: AsyncSession):
        return await UnshippedItemRepository.get_pending_authorization(db)

    @staticmethod
    async def get_open_items(db: AsyncSession, customer_name: str | None = None):
        return await UnshippedItemRepository.get_open(db, customer_name)

    @staticmethod
    async def get_by_order(db: AsyncSession, order_id: int, open_only: bool = False):
        return await UnshippedItemRepository.get_by_order(db, order_id, open_only)

    @staticmethod
    async def get_shipped_in_order(db: AsyncSession, order_id: int):
        return await UnshippedItemRepository.get_shipped_in_order(db, order_id)

    @staticmethod
    async def count_open_for_customer(db: AsyncSession, customer_name: str) -> int:
        return await UnshippedItemRepository.count_open_for_customer(db, customer_name)
