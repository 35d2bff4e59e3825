from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.order_service.models import Order, OrderStatus

from .models import UnshippedItem


class UnshippedItemRepository:
    @staticmethod
    async def create(db: AsyncSession, item: UnshippedItem):
        db.add(item)
        await db.flush()
        return item

    @staticmethod
    async def get_by_ids(db: AsyncSession, ids: list[int], for_update: bool = False):
        query = select(UnshippedItem).where(UnshippedItem.id.in_(ids)).order_by(UnshippedItem.id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        return result.scalars().all()

    @staticmethod
    async def get_pending_authorization(db: AsyncSession):
        result = await db.execute(
            select(UnshippedItem)
            .join(Order, Order.id == UnshippedItem.order_id)
            .where(UnshippedItem.authorized.is_(False), UnshippedItem.shipped.is_(False))
            .where(Order.status != OrderStatus.CANCELLED.value)
            .order_by(UnshippedItem.date, UnshippedItem.id)
        )
        return result.scalars().all()

    @staticmethod
    async def get_open(db: AsyncSession, customer_name: str | None = None):
        query = select(UnshippedItem).where(UnshippedItem.shipped.is_(False))
        if customer_name:
            query = query.where(
                func.lower(UnshippedItem.customer_name).contains(customer_name.lower(), autoescape=True)
            )
        result = await db.execute(query.order_by(UnshippedItem.date, UnshippedItem.id))
        return result.scalars().all()

    @staticmethod
    async def get_by_order(db: AsyncSession, order_id: int, open_only: bool = False):
        query = select(UnshippedItem).where(UnshippedItem.order_id == order_id)
        if open_only:
            query = query.where(UnshippedItem.shipped.is_(False))
        result = await db.execute(query.order_by(UnshippedItem.id))
        return result.scalars().all()

    @staticmethod
    async def get_shipped_in_order(db: AsyncSession, order_id: int):
        result = await db.execute(
            select(UnshippedItem).where(UnshippedItem.shipped_in_order_id == order_id)
        )
        return result.scalars().all()

    @staticmethod
    async def count_open_for_customer(db: AsyncSession, customer_name: str) -> int:
        result = await db.execute(
            select(func.count(UnshippedItem.id)).where(
                UnshippedItem.shipped.is_(False),
                func.lower(UnshippedItem.customer_name) == customer_name.lower(),
            )
        )
        return result.scalar_one()
