from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, select
from .models import Customer, Order, OrderItem, ShippingDocument

class OrderRepository:
    @staticmethod
    async def create_order(db: AsyncSession, order: Order):
        db.add(order)
        await db.flush()
        return order

    @staticmethod
    async def get_order(db: AsyncSession, order_id: int):
        result = await db.execute(select(Order).where(Order.id == order_id))
        return result.scalars().first()

    @staticmethod
    async def get_order_for_update(db: AsyncSession, order_id: int):
        result = await db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def add_item(db: AsyncSession, item: OrderItem):
        db.add(item)
        await db.flush()
        return item

    @staticmethod
    async def get_items(db: AsyncSession, order_id: int):
        result = await db.execute(
            select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
        )
        return result.scalars().all()

    @staticmethod
    async def get_items_by_ids(db: AsyncSession, item_ids: list[int]):
        result = await db.execute(
            select(OrderItem)
            .where(OrderItem.id.in_(item_ids))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    @staticmethod
    async def get_shipping_document(db: AsyncSession, order_id: int):
        result = await db.execute(
            select(ShippingDocument).where(ShippingDocument.order_id == order_id)
        )
        return result.scalars().first()

    @staticmethod
    async def add_shipping_document(db: AsyncSession, document: ShippingDocument):
        db.add(document)
        await db.flush()
        return document


class CustomerRepository:
    @staticmethod
    async def create_customer(db: AsyncSession, customer: Customer):
        db.add(customer)
        await db.flush()
        return customer

    @staticmethod
    async def find_by_name(db: AsyncSession, name: str):
        result = await db.execute(
            select(Customer)
            .where(func.lower(func.trim(Customer.name)) == name.strip().lower())
            .order_by(Customer.id)
        )
        return result.scalars().first()
