from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import InventoryChange, OrderChangelog


class AuditRepository:
    @staticmethod
    async def add(db: AsyncSession, entry):
        db.add(entry)
        await db.flush()
        return entry

    @staticmethod
    async def get_inventory_changes(db: AsyncSession, product_id: int | None = None):
        query = select(InventoryChange)
        if product_id is not None:
            query = query.where(InventoryChange.product_id == product_id)
        query = query.order_by(InventoryChange.timestamp.desc(), InventoryChange.id.desc())
        result = await db.execute(query)
        return result.scalars().all()

    @staticmethod
    async def get_inventory_changes_between(db: AsyncSession, start: datetime, end: datetime):
        result = await db.execute(
            select(InventoryChange)
            .where(InventoryChange.timestamp >= start, InventoryChange.timestamp <= end)
            .order_by(InventoryChange.timestamp.desc(), InventoryChange.id.desc())
        )
        return result.scalars().all()

    @staticmethod
    async def get_order_changelogs(db: AsyncSession, order_id: int):
        result = await db.execute(
            select(OrderChangelog)
            .where(OrderChangelog.order_id == order_id)
            .order_by(OrderChangelog.timestamp.desc(), OrderChangelog.id.desc())
        )
        return result.scalars().all()
