from datetime import datetime

from pydantic_core import to_jsonable_python
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import utcnow
from .models import ChangelogAction, ChangeType, InventoryChange, OrderChangelog
from .repository import AuditRepository


class AuditTrail:

    @staticmethod
    async def record_inventory_change(
        db: AsyncSession,
        product_id: int,
        user_id: int | None,
        change_type: ChangeType | str,
        previous_quantity: int,
        new_quantity: int,
        notes: str | None = None,
    ) -> InventoryChange:
        entry = InventoryChange(
            product_id=product_id,
            user_id=user_id,
            change_type=ChangeType(change_type).value,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            quantity_changed=new_quantity - previous_quantity,
            timestamp=utcnow(),
            notes=notes,
        )
        return await AuditRepository.add(db, entry)

    @staticmethod
    async def record_order_change(
        db: AsyncSession,
        order_id: int,
        user_id: int | None,
        action: ChangelogAction | str,
        changes: dict | None = None,
        previous_values: dict | None = None,
        notes: str | None = None,
    ) -> OrderChangelog:
        entry = OrderChangelog(
            order_id=order_id,
            user_id=user_id,
            action=ChangelogAction(action).value,
            # datetimes and enums in a diff are stored in their JSON form
            changes=to_jsonable_python(changes or {}),
            previous_values=to_jsonable_python(previous_values or {}),
            notes=notes,
            timestamp=utcnow(),
        )
        return await AuditRepository.add(db, entry)

    @staticmethod
    async def get_inventory_changes(db: AsyncSession, product_id: int | None = None):
        return await AuditRepository.get_inventory_changes(db, product_id)

    @staticmethod
    async def get_inventory_changes_between(db: AsyncSession, start: datetime, end: datetime):
        return await AuditRepository.get_inventory_changes_between(db, start, end)

    @staticmethod
    async def get_order_changelogs(db: AsyncSession, order_id: int):
        return await AuditRepository.get_order_changelogs(db, order_id)
