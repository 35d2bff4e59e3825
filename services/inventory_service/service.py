import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.audit_service.models import ChangeType
from services.audit_service.service import AuditTrail
from shared.config.database import utcnow
from shared.errors import InsufficientStock, InvalidQuantity, ProductNotFound
from .models import Product
from .repository import ProductRepository
from .schemas import ProductCreate

logger = structlog.get_logger(__name__)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class InventoryLedger:

    @staticmethod
    async def mutate_stock(
        db: AsyncSession,
        product_id: int,
        delta: int,
        actor_id: int | None,
        change_type: ChangeType | str,
        notes: str | None = None,
        allow_clamp: bool = False,
    ) -> Product:
        """
        Apply `delta` to the product's stock and append the matching
        InventoryChange row, both on the caller's transaction.

        With `allow_clamp` a consumption larger than the stock on hand takes
        the stock to 0 instead of failing; without it the call raises
        InsufficientStock.
        """
        if not _is_int(delta) or delta == 0:
            raise InvalidQuantity(delta)

        # 1. Get Product (locked until the transaction ends)
        product = await ProductRepository.get_product_for_update(db, product_id)
        if not product:
            raise ProductNotFound(product_id)

        # 2. Check Stock
        previous = product.current_stock
        new_stock = previous + delta
        if new_stock < 0:
            if not allow_clamp:
                logger.error(
                    "insufficient_stock",
                    product_id=product_id,
                    current_stock=previous,
                    delta=delta,
                    change_type=ChangeType(change_type).value,
                )
                raise InsufficientStock(product_id, previous, delta)
            new_stock = 0

        if new_stock == previous:
            return product

        # 3. Apply; the flush is a compare-and-swap on products.version
        product.current_stock = new_stock
        product.last_stock_update = utcnow()
        await db.flush()

        # 4. Audit, same transaction
        await AuditTrail.record_inventory_change(
            db,
            product_id=product_id,
            user_id=actor_id,
            change_type=change_type,
            previous_quantity=previous,
            new_quantity=new_stock,
            notes=notes,
        )

        logger.info(
            "stock_mutated",
            product_id=product_id,
            previous_quantity=previous,
            new_quantity=new_stock,
            change_type=ChangeType(change_type).value,
        )
        return product

    @staticmethod
    async def create_product(db: AsyncSession, data: ProductCreate, actor_id: int | None = None):
        if not _is_int(data.initial_stock) or data.initial_stock < 0:
            raise InvalidQuantity(data.initial_stock)

        product = Product(
            sku=data.sku,
            name=data.name,
            current_stock=0,
            min_stock_level=data.min_stock_level,
        )
        await ProductRepository.create_product(db, product)

        # Opening stock goes through the ledger so it has its audit row too
        if data.initial_stock > 0:
            await InventoryLedger.mutate_stock(
                db,
                product.id,
                data.initial_stock,
                actor_id,
                ChangeType.STOCK_REPLENISHMENT,
                notes="Initial stock",
            )
        return product

    @staticmethod
    async def get_product(db: AsyncSession, product_id: int):
        product = await ProductRepository.get_product_by_id(db, product_id)
        if not product:
            raise ProductNotFound(product_id)
        return product

    @staticmethod
    async def get_low_stock_products(db: AsyncSession):
        return await ProductRepository.get_low_stock_products(db)
