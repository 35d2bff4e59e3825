from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from .models import Product

class ProductRepository:

    @staticmethod
    async def create_product(db: AsyncSession, product: Product):
        db.add(product)
        await db.flush()
        return product

    @staticmethod
    async def get_product_by_id(db: AsyncSession, product_id: int):
        result = await db.execute(select(Product).where(Product.id == product_id))
        return result.scalars().first()

    @staticmethod
    async def get_product_for_update(db: AsyncSession, product_id: int):
        """Row-locks the product for the rest of the transaction (a no-op on SQLite)."""
        result = await db.execute(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_product_by_sku(db: AsyncSession, sku: str):
        result = await db.execute(select(Product).where(Product.sku == sku))
        return result.scalars().first()

    @staticmethod
    async def get_low_stock_products(db: AsyncSession):
        result = await db.execute(
            select(Product)
            .where(Product.current_stock <= Product.min_stock_level)
            .order_by(Product.current_stock, Product.id)
        )
        return result.scalars().all()
