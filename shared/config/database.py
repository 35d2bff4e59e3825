from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .settings import Settings

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Build the async engine (and its connection pool) for the given settings."""
    if settings.is_sqlite:
        # SQLite has no server-side pool settings
        return create_async_engine(settings.database_url, echo=settings.db_echo)

    statement_timeout_ms = str(int(settings.statement_timeout * 1000))
    return create_async_engine(
        settings.database_url,
        echo=settings.db_echo,
        pool_pre_ping=True,  # Replace dead pooled connections on next checkout
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        connect_args={
            "timeout": settings.statement_timeout,
            "server_settings": {"statement_timeout": statement_timeout_ms},
        },
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def init_db(engine: AsyncEngine) -> None:
    # IMPORTANT: import models so they register with Base
    from services.inventory_service import models as inventory_models  # noqa: F401
    from services.audit_service import models as audit_models  # noqa: F401
    from services.order_service import models as order_models  # noqa: F401
    from services.backorder_service import models as backorder_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
