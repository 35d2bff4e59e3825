import asyncio

import structlog

from services.orchestrator.service import FulfillmentService
from shared.config.database import create_engine_from_settings, init_db
from shared.config.settings import Settings
from shared.observability import setup_observability
from shared.persistence import PersistenceGateway

logger = structlog.get_logger(__name__)


async def create_fulfillment_service(
    settings: Settings | None = None,
    start_monitor: bool = True,
) -> FulfillmentService:
    """
    Wire up the fulfillment core: settings -> observability -> engine/gateway
    -> schema -> health monitor. The API layer keeps the returned service for
    the life of the process and calls `service.gateway.close()` on shutdown.
    """
    settings = settings or Settings.from_env()
    setup_observability(settings)

    engine = create_engine_from_settings(settings)
    gateway = PersistenceGateway(engine, settings)

    # Create all tables
    await init_db(engine)

    if start_monitor:
        gateway.start_health_monitor()

    logger.info("fulfillment_core_started", service=settings.service_name, sqlite=settings.is_sqlite)
    return FulfillmentService(gateway)


async def _main():
    service = await create_fulfillment_service(start_monitor=False)
    try:
        healthy = await service.gateway.check_health()
        logger.info("fulfillment_core_ready", healthy=healthy)
    finally:
        await service.gateway.close()


if __name__ == "__main__":
    asyncio.run(_main())
