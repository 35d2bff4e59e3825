import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from services.backorder_service.models import UnshippedItem
from services.orchestrator.service import FulfillmentService
from services.order_service.models import OrderItem
from shared.config.database import init_db
from shared.config.settings import Settings
from shared.persistence import PersistenceGateway


class SleepRecorder:
    """Stands in for asyncio.sleep so retry delays can be asserted without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        retry_max_attempts=5,
        retry_base_delay=0.1,
        retry_max_delay=10.0,
        retry_jitter=0.0,
        statement_timeout=5.0,
        health_check_interval=0.01,
    )


@pytest.fixture
async def engine(settings):
    engine = create_async_engine(
        settings.database_url,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
async def gateway(engine, settings, sleeper):
    gateway = PersistenceGateway(engine, settings, sleep=sleeper)
    yield gateway
    await gateway.stop_health_monitor()


@pytest.fixture
def core(gateway):
    return FulfillmentService(gateway)


@pytest.fixture
async def widget(core):
    return await core.create_product(sku="WID-001", name="Widget", initial_stock=10, actor_id=1)


@pytest.fixture
def lines_balanced():
    return assert_order_lines_balanced


async def assert_order_lines_balanced(gateway, order_id):
    """shipped_quantity + open backorders == requested quantity, for every line of the order."""

    async def op(db):
        items = (await db.execute(select(OrderItem).where(OrderItem.order_id == order_id))).scalars().all()
        backorders = (
            await db.execute(
                select(UnshippedItem).where(
                    UnshippedItem.order_id == order_id,
                    UnshippedItem.shipped.is_(False),
                )
            )
        ).scalars().all()
        for item in items:
            open_quantity = sum(b.quantity for b in backorders if b.order_item_id == item.id)
            assert item.shipped_quantity + open_quantity == item.quantity

    await gateway.run(op, label="test_check_lines")
