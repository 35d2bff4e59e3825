import asyncio

import pytest
from sqlalchemy import exc as sa_exc
from structlog.testing import capture_logs

from services.audit_service.models import ChangelogAction
from services.audit_service.service import AuditTrail
from services.orchestrator.service import FulfillmentService
from shared.config.database import create_engine_from_settings, init_db
from shared.config.settings import Settings
from shared.errors import (
    EmptyOrder,
    InvalidQuantity,
    OrderNotAllocatable,
    OrderNotFound,
    ProductNotFound,
    ValidationFailure,
)
from shared.persistence import PersistenceGateway


async def test_full_fulfillment(core, widget):
    order = await core.create_order("Acme Corp", [{"product_id": widget.id, "quantity": 10}], actor_id=1)

    assert order.order_number == f"ORD-{order.id:04d}"
    assert order.status == "pending"
    [item] = order.items
    assert (item.quantity, item.shipped_quantity, item.shipping_status) == (10, 10, "fulfilled")
    assert (await core.get_product(widget.id)).current_stock == 0
    assert await core.get_unshipped_items_by_order(order.id) == []

    consumption = (await core.get_inventory_changes(widget.id))[0]
    assert consumption.change_type == "order_consumption"
    assert (consumption.previous_quantity, consumption.new_quantity) == (10, 0)


async def test_partial_fulfillment_creates_backorder(core, lines_balanced):
    product = await core.create_product(sku="GEAR-3", name="Gear", initial_stock=3, actor_id=1)

    order = await core.create_order("Acme Corp", [{"product_id": product.id, "quantity": 7}], actor_id=1)

    [item] = order.items
    assert (item.shipped_quantity, item.shipping_status) == (3, "partial")
    assert (await core.get_product(product.id)).current_stock == 0

    [backorder] = await core.get_unshipped_items_by_order(order.id)
    assert backorder.quantity == 4
    assert backorder.authorized is False
    assert backorder.shipped is False
    assert backorder.order_item_id == item.id
    assert backorder.original_order_number == order.order_number
    assert backorder.notes == "Partially fulfilled order. 3 out of 7 shipped."
    await lines_balanced(core.gateway, order.id)


async def test_nothing_in_stock_backorders_everything(core):
    product = await core.create_product(sku="EMPTY-1", name="Out of stock")

    order = await core.create_order("Acme Corp", [{"product_id": product.id, "quantity": 5}], actor_id=1)

    assert order.items[0].shipped_quantity == 0
    [backorder] = await core.get_unshipped_items_by_order(order.id)
    assert backorder.quantity == 5
    # Nothing was consumed, so nothing was written to the ledger
    assert await core.get_inventory_changes(product.id) == []


async def test_allocation_writes_changelog(core, widget):
    order = await core.create_order("Acme Corp", [{"product_id": widget.id, "quantity": 4}], actor_id=9)

    entries = await core.get_order_changelogs(order.id)
    assert [e.action for e in entries] == ["update", "create"]
    allocation = entries[0]
    assert allocation.user_id == 9
    assert allocation.changes["requested_quantity"] == 4
    assert allocation.changes["shipped_quantity"] == 4
    assert entries[1].changes["items"] == [{"product_id": widget.id, "quantity": 4}]


async def test_multi_line_order(core, widget, lines_balanced):
    gear = await core.create_product(sku="GEAR-1", name="Gear", initial_stock=1)

    order = await core.create_order(
        "Acme Corp",
        [{"product_id": widget.id, "quantity": 2}, {"product_id": gear.id, "quantity": 3}],
        actor_id=1,
    )

    assert [i.shipping_status for i in order.items] == ["fulfilled", "partial"]
    assert [b.quantity for b in await core.get_unshipped_items_by_order(order.id)] == [2]
    await lines_balanced(core.gateway, order.id)


@pytest.mark.parametrize("quantity", [0, -3])
async def test_non_positive_quantity_rejected_before_anything_is_written(core, widget, quantity):
    with pytest.raises(InvalidQuantity):
        await core.create_order("Acme Corp", [{"product_id": widget.id, "quantity": quantity}], actor_id=1)

    with pytest.raises(OrderNotFound):
        await core.get_order(1)
    assert (await core.get_product(widget.id)).current_stock == 10


async def test_order_needs_items(core):
    with pytest.raises(EmptyOrder):
        await core.create_order("Acme Corp", [], actor_id=1)


async def test_malformed_line_is_a_validation_failure(core):
    with pytest.raises(ValidationFailure):
        await core.create_order("Acme Corp", [{"product_id": "abc", "quantity": 1}], actor_id=1)


async def test_unknown_product_rolls_back_the_order(core, widget):
    with pytest.raises(ProductNotFound):
        await core.create_order(
            "Acme Corp",
            [{"product_id": widget.id, "quantity": 2}, {"product_id": 404, "quantity": 1}],
            actor_id=1,
        )

    with pytest.raises(OrderNotFound):
        await core.get_order(1)
    assert (await core.get_product(widget.id)).current_stock == 10


async def test_allocate_onto_existing_order(core, widget, lines_balanced):
    gear = await core.create_product(sku="GEAR-2", name="Gear", initial_stock=2)
    order = await core.create_order("Acme Corp", [{"product_id": widget.id, "quantity": 1}], actor_id=4)

    item = await core.allocate(order.id, gear.id, 5)

    assert (item.order_id, item.quantity, item.shipped_quantity) == (order.id, 5, 2)
    detail = await core.get_order(order.id)
    assert len(detail.items) == 2
    # The order's creator is recorded as the actor
    assert (await core.get_inventory_changes(gear.id))[0].user_id == 4
    await lines_balanced(core.gateway, order.id)


async def test_allocate_validation(core, widget):
    order = await core.create_order("Acme Corp", [{"product_id": widget.id, "quantity": 1}], actor_id=1)

    with pytest.raises(OrderNotFound):
        await core.allocate(999, widget.id, 1)
    with pytest.raises(ProductNotFound):
        await core.allocate(order.id, 999, 1)
    with pytest.raises(InvalidQuantity):
        await core.allocate(order.id, widget.id, 0)

    await core.update_order_status(order.id, "cancelled", actor_id=1)
    with pytest.raises(OrderNotAllocatable):
        await core.allocate(order.id, widget.id, 1)


async def test_backorder_resolves_customer_case_insensitively(core):
    customer = await core.create_customer("Acme Corp")
    product = await core.create_product(sku="RARE-1", name="Rare part", initial_stock=1)

    order = await core.create_order("ACME corp", [{"product_id": product.id, "quantity": 3}], actor_id=1)

    [backorder] = await core.get_unshipped_items_by_order(order.id)
    assert backorder.customer_id == customer.id
    assert backorder.customer_name == "ACME corp"


async def test_customer_names_match_ignoring_surrounding_spaces(core):
    customer = await core.create_customer("  Acme Corp ")
    product = await core.create_product(sku="RARE-3", name="Rare part", initial_stock=0)

    order = await core.create_order("acme corp", [{"product_id": product.id, "quantity": 2}], actor_id=1)

    assert customer.name == "Acme Corp"
    [backorder] = await core.get_unshipped_items_by_order(order.id)
    assert backorder.customer_id == customer.id


async def test_backorder_without_known_customer_is_still_created(core):
    product = await core.create_product(sku="RARE-2", name="Rare part", initial_stock=1)

    with capture_logs() as logs:
        order = await core.create_order("Walk-in", [{"product_id": product.id, "quantity": 3}], actor_id=1)

    [backorder] = await core.get_unshipped_items_by_order(order.id)
    assert backorder.customer_id is None
    assert backorder.quantity == 2
    assert any(log["event"] == "backorder_without_customer" for log in logs)


async def test_new_order_warns_about_open_backorders(core):
    product = await core.create_product(sku="RARE-3", name="Rare part", initial_stock=1)
    await core.create_order("Acme Corp", [{"product_id": product.id, "quantity": 3}], actor_id=1)

    with capture_logs() as logs:
        await core.create_order("acme corp", [{"product_id": product.id, "quantity": 1}], actor_id=1)

    warnings = [log for log in logs if log["event"] == "customer_has_open_backorders"]
    assert len(warnings) == 1
    assert warnings[0]["log_level"] == "warning"
    assert warnings[0]["open_unshipped_items"] == 1


async def test_retry_after_transient_failure_consumes_stock_once(core, widget, monkeypatch, sleeper):
    original = AuditTrail.record_order_change
    failures = []

    async def flaky(*args, **kwargs):
        # Fails after the stock was decremented, before commit
        if kwargs.get("action") == ChangelogAction.UPDATE and not failures:
            failures.append(1)
            raise sa_exc.OperationalError("INSERT INTO order_changelogs", {}, Exception("connection reset"))
        return await original(*args, **kwargs)

    monkeypatch.setattr(AuditTrail, "record_order_change", staticmethod(flaky))
    order = await core.create_order("Acme Corp", [{"product_id": widget.id, "quantity": 4}], actor_id=1)
    monkeypatch.undo()

    assert sleeper.delays == [0.1]
    assert (await core.get_product(widget.id)).current_stock == 6
    consumptions = [c for c in await core.get_inventory_changes(widget.id) if c.change_type == "order_consumption"]
    assert len(consumptions) == 1
    assert len((await core.get_order(order.id)).items) == 1


async def test_concurrent_allocations_never_oversubscribe(tmp_path, lines_balanced):
    settings = Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/fulfillment.db",
        retry_max_attempts=50,
        retry_base_delay=0.01,
        retry_max_delay=0.05,
        retry_jitter=0.01,
        statement_timeout=30.0,
    )
    engine = create_engine_from_settings(settings)
    await init_db(engine)
    core = FulfillmentService(PersistenceGateway(engine, settings))
    try:
        product = await core.create_product(sku="HOT-1", name="Popular", initial_stock=10)

        orders = await asyncio.gather(*[
            core.create_order(f"Customer {n}", [{"product_id": product.id, "quantity": 3}], actor_id=n)
            for n in range(5)
        ])

        shipped = sum(order.items[0].shipped_quantity for order in orders)
        assert shipped == min(10, 15)
        assert (await core.get_product(product.id)).current_stock == 0

        backordered = sum(b.quantity for b in await core.get_unshipped_items())
        assert shipped + backordered == 15
        for order in orders:
            await lines_balanced(core.gateway, order.id)

        # Every stock change is accounted for in the ledger history
        changes = await core.get_inventory_changes(product.id)
        assert sum(c.quantity_changed for c in changes) == 0
    finally:
        await engine.dispose()

