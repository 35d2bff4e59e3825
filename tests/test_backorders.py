import pytest

from shared.errors import BackorderNotReconcilable, OrderNotFound, UnshippedItemNotFound


@pytest.fixture
async def short_order(core):
    """Stock 3, 7 requested: 3 allocated and 4 backordered."""
    product = await core.create_product(sku="GEAR-7", name="Gear", initial_stock=3, actor_id=1)
    order = await core.create_order("Acme Corp", [{"product_id": product.id, "quantity": 7}], actor_id=5)
    [backorder] = await core.get_unshipped_items_by_order(order.id)
    return product, order, backorder


async def test_new_backorders_await_authorization(core, short_order):
    _, _, backorder = short_order

    pending = await core.list_unshipped_items_for_authorization()

    assert [b.id for b in pending] == [backorder.id]


async def test_authorization_queue_is_oldest_first(core, short_order):
    product, _, first = short_order
    await core.create_order("Beta LLC", [{"product_id": product.id, "quantity": 2}], actor_id=1)

    pending = await core.list_unshipped_items_for_authorization()

    assert [b.id for b in pending][0] == first.id
    assert [b.customer_name for b in pending] == ["Acme Corp", "Beta LLC"]


async def test_authorize_marks_items_and_logs_on_original_order(core, short_order):
    _, order, backorder = short_order

    await core.authorize_unshipped_items([backorder.id], actor_id=8)

    [item] = await core.get_unshipped_items_by_order(order.id)
    assert item.authorized is True
    assert item.authorized_by_id == 8
    assert item.authorized_at is not None
    assert item.shipped is False
    assert await core.list_unshipped_items_for_authorization() == []

    latest = (await core.get_order_changelogs(order.id))[0]
    assert latest.action == "unshipped_authorization"
    assert latest.changes == {"authorized_unshipped_items": [backorder.id]}


async def test_reauthorizing_is_a_safe_no_op(core, short_order):
    _, order, backorder = short_order

    await core.authorize_unshipped_items([backorder.id], actor_id=8)
    await core.authorize_unshipped_items([backorder.id, backorder.id], actor_id=9)

    [item] = await core.get_unshipped_items_by_order(order.id)
    assert item.authorized is True
    assert item.authorized_by_id == 9


async def test_authorize_unknown_id(core, short_order):
    _, order, backorder = short_order

    with pytest.raises(UnshippedItemNotFound) as exc_info:
        await core.authorize_unshipped_items([backorder.id, 404], actor_id=8)

    assert exc_info.value.item_ids == [404]
    # Nothing was authorized
    [item] = await core.get_unshipped_items_by_order(order.id)
    assert item.authorized is False


async def test_authorize_then_reconcile_against_new_order(core, short_order, lines_balanced):
    product, order, backorder = short_order
    await core.adjust_stock(product.id, 10, actor_id=1, change_type="stock_replenishment")
    replacement = await core.create_order("Acme Corp", [{"product_id": product.id, "quantity": 4}], actor_id=6)

    await core.authorize_unshipped_items([backorder.id], actor_id=8)
    await core.reconcile_shipped([backorder.id], replacement.id)

    [item] = await core.get_unshipped_items_by_order(order.id)
    assert item.authorized is True
    assert item.shipped is True
    assert item.shipped_in_order_id == replacement.id
    assert item.shipped_at is not None
    assert await core.get_unshipped_items() == []

    # The original line is now whole
    original = await core.get_order(order.id)
    assert (original.items[0].shipped_quantity, original.items[0].shipping_status) == (7, "fulfilled")
    await lines_balanced(core.gateway, order.id)

    latest = (await core.get_order_changelogs(order.id))[0]
    assert latest.action == "update"
    assert latest.user_id == 6
    assert latest.changes["shipped_in_order_id"] == replacement.id
    assert latest.changes["shipped_unshipped_items"] == [backorder.id]

    # Reconciling moves no stock by itself
    assert (await core.get_product(product.id)).current_stock == 6


async def test_reconcile_requires_authorization(core, short_order):
    product, order, backorder = short_order
    await core.adjust_stock(product.id, 10, actor_id=1)
    replacement = await core.create_order("Acme Corp", [{"product_id": product.id, "quantity": 4}], actor_id=6)

    with pytest.raises(BackorderNotReconcilable, match="not been authorized"):
        await core.reconcile_shipped([backorder.id], replacement.id)

    [item] = await core.get_unshipped_items_by_order(order.id)
    assert item.shipped is False


async def test_reconcile_requires_coverage(core, short_order):
    product, _, backorder = short_order
    await core.adjust_stock(product.id, 2, actor_id=1)
    too_small = await core.create_order("Acme Corp", [{"product_id": product.id, "quantity": 2}], actor_id=6)
    await core.authorize_unshipped_items([backorder.id], actor_id=8)

    with pytest.raises(BackorderNotReconcilable, match="does not cover"):
        await core.reconcile_shipped([backorder.id], too_small.id)


async def test_coverage_is_not_counted_twice(core):
    product = await core.create_product(sku="GEAR-8", name="Gear", initial_stock=0)
    first = await core.create_order("Acme Corp", [{"product_id": product.id, "quantity": 3}], actor_id=1)
    second = await core.create_order("Beta LLC", [{"product_id": product.id, "quantity": 3}], actor_id=1)
    ids = [b.id for b in await core.get_unshipped_items()]
    await core.authorize_unshipped_items(ids, actor_id=8)

    await core.adjust_stock(product.id, 3, actor_id=1)
    replacement = await core.create_order("Acme Corp", [{"product_id": product.id, "quantity": 3}], actor_id=1)

    await core.reconcile_shipped([ids[0]], replacement.id)
    with pytest.raises(BackorderNotReconcilable):
        await core.reconcile_shipped([ids[1]], replacement.id)

    assert [b.order_id for b in await core.get_unshipped_items()] == [second.id]
    assert first.id != second.id


async def test_backorder_ships_only_once(core, short_order):
    product, _, backorder = short_order
    await core.adjust_stock(product.id, 10, actor_id=1)
    replacement = await core.create_order("Acme Corp", [{"product_id": product.id, "quantity": 8}], actor_id=6)
    await core.authorize_unshipped_items([backorder.id], actor_id=8)
    await core.reconcile_shipped([backorder.id], replacement.id)

    with pytest.raises(BackorderNotReconcilable, match="already shipped"):
        await core.reconcile_shipped([backorder.id], replacement.id)


async def test_reconcile_against_cancelled_or_missing_order(core, short_order):
    product, _, backorder = short_order
    await core.authorize_unshipped_items([backorder.id], actor_id=8)
    await core.adjust_stock(product.id, 10, actor_id=1)
    replacement = await core.create_order("Acme Corp", [{"product_id": product.id, "quantity": 4}], actor_id=6)
    await core.update_order_status(replacement.id, "cancelled", actor_id=1)

    with pytest.raises(BackorderNotReconcilable):
        await core.reconcile_shipped([backorder.id], replacement.id)
    with pytest.raises(OrderNotFound):
        await core.reconcile_shipped([backorder.id], 999)
    with pytest.raises(UnshippedItemNotFound):
        await core.reconcile_shipped([404], replacement.id - 1)


async def test_reconcile_nothing_is_a_no_op(core, short_order):
    _, order, _ = short_order
    await core.reconcile_shipped([], order.id)
    await core.authorize_unshipped_items([], actor_id=1)


async def test_open_items_filtered_by_customer(core, short_order):
    product, _, backorder = short_order
    await core.create_order("Beta LLC", [{"product_id": product.id, "quantity": 1}], actor_id=1)

    assert [b.id for b in await core.get_unshipped_items("acme")] == [backorder.id]
    assert len(await core.get_unshipped_items()) == 2
    assert await core.get_unshipped_items("nobody") == []


async def test_cancelling_after_reconciliation_restocks_only_own_units(core, short_order):
    product, order, backorder = short_order
    await core.adjust_stock(product.id, 10, actor_id=1)
    replacement = await core.create_order("Acme Corp", [{"product_id": product.id, "quantity": 4}], actor_id=6)
    await core.authorize_unshipped_items([backorder.id], actor_id=8)
    await core.reconcile_shipped([backorder.id], replacement.id)

    await core.update_order_status(order.id, "cancelled", actor_id=1)

    # 3 units came from this order's own allocation; the other 4 left with the replacement
    assert (await core.get_product(product.id)).current_stock == 9
    assert (await core.get_inventory_changes(product.id))[0].quantity_changed == 3


async def test_backorders_of_cancelled_order_cannot_ship(core, short_order):
    product, order, backorder = short_order
    await core.update_order_status(order.id, "cancelled", actor_id=1)
    await core.adjust_stock(product.id, 10, actor_id=1)
    replacement = await core.create_order("Acme Corp", [{"product_id": product.id, "quantity": 4}], actor_id=6)

    assert await core.list_unshipped_items_for_authorization() == []

    await core.authorize_unshipped_items([backorder.id], actor_id=8)
    with pytest.raises(BackorderNotReconcilable, match="cancelled"):
        await core.reconcile_shipped([backorder.id], replacement.id)

    [item] = await core.get_unshipped_items_by_order(order.id)
    assert item.shipped is False
    detail = await core.get_order(order.id)
    assert [(i.quantity, i.shipped_quantity, i.shipping_status) for i in detail.items] == [(7, 3, "cancelled")]
