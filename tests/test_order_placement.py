"""Tests for order placement: totals, validation, atomicity and oversell protection."""

import asyncio
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import text

from marketplace import event_store
from marketplace.errors import OutOfStock, ProductNotFound, ValidationError
from marketplace.inventory import commands as inventory_commands
from marketplace.order import commands, queries
from marketplace.order.validation import LineItemInput, validate_placement

from .conftest import ADDRESS


async def _count(session_factory, table):
    async with session_factory() as session:
        result = await session.execute(text(f"SELECT COUNT(*) FROM {table}"))
        return result.scalar()


async def test_total_is_computed_from_current_prices(session_factory, make_product, place, stock_of):
    first = await make_product(price="100.00", stock=5)
    second = await make_product(price="50.00", stock=5)

    result = await place((first, 2), (second, 1))

    assert result["total_amount"] == Decimal("250.00")
    assert result["transaction_id"].startswith("TXN-")
    assert len(result["transaction_id"]) <= 30
    assert await stock_of(first) == 3
    assert await stock_of(second) == 4

    async with session_factory() as session:
        order = await queries.get_order(session, result["order_id"])

    assert order["payment_status"] == "Pending"
    assert order["order_status"] == "Pending"
    assert order["total_amount"] == Decimal("250.00")
    assert order["phone"] == "01711111111"
    assert [(i["product_id"], i["quantity"], i["price_at_purchase"]) for i in order["items"]] == [
        (first, 2, Decimal("100.00")),
        (second, 1, Decimal("50.00")),
    ]


async def test_placement_appends_order_placed_event(session_factory, make_product, place):
    product_id = await make_product(price="19.99", stock=3)

    result = await place((product_id, 3))

    async with session_factory() as session:
        events = await event_store.load_events(session, result["order_id"])

    assert [e["event_type"] for e in events] == ["OrderPlaced"]
    assert events[0]["version"] == 1
    assert events[0]["event_data"]["total_amount"] == "59.97"
    stamped = datetime.fromisoformat(events[0]["event_data"]["timestamp"].replace("Z", "+00:00"))
    assert datetime.fromisoformat(events[0]["created_at"]) == stamped


async def test_placement_publishes_after_commit(make_product, place, redis):
    product_id = await make_product(stock=2)

    await place((product_id, 1))

    channels = [call.args[0] for call in redis.publish.await_args_list]
    assert channels == ["order_events", "inventory_events"]


async def test_all_invalid_fields_reported_together(place):
    with pytest.raises(ValidationError) as exc_info:
        await place(("", 1), ("p-2", 0), address="short")

    assert set(exc_info.value.fields) == {
        "products[0].product_id",
        "products[1].quantity",
        "shipping_address",
    }


def test_empty_product_list_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        validate_placement([], ADDRESS)

    assert "products" in exc_info.value.fields


def test_address_length_is_measured_after_trimming():
    with pytest.raises(ValidationError):
        validate_placement([LineItemInput(product_id="p", quantity=1)], "   abc      ")


async def test_failed_line_rolls_back_whole_order(session_factory, make_product, place, stock_of):
    first = await make_product(stock=5)
    second = await make_product(stock=5)
    scarce = await make_product(stock=1)

    with pytest.raises(OutOfStock) as exc_info:
        await place((first, 2), (second, 2), (scarce, 2))

    assert exc_info.value.product_id == scarce
    assert await stock_of(first) == 5
    assert await stock_of(second) == 5
    assert await stock_of(scarce) == 1
    assert await _count(session_factory, "orders") == 0
    assert await _count(session_factory, "order_items") == 0
    assert await _count(session_factory, "event_store") == 0


async def test_unknown_product_rolls_back(make_product, place, stock_of):
    product_id = await make_product(stock=3)

    with pytest.raises(ProductNotFound):
        await place((product_id, 1), ("does-not-exist", 1))

    assert await stock_of(product_id) == 3


async def test_same_product_on_two_lines_is_reserved_cumulatively(make_product, place, stock_of):
    product_id = await make_product(stock=3)

    with pytest.raises(OutOfStock):
        await place((product_id, 2), (product_id, 2))
    assert await stock_of(product_id) == 3

    await place((product_id, 2), (product_id, 1))
    assert await stock_of(product_id) == 0


async def test_concurrent_orders_never_oversell(session_factory, redis, make_product, stock_of):
    product_id = await make_product(stock=5)

    async def attempt(n):
        async with session_factory() as session:
            try:
                await commands.place_order(
                    session, redis, f"cust-{n}",
                    [LineItemInput(product_id=product_id, quantity=1)],
                    ADDRESS,
                )
            except OutOfStock:
                return False
            return True

    results = await asyncio.gather(*(attempt(n) for n in range(12)))

    assert results.count(True) == 5
    assert await stock_of(product_id) == 0
    assert await _count(session_factory, "orders") == 5


async def test_price_change_does_not_touch_existing_orders(session_factory, redis, make_product, place):
    product_id = await make_product(price="500.00", stock=5)
    result = await place((product_id, 1))

    async with session_factory() as session:
        await inventory_commands.change_price(session, redis, product_id, Decimal("600.00"))

    async with session_factory() as session:
        order = await queries.get_order(session, result["order_id"])

    assert order["total_amount"] == Decimal("500.00")
    assert order["items"][0]["price_at_purchase"] == Decimal("500.00")


async def test_customer_order_history_newest_first(session_factory, make_product, place):
    product_id = await make_product(stock=5)
    older = await place((product_id, 1))
    newer = await place((product_id, 1))
    await place((product_id, 1), customer_id="someone-else")

    async with session_factory() as session:
        orders = await queries.list_orders_for_customer(session, "cust-1")

    assert [o["id"] for o in orders] == [newer["order_id"], older["order_id"]]


async def test_tracking_view_hides_customer_details(session_factory, make_product, place):
    product_id = await make_product(stock=5)
    result = await place((product_id, 1))

    async with session_factory() as session:
        tracked = await queries.track_order(session, result["transaction_id"])
        missing = await queries.track_order(session, "TXN-UNKNOWN")

    assert tracked["payment_status"] == "Pending"
    assert "customer_id" not in tracked
    assert "shipping_address" not in tracked
    assert missing is None


async def test_vendor_sees_only_own_lines(session_factory, make_product, place):
    mine = await make_product(price="30.00", vendor_id="vendor-1", name="Mug")
    theirs = await make_product(price="99.00", vendor_id="vendor-2", name="Lamp")
    mixed = await place((theirs, 1), (mine, 2))
    only_theirs = await place((theirs, 1))

    async with session_factory() as session:
        orders = await queries.list_orders_for_vendor(session, "vendor-1")
        other = await queries.list_orders_for_vendor(session, "vendor-2")

    assert [o["id"] for o in orders] == [mixed["order_id"]]
    assert orders[0]["items"] == [
        {"product_id": mine, "name": "Mug", "quantity": 2, "price_at_purchase": Decimal("30.00")}
    ]
    assert orders[0]["vendor_total"] == Decimal("60.00")
    assert [o["id"] for o in other] == [only_theirs["order_id"], mixed["order_id"]]
    assert other[1]["vendor_total"] == Decimal("99.00")
