"""
Order Service: command handlers

``place_order`` is one unit of work: reserve stock for every line,
snapshot prices, insert the order with its items and the OrderPlaced
event, then commit. Any failure rolls the whole attempt back, so a
customer is never left with deducted stock for an order that does not
exist.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .. import event_store
from ..db import iso, money_params
from ..errors import Forbidden, InvalidOrderState, OrderNotFound
from ..inventory import commands as inventory
from ..inventory.events import InventoryReserved
from ..payment.reconciliation import settle
from ..publisher import INVENTORY_CHANNEL, ORDER_CHANNEL, publish_event
from . import queries
from .aggregate import FailureReason, OrderAggregate, OrderStatus, PaymentStatus
from .events import LineItemSnapshot, OrderPlaced, OrderStatusChanged
from .validation import LineItemInput, validate_placement

logger = logging.getLogger(__name__)


def new_transaction_id() -> str:
    # Providers cap tran_id at 30 characters
    return f"TXN-{uuid4().hex[:24].upper()}"


async def place_order(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    customer_id: str,
    products: list[LineItemInput],
    shipping_address: str,
    phone: str | None = None,
) -> dict:
    """
    Place an order in Pending state with its stock already reserved.

    Returns ``order_id``, ``transaction_id`` and the server-computed
    ``total_amount``. Raises ValidationError, ProductNotFound or
    OutOfStock without leaving anything behind.
    """
    lines = validate_placement(products, shipping_address)
    order_id = str(uuid4())
    transaction_id = new_transaction_id()
    now = datetime.now(timezone.utc)

    try:
        # Stable product order so two orders sharing products lock rows
        # in the same sequence
        prices: dict[int, Decimal] = {}
        for index in sorted(range(len(lines)), key=lambda i: lines[i].product_id):
            line = lines[index]
            prices[index] = await inventory.reserve(session, line.product_id, line.quantity)

        items = [
            LineItemSnapshot(
                product_id=line.product_id,
                quantity=line.quantity,
                price_at_purchase=prices[index],
            )
            for index, line in enumerate(lines)
        ]
        total_amount = sum(
            (item.price_at_purchase * item.quantity for item in items),
            Decimal("0"),
        )

        await session.execute(
            text("""
                INSERT INTO orders
                    (id, customer_id, total_amount, shipping_address, phone,
                     transaction_id, payment_status, order_status, created_at, updated_at)
                VALUES
                    (:id, :customer_id, :total_amount, :shipping_address, :phone,
                     :tx, :payment_status, :order_status, :now, :now)
            """).bindparams(*money_params("total_amount")),
            {
                "id": order_id,
                "customer_id": customer_id,
                "total_amount": total_amount,
                "shipping_address": shipping_address.strip(),
                "phone": phone,
                "tx": transaction_id,
                "payment_status": PaymentStatus.PENDING.value,
                "order_status": OrderStatus.PENDING.value,
                "now": iso(now),
            },
        )
        for line_no, item in enumerate(items, start=1):
            await session.execute(
                text("""
                    INSERT INTO order_items
                        (order_id, line_no, product_id, quantity, price_at_purchase)
                    VALUES
                        (:order_id, :line_no, :product_id, :quantity, :price)
                """).bindparams(*money_params("price")),
                {
                    "order_id": order_id,
                    "line_no": line_no,
                    "product_id": item.product_id,
                    "quantity": item.quantity,
                    "price": item.price_at_purchase,
                },
            )

        event = OrderPlaced(
            order_id=order_id,
            customer_id=customer_id,
            transaction_id=transaction_id,
            items=items,
            total_amount=total_amount,
            shipping_address=shipping_address.strip(),
            timestamp=now,
        )
        await event_store.append_event(session, order_id, event, 0)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "Order %s placed by %s: %d line(s), total %s, tx %s",
        order_id, customer_id, len(items), total_amount, transaction_id,
    )

    await publish_event(redis, ORDER_CHANNEL, event)
    for item in items:
        await publish_event(redis, INVENTORY_CHANNEL, InventoryReserved(
            product_id=item.product_id,
            order_id=order_id,
            quantity=item.quantity,
            timestamp=now,
        ))

    return {
        "order_id": order_id,
        "transaction_id": transaction_id,
        "total_amount": total_amount,
    }


async def cancel_order(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    order_id: str,
    customer_id: str,
) -> dict:
    """Customer withdraws an order that has not been paid yet. Stock is released."""
    order = await queries.get_order(session, order_id)
    if order is None or order["customer_id"] != customer_id:
        raise OrderNotFound(order_id)
    if order["payment_status"] != PaymentStatus.PENDING.value:
        raise InvalidOrderState(
            "Cannot cancel processed order",
            order_id=order_id,
            payment_status=order["payment_status"],
        )

    settlement = await settle(
        session,
        redis,
        order["transaction_id"],
        PaymentStatus.FAILED,
        FailureReason.CANCELLED_BY_CUSTOMER,
    )
    if not settlement.applied:
        raise InvalidOrderState(
            "Cannot cancel processed order",
            order_id=order_id,
            payment_status=settlement.payment_status.value,
        )
    return {"order_id": order_id, "payment_status": settlement.payment_status.value}


async def update_order_status(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    order_id: str,
    new_status: OrderStatus,
    actor_id: str,
    actor_role: str,
    note: str = "",
) -> dict:
    """
    Advance fulfillment (Shipped, Out for Delivery, Delivered, Cancelled).

    Staff only. Never touches payment_status.
    """
    if actor_role == "CUSTOMER":
        raise Forbidden("Customers cannot change status")

    agg = OrderAggregate.from_events(await event_store.load_events(session, order_id))
    if agg.id is None:
        raise OrderNotFound(order_id)
    agg.ensure_fulfillment_transition(new_status)

    now = datetime.now(timezone.utc)
    try:
        result = await session.execute(
            text("""
                UPDATE orders
                SET order_status = :new_status, updated_at = :now
                WHERE id = :id AND order_status = :old_status AND payment_status = 'Success'
            """),
            {
                "new_status": new_status.value,
                "old_status": agg.order_status.value,
                "now": iso(now),
                "id": order_id,
            },
        )
        if result.rowcount == 0:
            raise InvalidOrderState("Order changed concurrently, reload and retry", order_id=order_id)

        event = OrderStatusChanged(
            order_id=order_id,
            old_status=agg.order_status.value,
            new_status=new_status.value,
            note=note or f"Status updated to {new_status.value}",
            changed_by=actor_id,
            timestamp=now,
        )
        await event_store.append_event(session, order_id, event, agg.version)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    agg.apply_order_status_changed(event.model_dump(mode="json"))
    await publish_event(redis, ORDER_CHANNEL, event)
    return {"order_id": order_id, "order_status": agg.order_status.value}
