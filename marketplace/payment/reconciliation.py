"""
Payment: reconciliation

``settle`` is the single transition function for payment_status. It
bundles the status change, the compensating stock release and the audit
event into one database transaction, guarded by a compare-and-set on
``payment_status = 'Pending'``. Payment providers deliver callbacks at
least once and sometimes concurrently; whichever call wins the
compare-and-set applies the side effects, every other call is a no-op.
A crash before commit leaves neither the status nor the stock changed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .. import event_store
from ..db import iso
from ..errors import OrderNotFound
from ..inventory import commands as inventory
from ..inventory.events import InventoryReleased
from ..order import queries as order_queries
from ..order.aggregate import FailureReason, OrderStatus, PaymentStatus
from ..order.events import LineItemSnapshot, PaymentFailed, PaymentSucceeded
from ..publisher import INVENTORY_CHANNEL, ORDER_CHANNEL, publish_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settlement:
    order_id: str
    transaction_id: str
    payment_status: PaymentStatus
    applied: bool


async def settle(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    transaction_id: str,
    outcome: PaymentStatus,
    reason: FailureReason | None = None,
) -> Settlement:
    """
    Move a Pending order to ``outcome`` (SUCCESS or FAILED).

    FAILED releases the stock of every line item. Orders already in a
    terminal state are returned unchanged with ``applied=False``.
    Raises OrderNotFound for an unknown transaction id.
    """
    if outcome is PaymentStatus.PENDING:
        raise ValueError("Cannot settle an order back to Pending")
    if outcome is PaymentStatus.FAILED and reason is None:
        reason = FailureReason.PAYMENT_FAILED

    order = await order_queries.get_order_by_transaction(session, transaction_id)
    if order is None:
        raise OrderNotFound(transaction_id)

    current = PaymentStatus(order["payment_status"])
    if current is not PaymentStatus.PENDING:
        logger.warning(
            "Settlement of %s to %s ignored, already %s",
            transaction_id, outcome.value, current.value,
        )
        return Settlement(order["id"], transaction_id, current, applied=False)

    now = datetime.now(timezone.utc)
    order_status = (
        OrderStatus.PROCESSING if outcome is PaymentStatus.SUCCESS else OrderStatus.CANCELLED
    )
    released: list[LineItemSnapshot] = []

    try:
        result = await session.execute(
            text("""
                UPDATE orders
                SET payment_status = :status,
                    order_status = :order_status,
                    failure_reason = :reason,
                    updated_at = :now
                WHERE id = :id AND payment_status = 'Pending'
            """),
            {
                "status": outcome.value,
                "order_status": order_status.value,
                "reason": reason.value if reason else None,
                "now": iso(now),
                "id": order["id"],
            },
        )
        if result.rowcount == 0:
            # Lost the race to a concurrent settlement
            await session.rollback()
            latest = await order_queries.get_order_by_transaction(session, transaction_id)
            status = PaymentStatus(latest["payment_status"])
            logger.warning("Settlement of %s lost race, now %s", transaction_id, status.value)
            return Settlement(order["id"], transaction_id, status, applied=False)

        if outcome is PaymentStatus.FAILED:
            for item in sorted(order["items"], key=lambda i: i["product_id"]):
                if await inventory.release(session, item["product_id"], item["quantity"]):
                    released.append(LineItemSnapshot(**item))
            event = PaymentFailed(
                order_id=order["id"],
                transaction_id=transaction_id,
                reason=reason.value,
                released=released,
                timestamp=now,
            )
        else:
            event = PaymentSucceeded(
                order_id=order["id"],
                transaction_id=transaction_id,
                timestamp=now,
            )

        version = await event_store.current_version(session, order["id"])
        await event_store.append_event(session, order["id"], event, version)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info("Order %s settled: %s", order["id"], outcome.value)

    await publish_event(redis, ORDER_CHANNEL, event)
    for item in released:
        await publish_event(redis, INVENTORY_CHANNEL, InventoryReleased(
            product_id=item.product_id,
            order_id=order["id"],
            quantity=item.quantity,
            reason=reason.value,
            timestamp=now,
        ))
    return Settlement(order["id"], transaction_id, outcome, applied=True)
