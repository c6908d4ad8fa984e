"""
Order Service: read side

``orders`` and ``order_items`` are the current-state tables. Line items
are returned in the order the customer submitted them.
"""

from decimal import Decimal

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import to_money


async def _items(session: AsyncSession, order_id: str) -> list[dict]:
    result = await session.execute(
        text("""
            SELECT product_id, quantity, price_at_purchase
            FROM order_items
            WHERE order_id = :order_id
            ORDER BY line_no
        """),
        {"order_id": order_id},
    )
    return [
        {
            "product_id": row.product_id,
            "quantity": row.quantity,
            "price_at_purchase": to_money(row.price_at_purchase),
        }
        for row in result.fetchall()
    ]


async def _order_row(session: AsyncSession, row) -> dict:
    return {
        "id": row.id,
        "customer_id": row.customer_id,
        "items": await _items(session, row.id),
        "total_amount": to_money(row.total_amount),
        "shipping_address": row.shipping_address,
        "phone": row.phone,
        "transaction_id": row.transaction_id,
        "payment_status": row.payment_status,
        "order_status": row.order_status,
        "failure_reason": row.failure_reason,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


async def get_order(session: AsyncSession, order_id: str) -> dict | None:
    result = await session.execute(
        text("SELECT * FROM orders WHERE id = :id"),
        {"id": order_id},
    )
    row = result.fetchone()
    if not row:
        return None
    return await _order_row(session, row)


async def get_order_by_transaction(session: AsyncSession, transaction_id: str) -> dict | None:
    result = await session.execute(
        text("SELECT * FROM orders WHERE transaction_id = :tx"),
        {"tx": transaction_id},
    )
    row = result.fetchone()
    if not row:
        return None
    return await _order_row(session, row)


async def list_orders_for_customer(session: AsyncSession, customer_id: str) -> list[dict]:
    """Newest first"""
    result = await session.execute(
        text("""
            SELECT * FROM orders
            WHERE customer_id = :customer_id
            ORDER BY created_at DESC
        """),
        {"customer_id": customer_id},
    )
    return [await _order_row(session, row) for row in result.fetchall()]


async def track_order(session: AsyncSession, transaction_id: str) -> dict | None:
    """Public tracking view. No customer identity, address or phone."""
    order = await get_order_by_transaction(session, transaction_id)
    if order is None:
        return None
    return {
        "transaction_id": order["transaction_id"],
        "payment_status": order["payment_status"],
        "order_status": order["order_status"],
        "total_amount": order["total_amount"],
        "created_at": order["created_at"],
        "items": order["items"],
    }


async def list_stale_pending(session: AsyncSession, cutoff: str, limit: int = 100) -> list[str]:
    """Transaction ids of orders still awaiting payment that were created before ``cutoff``."""
    result = await session.execute(
        text("""
            SELECT transaction_id FROM orders
            WHERE payment_status = 'Pending' AND created_at < :cutoff
            ORDER BY created_at
            LIMIT :limit
        """),
        {"cutoff": cutoff, "limit": limit},
    )
    return [row.transaction_id for row in result.fetchall()]


async def list_orders_for_vendor(session: AsyncSession, vendor_id: str) -> list[dict]:
    """
    Orders containing at least one of the vendor's products, newest first.

    Each order shows only the vendor's own lines and what they are worth
    (``vendor_total``). Lines whose product has since been deleted can no
    longer be attributed to a vendor and are left out.
    """
    result = await session.execute(
        text("""
            SELECT o.id, o.transaction_id, o.customer_id, o.payment_status,
                   o.order_status, o.created_at,
                   i.product_id, p.name, i.quantity, i.price_at_purchase
            FROM orders o
            JOIN order_items i ON i.order_id = o.id
            JOIN products p ON p.id = i.product_id
            WHERE p.vendor_id = :vendor_id
            ORDER BY o.created_at DESC, o.id, i.line_no
        """),
        {"vendor_id": vendor_id},
    )

    orders: dict[str, dict] = {}
    for row in result.fetchall():
        order = orders.get(row.id)
        if order is None:
            order = orders[row.id] = {
                "id": row.id,
                "transaction_id": row.transaction_id,
                "customer_id": row.customer_id,
                "payment_status": row.payment_status,
                "order_status": row.order_status,
                "created_at": row.created_at,
                "items": [],
                "vendor_total": Decimal("0.00"),
            }
        price = to_money(row.price_at_purchase)
        order["items"].append({
            "product_id": row.product_id,
            "name": row.name,
            "quantity": row.quantity,
            "price_at_purchase": price,
        })
        order["vendor_total"] += price * row.quantity
    return list(orders.values())
