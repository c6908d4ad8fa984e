"""
Inventory Ledger: stock commands

``reserve`` and ``release`` are the only way product stock changes while
orders are in flight. Each is a single conditional UPDATE, so the database
row lock (PostgreSQL) or write lock (SQLite) serializes competing
reservations: two orders for the last unit cannot both succeed.

Neither commits. They run inside the caller's unit of work and commit or
roll back together with the order change that needed them.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import money_params, to_money, utcnow
from ..errors import Forbidden, OutOfStock, ProductNotFound, ValidationError
from ..publisher import INVENTORY_CHANNEL, publish_event
from .events import InventoryRestocked, ProductDeleted, ProductPriceChanged, ProductRegistered

logger = logging.getLogger(__name__)


async def reserve(session: AsyncSession, product_id: str, quantity: int) -> Decimal:
    """
    Take ``quantity`` units out of stock and return the unit price to snapshot.

    Raises ProductNotFound or OutOfStock; in both cases nothing changed.
    """
    result = await session.execute(
        text("""
            UPDATE products
            SET stock = stock - :qty, updated_at = :now
            WHERE id = :id AND stock >= :qty
        """),
        {"qty": quantity, "now": utcnow(), "id": product_id},
    )
    row = (
        await session.execute(
            text("SELECT price, stock FROM products WHERE id = :id"),
            {"id": product_id},
        )
    ).fetchone()

    if result.rowcount == 0:
        if row is None:
            raise ProductNotFound(product_id)
        raise OutOfStock(product_id, quantity, row.stock)
    return to_money(row.price)


async def release(session: AsyncSession, product_id: str, quantity: int) -> bool:
    """
    Put ``quantity`` units back into stock.

    A product deleted since the reservation is skipped rather than
    treated as an error, so refund flows are never blocked by catalog
    cleanup. Returns whether a row was updated.
    """
    result = await session.execute(
        text("""
            UPDATE products
            SET stock = stock + :qty, updated_at = :now
            WHERE id = :id
        """),
        {"qty": quantity, "now": utcnow(), "id": product_id},
    )
    if result.rowcount == 0:
        logger.warning("Release skipped, product %s no longer exists", product_id)
        return False
    return True


# ── Catalog maintenance (vendor side) ────────────


async def register_product(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    vendor_id: str,
    name: str,
    price: Decimal,
    stock: int,
) -> dict:
    errors = {}
    if not name.strip():
        errors["name"] = "must not be empty"
    if price < 0:
        errors["price"] = "must be >= 0"
    if stock < 0:
        errors["stock"] = "must be >= 0"
    if errors:
        raise ValidationError(errors)

    product_id = str(uuid4())
    now = utcnow()
    await session.execute(
        text("""
            INSERT INTO products (id, vendor_id, name, price, stock, created_at, updated_at)
            VALUES (:id, :vendor_id, :name, :price, :stock, :now, :now)
        """).bindparams(*money_params("price")),
        {
            "id": product_id,
            "vendor_id": vendor_id,
            "name": name,
            "price": price,
            "stock": stock,
            "now": now,
        },
    )
    await session.commit()

    await publish_event(redis, INVENTORY_CHANNEL, ProductRegistered(
        product_id=product_id,
        vendor_id=vendor_id,
        name=name,
        price=price,
        stock=stock,
        timestamp=datetime.now(timezone.utc),
    ))
    return {
        "id": product_id,
        "vendor_id": vendor_id,
        "name": name,
        "price": to_money(price),
        "stock": stock,
    }


async def _owned_product(session: AsyncSession, product_id: str, vendor_id: str | None):
    row = (
        await session.execute(
            text("SELECT vendor_id, price FROM products WHERE id = :id"),
            {"id": product_id},
        )
    ).fetchone()
    if row is None:
        raise ProductNotFound(product_id)
    # vendor_id None means an admin is acting
    if vendor_id is not None and row.vendor_id != vendor_id:
        raise Forbidden("Product belongs to another vendor", product_id=product_id)
    return row


async def change_price(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    product_id: str,
    new_price: Decimal,
    vendor_id: str | None = None,
) -> Decimal:
    if new_price < 0:
        raise ValidationError({"price": "must be >= 0"})
    row = await _owned_product(session, product_id, vendor_id)

    await session.execute(
        text("UPDATE products SET price = :price, updated_at = :now WHERE id = :id")
        .bindparams(*money_params("price")),
        {"price": new_price, "now": utcnow(), "id": product_id},
    )
    await session.commit()

    await publish_event(redis, INVENTORY_CHANNEL, ProductPriceChanged(
        product_id=product_id,
        old_price=to_money(row.price),
        new_price=new_price,
        timestamp=datetime.now(timezone.utc),
    ))
    return to_money(new_price)


async def restock(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    product_id: str,
    quantity: int,
    vendor_id: str | None = None,
) -> None:
    if quantity < 1:
        raise ValidationError({"quantity": "must be >= 1"})
    await _owned_product(session, product_id, vendor_id)
    await release(session, product_id, quantity)
    await session.commit()

    await publish_event(redis, INVENTORY_CHANNEL, InventoryRestocked(
        product_id=product_id,
        quantity=quantity,
        timestamp=datetime.now(timezone.utc),
    ))


async def delete_product(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    product_id: str,
    vendor_id: str | None = None,
) -> None:
    """
    Remove a product from the catalog.

    Orders already holding it are untouched: their snapshots keep price and
    quantity, and releasing their stock later is skipped by ``release``.
    """
    row = await _owned_product(session, product_id, vendor_id)
    await session.execute(text("DELETE FROM products WHERE id = :id"), {"id": product_id})
    await session.commit()
    logger.info("Product %s deleted", product_id)

    await publish_event(redis, INVENTORY_CHANNEL, ProductDeleted(
        product_id=product_id,
        vendor_id=row.vendor_id,
        timestamp=datetime.now(timezone.utc),
    ))
