"""
Inventory Ledger: read side
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import to_money


def _product_row(row) -> dict:
    return {
        "id": row.id,
        "vendor_id": row.vendor_id,
        "name": row.name,
        "price": to_money(row.price),
        "stock": row.stock,
        "updated_at": row.updated_at,
    }


async def get_product(session: AsyncSession, product_id: str) -> dict | None:
    result = await session.execute(
        text("SELECT * FROM products WHERE id = :id"),
        {"id": product_id},
    )
    row = result.fetchone()
    if not row:
        return None
    return _product_row(row)


async def list_products(session: AsyncSession, vendor_id: str | None = None) -> list[dict]:
    if vendor_id is None:
        result = await session.execute(text("SELECT * FROM products ORDER BY name"))
    else:
        result = await session.execute(
            text("SELECT * FROM products WHERE vendor_id = :vendor_id ORDER BY name"),
            {"vendor_id": vendor_id},
        )
    return [_product_row(row) for row in result.fetchall()]
