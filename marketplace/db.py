"""
Marketplace: database access

Engine and session factory shared by every command and query, plus the
schema. Queries are written as plain SQL through ``text()`` and must run
on both PostgreSQL (asyncpg) and SQLite (aiosqlite, used by the tests).
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Numeric, bindparam, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .config import DATABASE_URL

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

MONEY = Numeric(12, 2)
CENT = Decimal("0.01")

# Timestamps are stored as ISO-8601 UTC strings so that ordering and
# range comparisons behave identically on both backends.
SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS products (
        id VARCHAR(36) PRIMARY KEY,
        vendor_id VARCHAR(64) NOT NULL,
        name VARCHAR(255) NOT NULL,
        price NUMERIC(12, 2) NOT NULL CHECK (price >= 0),
        stock INTEGER NOT NULL DEFAULT 0 CHECK (stock >= 0),
        created_at VARCHAR(40) NOT NULL,
        updated_at VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id VARCHAR(36) PRIMARY KEY,
        customer_id VARCHAR(64) NOT NULL,
        total_amount NUMERIC(12, 2) NOT NULL,
        shipping_address TEXT NOT NULL,
        phone VARCHAR(32),
        transaction_id VARCHAR(64) NOT NULL UNIQUE,
        payment_status VARCHAR(16) NOT NULL,
        order_status VARCHAR(32) NOT NULL,
        failure_reason VARCHAR(64),
        created_at VARCHAR(40) NOT NULL,
        updated_at VARCHAR(40) NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_orders_customer ON orders (customer_id, created_at)",
    "CREATE INDEX IF NOT EXISTS ix_orders_payment ON orders (payment_status, created_at)",
    """
    CREATE TABLE IF NOT EXISTS order_items (
        order_id VARCHAR(36) NOT NULL REFERENCES orders (id),
        line_no INTEGER NOT NULL,
        product_id VARCHAR(36) NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity >= 1),
        price_at_purchase NUMERIC(12, 2) NOT NULL,
        PRIMARY KEY (order_id, line_no)
    )
    """,
    # (aggregate_id, version) is the optimistic-locking key
    """
    CREATE TABLE IF NOT EXISTS event_store (
        aggregate_id VARCHAR(36) NOT NULL,
        aggregate_type VARCHAR(32) NOT NULL,
        event_type VARCHAR(64) NOT NULL,
        event_data TEXT NOT NULL,
        version INTEGER NOT NULL,
        created_at VARCHAR(40) NOT NULL,
        PRIMARY KEY (aggregate_id, version)
    )
    """,
]


async def init_schema(bind: AsyncEngine) -> None:
    """Create tables that do not exist yet."""
    async with bind.begin() as conn:
        for statement in SCHEMA:
            await conn.execute(text(statement))


def iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utcnow() -> str:
    return iso(datetime.now(timezone.utc))


def money_params(*names: str):
    """Typed bind parameters so Decimals survive drivers without native NUMERIC."""
    return [bindparam(name, type_=MONEY) for name in names]


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT)
