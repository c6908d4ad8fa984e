"""Shared fixtures: a throwaway SQLite database per test, a mocked Redis
client and the fake payment gateway."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from marketplace import db, main
from marketplace.inventory import commands as inventory_commands
from marketplace.order import commands as order_commands
from marketplace.order.validation import LineItemInput
from marketplace.payment.gateway import reset_gateway, set_gateway
from marketplace.payment.gateway.fake_adapter import FakeGateway

ADDRESS = "House 12, Road 5, Dhanmondi, Dhaka"


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite in WAL mode with a real connection per session.

    Concurrent sessions interleave: reads never block and writers queue on
    the database write lock (up to the 30 s busy timeout), the way they
    queue on row locks in PostgreSQL. Stock checked by a read and then
    written back would oversell here.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _wal_mode(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    await db.init_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def redis():
    return AsyncMock()


@pytest.fixture
def gateway():
    gateway = FakeGateway()
    set_gateway(gateway)
    yield gateway
    reset_gateway()


@pytest.fixture
def make_product(session_factory):
    async def _make(price="100.00", stock=10, vendor_id="vendor-1", name="Widget"):
        async with session_factory() as session:
            product = await inventory_commands.register_product(
                session, None, vendor_id, name, Decimal(price), stock
            )
        return product["id"]

    return _make


@pytest.fixture
def stock_of(session_factory):
    async def _stock(product_id):
        async with session_factory() as session:
            result = await session.execute(
                text("SELECT stock FROM products WHERE id = :id"), {"id": product_id}
            )
            return result.scalar()

    return _stock


@pytest.fixture
def place(session_factory, redis):
    """Place an order from ``(product_id, quantity)`` pairs."""
    async def _place(*lines, customer_id="cust-1", address=ADDRESS):
        async with session_factory() as session:
            return await order_commands.place_order(
                session,
                redis,
                customer_id,
                [LineItemInput(product_id=pid, quantity=qty) for pid, qty in lines],
                address,
                phone="01711111111",
            )

    return _place


@pytest.fixture
def api_client(tmp_path, monkeypatch, gateway):
    """TestClient wired to its own database.

    TestClient runs the app on a separate event loop, so the engine uses
    NullPool and never hands a connection across loops.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool
    )
    asyncio.run(db.init_schema(engine))
    monkeypatch.setattr(db, "async_session", sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
    monkeypatch.setattr(main, "redis_pool", AsyncMock())
    yield TestClient(main.app)
    asyncio.run(engine.dispose())
