"""
Marketplace: stale order sweeper

A customer who abandons the hosted checkout never triggers a callback,
which would leave the order Pending and its stock reserved forever. The
sweeper expires Pending orders older than PENDING_ORDER_TTL_MINUTES
through the same settlement used by provider callbacks, so a late
callback racing the sweep is still applied at most once.
"""

import asyncio
import logging
from contextlib import suppress
from datetime import datetime, timedelta, timezone

import redis.asyncio as aioredis
from sqlalchemy.orm import sessionmaker

from .config import PENDING_ORDER_TTL_MINUTES, SWEEP_INTERVAL_SECONDS
from .db import iso
from .order import queries as order_queries
from .order.aggregate import FailureReason, PaymentStatus
from .payment.reconciliation import settle

logger = logging.getLogger(__name__)


async def expire_stale_orders(
    session_factory: sessionmaker,
    redis: aioredis.Redis | None,
    ttl_minutes: int = PENDING_ORDER_TTL_MINUTES,
    now: datetime | None = None,
) -> int:
    """Fail every Pending order created more than ``ttl_minutes`` ago. Returns how many."""
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(minutes=ttl_minutes)
    async with session_factory() as session:
        stale = await order_queries.list_stale_pending(session, iso(cutoff))

    expired = 0
    for transaction_id in stale:
        async with session_factory() as session:
            settlement = await settle(
                session, redis, transaction_id, PaymentStatus.FAILED, FailureReason.EXPIRED
            )
        if settlement.applied:
            expired += 1

    if expired:
        logger.info("Expired %d stale pending order(s)", expired)
    return expired


async def run_sweeper(
    session_factory: sessionmaker,
    redis: aioredis.Redis | None,
    shutdown_event: asyncio.Event,
    interval: float = SWEEP_INTERVAL_SECONDS,
) -> None:
    """Sweep every ``interval`` seconds until ``shutdown_event`` is set."""
    logger.info("Pending order sweeper started (every %ss)", interval)
    while not shutdown_event.is_set():
        try:
            await expire_stale_orders(session_factory, redis)
        except Exception:
            logger.exception("Pending order sweep failed")
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
    logger.info("Pending order sweeper stopped")
