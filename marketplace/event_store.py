"""
Marketplace: event store

Append-only log of everything that happened to an order. The current
state lives in the ``orders`` table; the log is the audit trail and can
rebuild any order through ``OrderAggregate.from_events``.

The (aggregate_id, version) primary key gives optimistic locking: two
writers appending the same version collide on the constraint and the
loser's transaction rolls back.
"""

import json

from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .db import iso


async def append_event(
    session: AsyncSession,
    aggregate_id: str,
    event: BaseModel,
    after_version: int,
    aggregate_type: str = "Order",
) -> int:
    """
    Record ``event`` as version ``after_version + 1`` of its aggregate.

    The event type is the model's class name and ``created_at`` is the
    event's own ``timestamp``. Does not commit: the row lands in the
    caller's unit of work together with the state change it describes.
    """
    version = after_version + 1
    row = {
        "aggregate_id": aggregate_id,
        "aggregate_type": aggregate_type,
        "event_type": type(event).__name__,
        "event_data": json.dumps(event.model_dump(mode="json")),
        "version": version,
        "created_at": iso(event.timestamp),
    }
    await session.execute(
        text(f"INSERT INTO event_store ({', '.join(row)}) VALUES ({', '.join(':' + k for k in row)})"),
        row,
    )
    return version


async def current_version(session: AsyncSession, aggregate_id: str) -> int:
    result = await session.execute(
        text("SELECT MAX(version) AS version FROM event_store WHERE aggregate_id = :agg_id"),
        {"agg_id": aggregate_id},
    )
    return result.scalar() or 0


async def load_events(session: AsyncSession, aggregate_id: str) -> list[dict]:
    """All events of one aggregate in version order, ready for replay."""
    result = await session.execute(
        text("""
            SELECT event_type, event_data, version, created_at
            FROM event_store
            WHERE aggregate_id = :agg_id
            ORDER BY version ASC
        """),
        {"agg_id": aggregate_id},
    )
    return [
        {
            "event_type": row.event_type,
            "event_data": json.loads(row.event_data),
            "version": row.version,
            "created_at": row.created_at,
        }
        for row in result.fetchall()
    ]


async def load_all_events(session: AsyncSession, limit: int = 500) -> list[dict]:
    result = await session.execute(
        text("""
            SELECT aggregate_id, aggregate_type, event_type, event_data, version, created_at
            FROM event_store
            ORDER BY created_at DESC, version DESC
            LIMIT :limit
        """),
        {"limit": limit},
    )
    return [
        {
            "aggregate_id": row.aggregate_id,
            "aggregate_type": row.aggregate_type,
            "event_type": row.event_type,
            "event_data": json.loads(row.event_data),
            "version": row.version,
            "created_at": row.created_at,
        }
        for row in result.fetchall()
    ]
