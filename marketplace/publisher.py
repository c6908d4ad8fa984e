"""
Marketplace: Redis Pub/Sub publisher

Events are published only after the transaction that produced them has
committed. Pub/Sub is fire-and-forget, so a Redis outage is logged and
does not fail the request: the database already holds the truth and the
event store holds the full trail.
"""

import json
import logging

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

ORDER_CHANNEL = "order_events"
INVENTORY_CHANNEL = "inventory_events"


async def publish(
    redis: aioredis.Redis | None,
    channel: str,
    event_type: str,
    data: dict,
) -> None:
    if redis is None:
        return
    try:
        await redis.publish(
            channel,
            json.dumps({"event_type": event_type, "data": data}, default=str),
        )
    except RedisError:
        logger.exception("Failed to publish %s on %s", event_type, channel)


async def publish_event(
    redis: aioredis.Redis | None,
    channel: str,
    event: BaseModel,
) -> None:
    """Publish a pydantic event under its class name."""
    await publish(redis, channel, type(event).__name__, event.model_dump(mode="json"))
