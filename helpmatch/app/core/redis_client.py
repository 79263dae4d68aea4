"""
Redis client for match events.

Confirmed and cancelled matches are published as JSON on a pub/sub channel
(``settings.match_events_channel``) for real-time consumers. Redis is never
the source of truth for match state.
"""

import json
from typing import Any, Dict

import redis.asyncio as redis
from redis.exceptions import RedisError

from helpmatch.app.core.config import settings


redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """FastAPI dependency returning the shared client."""
    return redis_client


async def publish_match_event(client, channel: str, payload: Dict[str, Any]) -> int:
    """
    Publish one match event.

    Returns:
        Number of subscribers that received it
    """
    return await client.publish(channel, json.dumps(payload, default=str, sort_keys=True))


async def ping_redis() -> bool:
    """True when Redis answers a PING; used by ``/health``."""
    try:
        return bool(await redis_client.ping())
    except (RedisError, OSError):
        return False
