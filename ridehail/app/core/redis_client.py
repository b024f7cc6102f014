"""
Redis client for cross-instance notification fan-out.

Every API instance publishes matching notifications to one pub/sub
channel and listens on it, so a rider connected to instance A still hears
about a driver who accepted through instance B.
"""

import json
from typing import Any, Dict

import redis.asyncio as redis
from ridehail.app.core.config import settings


redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """FastAPI dependency returning the shared client."""
    return redis_client


async def publish_json(channel: str, payload: Dict[str, Any]) -> int:
    """
    Publish a JSON document on a pub/sub channel.

    Returns:
        Number of subscribers that received the message
    """
    return await redis_client.publish(channel, json.dumps(payload, default=str))


async def ping_redis() -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except Exception:
        return False


async def close_redis() -> None:
    await redis_client.aclose()
