"""
Order Tracking — Shared Redis connection for the realtime relay
"""
import asyncio

import redis.asyncio as aioredis
from order_tracking.core.config import get_settings

settings = get_settings()
_redis_client: aioredis.Redis | None = None


def get_redis() -> aioredis.Redis:
    """Process-wide client. The relay's subscription rides on it, so idle
    pub/sub connections are health-checked instead of silently dropping."""
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.HEALTH_CHECK_TIMEOUT,
            health_check_interval=settings.WS_PING_INTERVAL,
        )
    return _redis_client


async def ping_redis(timeout: float) -> None:
    await asyncio.wait_for(get_redis().ping(), timeout=timeout)


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        client, _redis_client = _redis_client, None
        await client.aclose()
