"""Redis pub/sub — mirrors committed tallies to other processes.

Redis pub/sub is fire-and-forget. If no one is listening, the message
is lost. That's fine: the SSE clients of this process are fed by the hub
directly, and any other consumer can always read the tally from the API.

Channel naming: stagevote:tallies:{performance_id}
"""

import json
import uuid
from typing import Any, Optional

import redis.asyncio as aioredis

from stagevote.config import settings

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    _redis = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Verify connection
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


def tally_channel(performance_id: uuid.UUID) -> str:
    return f"stagevote:tallies:{performance_id}"


async def publish_tally(performance_id: uuid.UUID, data: dict[str, Any]) -> None:
    """Publish a committed tally to the performance's Redis channel."""
    r = get_redis()
    payload = json.dumps({"type": "tally.updated", **data})
    await r.publish(tally_channel(performance_id), payload)
