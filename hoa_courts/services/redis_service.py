"""
Redis service providing a centralized Redis client singleton.

Redis backs the shared rate-limit counters so limits hold across multiple
API instances. Connections are pooled by the client, so one process-wide
client is enough.

Usage:
    from hoa_courts.services.redis_service import get_redis_client

    async def my_function():
        redis = await get_redis_client()
        if redis:
            await redis.incr("key")
"""

import logging
import os
from typing import Optional

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

# Redis configuration from environment
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB = int(os.getenv("REDIS_DB", "0"))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

# Connection settings
SOCKET_CONNECT_TIMEOUT = 2
SOCKET_TIMEOUT = 5

# Global Redis client (singleton)
_redis_client: Optional[Redis] = None


async def get_redis_client() -> Optional[Redis]:
    """
    Get or create the Redis client singleton.

    Returns:
        Redis client, or None if Redis cannot be reached
    """
    global _redis_client

    if _redis_client is not None:
        try:
            await _redis_client.ping()
            return _redis_client
        except Exception as e:
            logger.warning(f"Redis connection lost, recreating client: {e}")
            await close_redis_connection()

    client_kwargs = {
        "host": REDIS_HOST,
        "port": REDIS_PORT,
        "db": REDIS_DB,
        "decode_responses": True,
        "socket_connect_timeout": SOCKET_CONNECT_TIMEOUT,
        "socket_timeout": SOCKET_TIMEOUT,
    }
    if REDIS_PASSWORD:
        client_kwargs["password"] = REDIS_PASSWORD

    client = Redis(**client_kwargs)
    try:
        await client.ping()
    except Exception as e:
        logger.warning(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}: {e}")
        try:
            await client.aclose()
        except Exception:
            pass
        return None

    _redis_client = client
    logger.info(f"Connected to Redis at {REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}")
    return _redis_client


async def close_redis_connection() -> None:
    """Close the Redis connection (called from the app lifespan on shutdown)."""
    global _redis_client

    if _redis_client is not None:
        try:
            await _redis_client.aclose()
            logger.info("Closed Redis connection")
        except Exception as e:
            logger.warning(f"Error closing Redis connection: {e}")
        finally:
            _redis_client = None


async def incr_with_expiry(key: str, expiry_seconds: int) -> Optional[int]:
    """
    Increment a counter, starting its TTL when the key is first created.

    Returns:
        The counter value after incrementing, or None if Redis is unavailable
    """
    client = await get_redis_client()
    if client is None:
        return None
    async with client.pipeline(transaction=True) as pipe:
        pipe.incr(key)
        pipe.expire(key, expiry_seconds, nx=True)
        count, _ = await pipe.execute()
    return int(count)
