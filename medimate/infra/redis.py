"""
Redis connection for conversation context.

Every inbound message reads and writes its sender's context, so a dead
Redis must not cost a connect timeout per message. After a failed connect
the client stays "down" for a cooldown period and callers get None
immediately, falling back to process memory.
"""

import logging
import time
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, TimeoutError, RedisError

from medimate.config import settings

logger = logging.getLogger(__name__)

# Key namespace (bump the version when the stored context format changes)
APP_PREFIX = "medimate:v1:"

# Seconds to wait before trying to reconnect after a failure
RECONNECT_COOLDOWN_SECONDS = 30.0


class RedisClient:
    """Process-wide Redis connection with a reconnect cooldown."""

    _client: Optional[Redis] = None
    _connected: bool = False
    _down_until: float = 0.0

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Get the connected client.

        Returns:
            Redis client, or None while Redis is unreachable
        """
        if cls._client is not None and cls._connected:
            return cls._client

        if time.monotonic() < cls._down_until:
            return None

        client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=2.0,
            socket_timeout=2.0,
            retry_on_timeout=True,
            retry=Retry(ExponentialBackoff(cap=1.0), retries=2),
        )
        try:
            await client.ping()
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.error(
                f"Redis unavailable ({e}); using in-memory context for "
                f"{RECONNECT_COOLDOWN_SECONDS:.0f}s"
            )
            cls._down_until = time.monotonic() + RECONNECT_COOLDOWN_SECONDS
            cls._client = None
            cls._connected = False
            await client.aclose()
            return None

        cls._client = client
        cls._connected = True
        logger.info("Redis connection established")
        return client

    @classmethod
    async def close(cls) -> None:
        """Close the connection pool."""
        if cls._client is None:
            return
        try:
            await cls._client.aclose()
            logger.info("Redis connection closed")
        except RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")
        finally:
            cls._client = None
            cls._connected = False

    @classmethod
    def mark_disconnected(cls) -> None:
        """Called after a failed command: start the cooldown."""
        cls._connected = False
        cls._down_until = time.monotonic() + RECONNECT_COOLDOWN_SECONDS


async def get_redis() -> Optional[Redis]:
    """Shared Redis client, or None while Redis is unavailable."""
    return await RedisClient.get_client()


async def check_redis_health() -> bool:
    """Ping Redis for the readiness probe."""
    client = await get_redis()
    if client is None:
        return False
    try:
        await client.ping()
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        RedisClient.mark_disconnected()
        return False
    return True
