"""
Async Redis Client Factory for the Appointment Saga

Provides connection pooling and helper functions for Redis connectivity.
Redis backs three things here: the tracking store, the fan-out stream and the
confirmation stream.

Configuration is read from environment variables (no load_dotenv() calls):
- APPOINTMENT_REDIS_HOST: Redis server host (default: localhost)
- APPOINTMENT_REDIS_PORT: Redis server port (default: 6379)
- APPOINTMENT_REDIS_DB: Redis database number (default: 0)
- APPOINTMENT_REDIS_PASSWORD: Redis password (optional, default: None)
- APPOINTMENT_REDIS_MAX_CONNECTIONS: Connection pool size (default: 50)
- APPOINTMENT_REDIS_SOCKET_TIMEOUT: Socket timeout in seconds (default: 5.0)
- APPOINTMENT_REDIS_SOCKET_CONNECT_TIMEOUT: Connect timeout in seconds (default: 5.0)
- APPOINTMENT_REDIS_URL / REDIS_URL: Connection string (overrides individual settings)

Usage:
    config = RedisConfig.from_env()
    redis = await create_redis_client(config)
    await redis.set("key", "value", ex=3600)
    await close_redis_client(redis)

Clients are created explicitly and handed to their owners; nothing is cached
at module level.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional, Dict, Any

import redis.asyncio as redis

logger = logging.getLogger(__name__)


@dataclass
class RedisConfig:
    """Redis connection settings"""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    max_connections: int = 50
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0
    url: Optional[str] = None

    @staticmethod
    def from_env() -> 'RedisConfig':
        """Load configuration from environment variables"""
        url = os.getenv("APPOINTMENT_REDIS_URL") or os.getenv("REDIS_URL")
        if url:
            logger.info("Loading Redis config from REDIS_URL")

        return RedisConfig(
            host=os.getenv("APPOINTMENT_REDIS_HOST", "localhost"),
            port=int(os.getenv("APPOINTMENT_REDIS_PORT", "6379")),
            db=int(os.getenv("APPOINTMENT_REDIS_DB", "0")),
            password=os.getenv("APPOINTMENT_REDIS_PASSWORD") or None,
            max_connections=int(os.getenv("APPOINTMENT_REDIS_MAX_CONNECTIONS", "50")),
            socket_timeout=float(os.getenv("APPOINTMENT_REDIS_SOCKET_TIMEOUT", "5.0")),
            socket_connect_timeout=float(os.getenv("APPOINTMENT_REDIS_SOCKET_CONNECT_TIMEOUT", "5.0")),
            url=url,
        )

    def get_redis_url(self) -> str:
        """Generate Redis connection URL"""
        if self.url:
            return self.url

        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


async def create_redis_client(
    config: RedisConfig,
    max_retries: int = 3,
    retry_delays: tuple = (1.0, 2.0, 4.0)
) -> redis.Redis:
    """
    Create a pooled async Redis client and verify it with PING.

    Retries the initial PING with exponential backoff.

    Raises:
        redis.exceptions.ConnectionError: If connection fails after retries
    """
    logger.info(
        f"Creating Redis connection pool: {config.host}:{config.port}/{config.db} "
        f"(max_connections={config.max_connections})"
    )

    # decode_responses=True: tracking records and stream fields are JSON text
    pool = redis.ConnectionPool.from_url(
        config.get_redis_url(),
        max_connections=config.max_connections,
        socket_timeout=config.socket_timeout,
        socket_connect_timeout=config.socket_connect_timeout,
        decode_responses=True,
    )
    client = redis.Redis(connection_pool=pool)

    for attempt in range(max_retries):
        try:
            await client.ping()
            logger.info("Redis client connected successfully")
            return client
        except redis.ConnectionError as e:
            if attempt < max_retries - 1:
                delay = retry_delays[min(attempt, len(retry_delays) - 1)]
                logger.warning(
                    f"Redis connection attempt {attempt + 1}/{max_retries} failed: {e}. "
                    f"Retrying in {delay}s..."
                )
                await asyncio.sleep(delay)
            else:
                logger.error(f"Redis connection failed after {max_retries} attempts: {e}")
                await pool.disconnect()
                raise

    return client


async def ping_redis(client: redis.Redis) -> bool:
    """
    Test Redis connectivity with simple PING command.

    Returns:
        bool: True if PING successful, False otherwise
    """
    try:
        result = await client.ping()
        return result is True
    except Exception as e:
        logger.error(f"Redis PING failed: {e}")
        return False


async def get_redis_info(client: redis.Redis) -> Dict[str, Any]:
    """
    Get Redis server information for monitoring.

    Returns:
        dict: Redis server info (version, uptime, memory, clients)
    """
    try:
        info = await client.info()
        return {
            "redis_version": info.get("redis_version", "unknown"),
            "uptime_seconds": info.get("uptime_in_seconds", 0),
            "connected_clients": info.get("connected_clients", 0),
            "used_memory_human": info.get("used_memory_human", "unknown"),
        }
    except Exception as e:
        logger.error(f"Failed to get Redis info: {e}")
        return {"error": str(e)}


async def close_redis_client(client: Optional[redis.Redis]):
    """
    Gracefully close a Redis client and its connection pool.

    Should be called during application shutdown.
    """
    if client is None:
        return
    try:
        await client.aclose()
        await client.connection_pool.disconnect()
        logger.info("Redis client closed")
    except Exception as e:
        logger.error(f"Error closing Redis client: {e}")
