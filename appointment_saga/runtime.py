"""
Process wiring shared by the API and the workers.

build_runtime() turns an AppointmentConfig into connected collaborators;
SagaRuntime.close() releases them in reverse order.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis

from saga_shared import EventBroker, RedisConfig, close_redis_client, create_redis_client

from .config import AppointmentConfig
from .publishers import ConfirmationPublisher, FanoutPublisher
from .repository_factory import RepositoryFactory
from .service import AppointmentService

logger = logging.getLogger(__name__)


@dataclass
class SagaRuntime:
    config: AppointmentConfig
    redis: redis.Redis
    broker: EventBroker
    repositories: RepositoryFactory
    service: AppointmentService
    owns_redis: bool = True

    async def close(self):
        await self.repositories.close()
        if self.owns_redis:
            await close_redis_client(self.redis)
        logger.info("Saga runtime closed")


def build_service(
    config: AppointmentConfig,
    redis_client: redis.Redis,
    repositories: Optional[RepositoryFactory] = None,
) -> AppointmentService:
    """Service over an existing Redis client"""
    broker = EventBroker(redis_client)
    return AppointmentService(
        repositories=repositories or RepositoryFactory(config, redis_client),
        fanout=FanoutPublisher(broker, config.fanout_stream),
        confirmations=ConfirmationPublisher(broker, config.confirmation_stream),
        config=config,
    )


async def build_runtime(
    config: AppointmentConfig, redis_client: Optional[redis.Redis] = None
) -> SagaRuntime:
    """
    Connect Redis (unless a client is given) and assemble the service.

    Raises:
        redis.exceptions.ConnectionError: Redis unreachable after retries
    """
    owns_redis = redis_client is None
    if owns_redis:
        redis_config = RedisConfig.from_env()
        redis_config.url = config.redis_url
        redis_client = await create_redis_client(redis_config)

    repositories = RepositoryFactory(config, redis_client)
    service = build_service(config, redis_client, repositories)
    return SagaRuntime(
        config=config,
        redis=redis_client,
        broker=service.fanout.broker,
        repositories=repositories,
        service=service,
        owns_redis=owns_redis,
    )
