"""
Factory selecting the store variant for a purpose.

The tracking store shares the process Redis client. Durable stores are
built lazily, one per country, and cached so each country keeps one
connection pool for the life of the process.
"""

import logging
from typing import Dict, List, Optional

import redis.asyncio as redis

from .config import AppointmentConfig
from .durable_store import DurableStore
from .models import CountryISO
from .tracking_store import TrackingStore

logger = logging.getLogger(__name__)


class RepositoryFactory:
    """Builds and owns the stores for one process"""

    def __init__(
        self,
        config: AppointmentConfig,
        redis_client: redis.Redis,
        durable_stores: Optional[Dict[CountryISO, DurableStore]] = None,
    ):
        self.config = config
        self.redis = redis_client
        self._tracking: Optional[TrackingStore] = None
        self._durable: Dict[CountryISO, DurableStore] = dict(durable_stores or {})

    def create_tracking_store(self) -> TrackingStore:
        if self._tracking is None:
            self._tracking = TrackingStore(self.redis, key_prefix=self.config.key_prefix)
        return self._tracking

    def create_durable_store(self, country: CountryISO) -> DurableStore:
        """
        Durable store for a country.

        Raises:
            ValueError: country is not a supported CountryISO
        """
        country = CountryISO(country)
        store = self._durable.get(country)
        if store is None:
            store = DurableStore.from_url(
                country,
                self.config.database_url(country),
                pool_size=self.config.db_pool_size,
            )
            self._durable[country] = store
        return store

    def durable_stores(self) -> List[DurableStore]:
        """Durable stores opened so far"""
        return list(self._durable.values())

    async def close(self):
        """Dispose every durable engine; the Redis client is owned by the caller"""
        for country, store in list(self._durable.items()):
            try:
                await store.close()
            except Exception as e:
                logger.error(f"Failed to close durable store {country.value}: {e}")
        self._durable.clear()
