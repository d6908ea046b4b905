"""
Routed event bus over Redis Streams.

Every entry is a BusEvent whose routing attributes (countryISO) travel next
to the payload. One stream can therefore feed several consumer groups, each
subscribing to the attribute values it owns, the way topic subscribers use
filter policies. Failed entries are parked on a dead-letter stream,
"<stream>:dlq" unless configured otherwise.
"""

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple

import redis.asyncio as redis

from .events import BusEvent

logger = logging.getLogger(__name__)

DLQ_SUFFIX = ":dlq"

StreamEntry = Tuple[str, Dict[Any, Any]]


def dead_letter_stream(stream_key: str) -> str:
    return f"{stream_key}{DLQ_SUFFIX}"


def routed_group(base: str, routing_value: str) -> str:
    """Consumer group owning one routing value, e.g. appointment-processor-pe"""
    return f"{base}-{routing_value.lower()}"


class EventBroker:
    """
    Publishes routed saga events and drives consumer groups.

    Args:
        redis_client: Shared async Redis client
        source: Written into the envelope of every event this broker publishes
        max_len: Approximate cap applied to a stream on every append
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        source: str = "appointment-service",
        max_len: int = 10000,
    ):
        self.redis = redis_client
        self.source = source
        self.max_len = max_len

    async def publish(
        self,
        stream_key: str,
        event_type: str,
        aggregate_id: str,
        payload: Dict[str, Any],
        attributes: Optional[Mapping[str, str]] = None,
    ) -> str:
        """
        Wrap a payload in a BusEvent tagged with routing attributes and append it.

        Returns:
            Stream entry id
        """
        event = BusEvent(
            event_type=event_type,
            aggregate_id=aggregate_id,
            payload=payload,
            source=self.source,
            attributes=dict(attributes or {}),
        )
        return await self.append(stream_key, event)

    async def append(self, stream_key: str, event: BusEvent) -> str:
        """Append an existing envelope unchanged (redeliveries, dead letters)"""
        try:
            return await self.redis.xadd(
                stream_key, event.to_redis_dict(), maxlen=self.max_len, approximate=True
            )
        except Exception as e:
            logger.error(f"Could not append {event.event_type} for {event.aggregate_id} to {stream_key}: {e}")
            raise

    async def dead_letter(
        self, dlq_stream_key: str, event: BusEvent, reason: str, **context: Any
    ) -> str:
        """Park a failed event; reason and context land in its metadata"""
        event.metadata.update(context)
        event.metadata["dlq_reason"] = reason
        event.metadata["dlq_timestamp"] = time.time()
        return await self.append(dlq_stream_key, event)

    async def ensure_group(self, stream_key: str, group_name: str) -> bool:
        """
        Create a consumer group positioned at the start of the stream.

        Starting at "0" delivers entries appended before the group existed.
        The stream is created when missing.

        Returns:
            False when the group already exists
        """
        try:
            await self.redis.xgroup_create(stream_key, group_name, id="0", mkstream=True)
        except redis.ResponseError as e:
            if str(e).startswith("BUSYGROUP"):
                return False
            raise
        logger.info(f"Created consumer group {group_name} on {stream_key}")
        return True

    async def read(
        self,
        stream_key: str,
        group_name: str,
        consumer_name: str,
        count: int = 10,
        block_ms: int = 1000,
    ) -> List[StreamEntry]:
        """Entries never delivered to the group, as (entry_id, fields)"""
        response = await self.redis.xreadgroup(
            groupname=group_name,
            consumername=consumer_name,
            streams={stream_key: ">"},
            count=count,
            block=block_ms,
        )
        return [entry for _stream, entries in response or [] for entry in entries]

    async def ack(self, stream_key: str, group_name: str, *entry_ids: str) -> int:
        if not entry_ids:
            return 0
        return await self.redis.xack(stream_key, group_name, *entry_ids)

    async def reclaim(
        self,
        stream_key: str,
        group_name: str,
        consumer_name: str,
        min_idle_ms: int = 60000,
        count: int = 100,
    ) -> List[StreamEntry]:
        """Take over entries another consumer left unacknowledged (XAUTOCLAIM)"""
        response = await self.redis.xautoclaim(
            stream_key, group_name, consumer_name, min_idle_ms, count=count
        )
        # Redis 7 appends the deleted ids; the claimed entries stay second
        return list(response[1])
