"""
Consumer-group subscriber base for the saga streams.

A subscription is one consumer group on one stream plus a routing filter:
the group keeps entries whose event type and attributes match its
ConsumerConfig and acknowledges the rest unprocessed. This is how every
country group shares the single fan-out stream.

What happens to an entry depends on what process_event returns:
    SUCCESS  acknowledged
    RETRY    re-appended with metadata["retry_count"] + 1 after a capped
             exponential backoff; dead-lettered once max_retries is spent
    FAIL     dead-lettered at once

The retry count rides in the envelope because a redelivery is a new entry
with a new id. Entries left pending by a crashed consumer are picked up by
the reclaim loop.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from redis.asyncio import Redis

from .event_broker import EventBroker, dead_letter_stream
from .events import BusEvent, EventTypes
from .observability import record_event_error, record_event_processed

logger = logging.getLogger(__name__)


class ProcessingResult(Enum):
    SUCCESS = "success"
    RETRY = "retry"
    FAIL = "fail"


@dataclass
class ConsumerConfig:
    """
    Subscription settings.

    event_types and routing narrow what the group processes; empty means
    everything on the stream. dlq_stream_key defaults to "<stream_key>:dlq".
    """
    stream_key: str
    group_name: str
    consumer_name: str
    event_types: Tuple[str, ...] = ()
    routing: Dict[str, str] = field(default_factory=dict)
    max_retries: int = 3
    initial_backoff_ms: int = 100
    max_backoff_ms: int = 5000
    backoff_multiplier: float = 2.0
    batch_size: int = 10
    block_ms: int = 1000
    dlq_stream_key: Optional[str] = None
    claim_idle_ms: int = 60000
    claim_batch_size: int = 100
    claim_interval_s: float = 30.0

    def __post_init__(self):
        if not self.dlq_stream_key:
            self.dlq_stream_key = dead_letter_stream(self.stream_key)

    def accepts(self, event: BusEvent) -> bool:
        if self.event_types and event.event_type not in self.event_types:
            return False
        return all(event.attributes.get(name) == value for name, value in self.routing.items())


@dataclass
class ConsumerMetrics:
    events_processed: int = 0
    events_succeeded: int = 0
    events_retried: int = 0
    events_failed: int = 0
    events_sent_to_dlq: int = 0
    events_filtered: int = 0
    events_claimed: int = 0
    processing_errors: int = 0
    last_event_time: float = 0.0
    total_processing_time_ms: float = 0.0
    started_at: float = field(default_factory=time.time)

    def avg_processing_time_ms(self) -> float:
        if not self.events_processed:
            return 0.0
        return self.total_processing_time_ms / self.events_processed

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["avg_processing_time_ms"] = self.avg_processing_time_ms()
        data["uptime_seconds"] = time.time() - data.pop("started_at")
        return data


class EventConsumer(ABC):
    """
    Base class for the saga's stream subscribers.

    Subclasses implement process_event; filter_event defaults to the
    config's event types and routing attributes.
    """

    def __init__(self, redis_client: Redis, broker: EventBroker, config: ConsumerConfig):
        self.redis = redis_client
        self.broker = broker
        self.config = config
        self.metrics = ConsumerMetrics()
        self._running = False
        self._tasks: List[asyncio.Task] = []

        logger.info(
            f"{config.consumer_name}: group {config.group_name} on {config.stream_key}, "
            f"routing {config.routing or 'all'}, dead letters to {config.dlq_stream_key}"
        )

    @abstractmethod
    async def process_event(self, event: BusEvent) -> ProcessingResult:
        """Handle one accepted event"""

    def filter_event(self, event: BusEvent) -> bool:
        """False acknowledges the entry without processing it"""
        return self.config.accepts(event)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        if self._running:
            logger.warning(f"{self.config.consumer_name} already running")
            return

        await self.broker.ensure_group(self.config.stream_key, self.config.group_name)
        self._running = True
        name = self.config.consumer_name
        self._tasks = [
            asyncio.create_task(self._poll(), name=f"{name}:poll"),
            asyncio.create_task(self._reclaim_idle(), name=f"{name}:reclaim"),
        ]
        logger.info(f"{name} started")

    async def stop(self):
        if not self._running:
            return

        self._running = False
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"{self.config.consumer_name} stopped: {self.metrics.to_dict()}")

    def get_metrics(self) -> Dict[str, Any]:
        return self.metrics.to_dict()

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def _poll(self):
        cfg = self.config
        while self._running:
            try:
                entries = await self.broker.read(
                    cfg.stream_key, cfg.group_name, cfg.consumer_name,
                    count=cfg.batch_size, block_ms=cfg.block_ms,
                )
            except Exception as e:
                self.metrics.processing_errors += 1
                logger.error(f"{cfg.consumer_name} read from {cfg.stream_key} failed: {e}")
                await asyncio.sleep(1.0)
                continue

            for entry_id, fields in entries:
                await self._process_message(entry_id, fields)

    async def _reclaim_idle(self):
        cfg = self.config
        while self._running:
            await asyncio.sleep(cfg.claim_interval_s)
            try:
                entries = await self.broker.reclaim(
                    cfg.stream_key, cfg.group_name, cfg.consumer_name,
                    min_idle_ms=cfg.claim_idle_ms, count=cfg.claim_batch_size,
                )
            except Exception as e:
                logger.error(f"{cfg.consumer_name} reclaim on {cfg.stream_key} failed: {e}")
                continue

            if entries:
                self.metrics.events_claimed += len(entries)
                logger.info(f"{cfg.consumer_name} took over {len(entries)} idle entries")
            for entry_id, fields in entries:
                await self._process_message(entry_id, fields)

    # ------------------------------------------------------------------
    # One entry
    # ------------------------------------------------------------------

    async def _process_message(self, entry_id: str, fields: Dict[Any, Any]):
        started = time.perf_counter()
        try:
            event = BusEvent.from_redis_dict(fields)
        except (ValueError, TypeError) as e:
            logger.error(f"Entry {entry_id} on {self.config.stream_key} is not a bus event: {e}")
            await self._quarantine(entry_id, fields, str(e))
            return

        if not self.filter_event(event):
            self.metrics.events_filtered += 1
            await self._ack(entry_id)
            return

        outcome = await self._run(entry_id, event)
        elapsed = time.perf_counter() - started
        self.metrics.total_processing_time_ms += elapsed * 1000
        record_event_processed(self.config.group_name, event.event_type, outcome.value, elapsed)

        if outcome is ProcessingResult.SUCCESS:
            self.metrics.events_succeeded += 1
            await self._ack(entry_id)
        elif outcome is ProcessingResult.RETRY:
            await self._redeliver(entry_id, event)
        else:
            await self._dead_letter(entry_id, event, "processing_failed")

    async def _run(self, entry_id: str, event: BusEvent) -> ProcessingResult:
        self.metrics.events_processed += 1
        self.metrics.last_event_time = time.time()
        try:
            return await self.process_event(event)
        except Exception as e:
            self.metrics.processing_errors += 1
            record_event_error(self.config.group_name, event.event_type, type(e).__name__)
            logger.error(f"{self.config.consumer_name} raised on {entry_id} ({event.event_type}): {e}")
            return ProcessingResult.RETRY

    def _backoff_ms(self, attempt: int) -> float:
        cfg = self.config
        delay = cfg.initial_backoff_ms * cfg.backoff_multiplier ** (attempt - 1)
        return min(delay, cfg.max_backoff_ms)

    async def _redeliver(self, entry_id: str, event: BusEvent):
        cfg = self.config
        attempt = int(event.metadata.get("retry_count", 0)) + 1
        if attempt > cfg.max_retries:
            logger.warning(f"Entry {entry_id} still failing after {cfg.max_retries} retries")
            await self._dead_letter(entry_id, event, "max_retries_exceeded")
            return

        delay_ms = self._backoff_ms(attempt)
        logger.info(f"Redelivering {entry_id} as attempt {attempt}/{cfg.max_retries} in {delay_ms:.0f}ms")
        await asyncio.sleep(delay_ms / 1000.0)

        event.metadata["retry_count"] = attempt
        try:
            await self.broker.append(cfg.stream_key, event)
        except Exception as e:
            # Left unacknowledged for the reclaim loop
            logger.error(f"Redelivery of {entry_id} failed: {e}")
            return
        self.metrics.events_retried += 1
        await self._ack(entry_id)

    async def _dead_letter(self, entry_id: str, event: BusEvent, reason: str):
        cfg = self.config
        self.metrics.events_failed += 1
        self.metrics.events_sent_to_dlq += 1
        try:
            await self.broker.dead_letter(
                cfg.dlq_stream_key, event, reason,
                original_message_id=str(entry_id), consumer=cfg.consumer_name,
            )
        except Exception as e:
            logger.error(f"Could not dead-letter {entry_id} ({reason}): {e}")
            return
        logger.warning(f"Entry {entry_id} dead-lettered to {cfg.dlq_stream_key}: {reason}")
        await self._ack(entry_id)

    async def _quarantine(self, entry_id: str, fields: Dict[Any, Any], error: str):
        raw = {str(k): str(v)[:1000] for k, v in fields.items()}
        wrapper = BusEvent(
            event_type=EventTypes.DLQ_UNPARSEABLE,
            aggregate_id="unknown",
            source=self.config.consumer_name,
            payload={"raw_data": raw, "error": error},
        )
        await self._dead_letter(entry_id, wrapper, "unparseable_event")

    async def _ack(self, entry_id: str):
        await self.broker.ack(self.config.stream_key, self.config.group_name, entry_id)
