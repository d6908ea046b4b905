"""
Stream consumers driving the asynchronous saga steps.

CountryProcessor: one consumer group per country on the fan-out stream,
    routed on the countryISO attribute. Entries tagged for another country
    are acknowledged and skipped by the base class.
ConfirmationConsumer: single group on the confirmation stream that
    completes tracking records.

Service results map onto consumer outcomes: success acks, Validation goes
straight to the dead-letter stream, Infrastructure is retried with backoff.
"""

import logging
import socket
from typing import Optional

from redis.asyncio import Redis

from saga_shared import (
    BusEvent,
    COUNTRY_ATTRIBUTE,
    ConsumerConfig,
    EventBroker,
    EventConsumer,
    EventTypes,
    ProcessingResult,
    routed_group,
)

from .config import AppointmentConfig
from .errors import ErrorKind, ServiceResult
from .models import ConfirmationEvent, CountryISO, FanoutMessage
from .service import AppointmentService

logger = logging.getLogger(__name__)


def _default_consumer_name(role: str) -> str:
    return f"{role}-{socket.gethostname()}"


def _outcome(result: ServiceResult) -> ProcessingResult:
    if result.success:
        return ProcessingResult.SUCCESS
    if result.error.kind == ErrorKind.VALIDATION:
        return ProcessingResult.FAIL
    return ProcessingResult.RETRY


def country_consumer_config(
    config: AppointmentConfig, country: CountryISO, consumer_name: Optional[str] = None
) -> ConsumerConfig:
    country = CountryISO(country)
    return ConsumerConfig(
        stream_key=config.fanout_stream,
        group_name=routed_group("appointment-processor", country.value),
        event_types=(EventTypes.APPOINTMENT_CREATED,),
        routing={COUNTRY_ATTRIBUTE: country.value},
        consumer_name=consumer_name or _default_consumer_name(f"processor-{country.value.lower()}"),
        max_retries=config.consumer_max_retries,
    )


def confirmation_consumer_config(
    config: AppointmentConfig, consumer_name: Optional[str] = None
) -> ConsumerConfig:
    return ConsumerConfig(
        stream_key=config.confirmation_stream,
        group_name="appointment-confirmations",
        event_types=(EventTypes.APPOINTMENT_PROCESSED,),
        consumer_name=consumer_name or _default_consumer_name("confirmations"),
        max_retries=config.consumer_max_retries,
    )


class CountryProcessor(EventConsumer):
    """Processes appointment.created entries for a single country"""

    def __init__(
        self,
        redis_client: Redis,
        broker: EventBroker,
        config: ConsumerConfig,
        service: AppointmentService,
        country: CountryISO,
    ):
        super().__init__(redis_client, broker, config)
        self.service = service
        self.country = CountryISO(country)

    async def process_event(self, event: BusEvent) -> ProcessingResult:
        try:
            event.validate_payload()
            message = FanoutMessage.from_payload(event.payload)
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Malformed fan-out payload for {event.aggregate_id}: {e}")
            return ProcessingResult.FAIL

        result = await self.service.process_appointment(message, self.country)
        if not result.success:
            logger.warning(
                f"[{self.country.value}] process {message.appointment_id} failed "
                f"({result.error.kind.value}): {result.error.message}"
            )
        return _outcome(result)


class ConfirmationConsumer(EventConsumer):
    """Applies appointment.processed entries to the tracking store"""

    def __init__(
        self,
        redis_client: Redis,
        broker: EventBroker,
        config: ConsumerConfig,
        service: AppointmentService,
    ):
        super().__init__(redis_client, broker, config)
        self.service = service

    async def process_event(self, event: BusEvent) -> ProcessingResult:
        try:
            event.validate_payload()
            confirmation = ConfirmationEvent.from_payload(event.payload)
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Malformed confirmation payload for {event.aggregate_id}: {e}")
            return ProcessingResult.FAIL

        return _outcome(await self.service.confirm_appointment(confirmation))
