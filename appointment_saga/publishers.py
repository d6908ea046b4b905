"""
Bus publishers for the two saga streams.

FanoutPublisher writes creation messages tagged with the countryISO
attribute; every country group reads the stream and keeps its own country.
ConfirmationPublisher writes processed confirmations back to the tracking
side, tagged with the country that stored them.
"""

import logging

from saga_shared import COUNTRY_ATTRIBUTE, EventBroker, EventTypes

from .models import ConfirmationEvent, FanoutMessage

logger = logging.getLogger(__name__)


class FanoutPublisher:
    def __init__(self, broker: EventBroker, stream_key: str):
        self.broker = broker
        self.stream_key = stream_key

    async def publish_created(self, message: FanoutMessage) -> str:
        """Publish an appointment.created message; returns the stream entry id"""
        country = message.country_iso.value
        message_id = await self.broker.publish(
            self.stream_key,
            EventTypes.APPOINTMENT_CREATED,
            message.appointment_id,
            message.to_payload(),
            attributes={COUNTRY_ATTRIBUTE: country},
        )
        logger.debug(f"Fan-out {message.appointment_id} ({country}) -> {message_id}")
        return message_id


class ConfirmationPublisher:
    def __init__(self, broker: EventBroker, stream_key: str):
        self.broker = broker
        self.stream_key = stream_key

    async def publish_confirmation(self, confirmation: ConfirmationEvent) -> str:
        message_id = await self.broker.publish(
            self.stream_key,
            EventTypes.APPOINTMENT_PROCESSED,
            confirmation.appointment_id,
            confirmation.to_payload(),
            attributes={COUNTRY_ATTRIBUTE: confirmation.country_iso.value},
        )
        logger.debug(f"Confirmation {confirmation.appointment_id} -> {message_id}")
        return message_id
