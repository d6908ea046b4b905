"""
Unified Event Envelope for the Appointment Saga.

Defines the standard bus entry used by the fan-out and confirmation streams.
Routing attributes travel next to the payload so subscribers can filter
without parsing it (the stream equivalent of a topic filter policy).
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Any
import time
import json
import uuid


@dataclass
class BusEvent:
    """
    Standard envelope for every appointment bus message.
    """
    event_type: str
    aggregate_id: str
    payload: Dict[str, Any]
    source: str
    attributes: Dict[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    def to_redis_dict(self) -> Dict[str, str]:
        """
        Convert to Redis-compatible dictionary (all values must be strings/bytes).
        The payload, attributes and metadata are JSON serialized.
        """
        return {
            "event_type": self.event_type,
            "aggregate_id": self.aggregate_id,
            "source": self.source,
            "timestamp": str(self.timestamp),
            "correlation_id": self.correlation_id,
            "payload": json.dumps(self.payload),
            "attributes": json.dumps(self.attributes),
            "metadata": json.dumps(self.metadata)
        }

    @classmethod
    def from_redis_dict(cls, data: Dict[Any, Any]) -> 'BusEvent':
        """Create BusEvent from Redis stream data."""
        # Handle bytes if returned from Redis
        def decode(val):
            return val.decode('utf-8') if isinstance(val, bytes) else val

        def get(name: str, default=None):
            value = data.get(name)
            if value is None:
                value = data.get(name.encode('utf-8'))
            return decode(value) if value is not None else default

        event_type = get("event_type")
        if not event_type:
            raise ValueError(f"Bus entry has no event_type: {data!r}")

        return cls(
            event_type=event_type,
            aggregate_id=get("aggregate_id", ""),
            source=get("source", "unknown"),
            timestamp=float(get("timestamp", 0.0)),
            correlation_id=get("correlation_id", ""),
            payload=json.loads(get("payload", "{}")),
            attributes=json.loads(get("attributes", "{}")),
            metadata=json.loads(get("metadata", "{}"))
        )

    def validate_payload(self) -> None:
        """Validate payload schema for the saga event types."""
        required = {
            EventTypes.APPOINTMENT_CREATED: ["appointmentId", "insuredId", "scheduleId", "countryISO"],
            EventTypes.APPOINTMENT_PROCESSED: ["appointmentId", "insuredId", "status", "processedAt", "countryISO"],
        }

        fields = required.get(self.event_type)
        if fields:
            missing = [f for f in fields if f not in self.payload]
            if missing:
                raise ValueError(
                    f"Event {self.event_type} payload missing required fields: {missing}. "
                    f"Payload: {self.payload}"
                )


# Event Type Constants
class EventTypes:
    # Fan-out: tracking record written, waiting for country processing
    APPOINTMENT_CREATED = "appointment.created"

    # Confirmation: durable record written
    APPOINTMENT_PROCESSED = "appointment.processed"

    # Dead letter wrapper for entries that could not be parsed
    DLQ_UNPARSEABLE = "dlq.unparseable"


# Attribute used for country subscription filtering
COUNTRY_ATTRIBUTE = "countryISO"
