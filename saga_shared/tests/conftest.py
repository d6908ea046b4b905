"""
Pytest fixtures for shared module tests.
"""

import pytest
from unittest.mock import AsyncMock

from saga_shared.events import BusEvent, EventTypes, COUNTRY_ATTRIBUTE


@pytest.fixture
def mock_redis_client():
    """Create a mock Redis client."""
    client = AsyncMock()

    client.xadd = AsyncMock(return_value="1234567890-0")
    client.xreadgroup = AsyncMock(return_value=[])
    client.xack = AsyncMock(return_value=1)
    client.xgroup_create = AsyncMock(return_value=True)
    client.xautoclaim = AsyncMock(return_value=("0-0", [], []))
    client.ping = AsyncMock(return_value=True)
    client.info = AsyncMock(return_value={
        "redis_version": "7.2.4",
        "uptime_in_seconds": 120,
        "connected_clients": 3,
        "used_memory_human": "1.5M",
    })

    return client


@pytest.fixture
def sample_created_event():
    """Fan-out event for a PE appointment."""
    return BusEvent(
        event_type=EventTypes.APPOINTMENT_CREATED,
        aggregate_id="appt-123",
        source="test_service",
        payload={
            "appointmentId": "appt-123",
            "insuredId": "01234",
            "scheduleId": 100,
            "countryISO": "PE",
        },
        attributes={COUNTRY_ATTRIBUTE: "PE"},
    )


@pytest.fixture
def sample_event_dict():
    """A fan-out event as returned by XREADGROUP with decode_responses=True."""
    return {
        "event_type": "appointment.created",
        "aggregate_id": "appt-123",
        "source": "test_service",
        "timestamp": "1234567890.123",
        "correlation_id": "abc-123-def",
        "payload": '{"appointmentId": "appt-123", "insuredId": "01234", "scheduleId": 100, "countryISO": "PE"}',
        "attributes": '{"countryISO": "PE"}',
        "metadata": "{}",
    }
