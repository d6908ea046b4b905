"""
Tests for the routed EventBroker.
"""

import json

import pytest
from redis.exceptions import ResponseError

from saga_shared.event_broker import EventBroker, dead_letter_stream, routed_group


class TestNaming:

    def test_dead_letter_stream(self):
        assert dead_letter_stream("appointments:fanout") == "appointments:fanout:dlq"

    def test_routed_group_is_lowercased(self):
        assert routed_group("appointment-processor", "PE") == "appointment-processor-pe"


class TestPublish:

    @pytest.fixture
    def broker(self, mock_redis_client):
        return EventBroker(mock_redis_client, source="appointment-api", max_len=5000)

    @pytest.mark.asyncio
    async def test_publish_builds_routed_envelope(self, broker, mock_redis_client):
        result = await broker.publish(
            "appointments:fanout",
            "appointment.created",
            "appt-123",
            {"appointmentId": "appt-123"},
            attributes={"countryISO": "CL"},
        )

        assert result == "1234567890-0"
        stream, fields = mock_redis_client.xadd.call_args[0]
        assert stream == "appointments:fanout"
        assert fields["event_type"] == "appointment.created"
        assert fields["aggregate_id"] == "appt-123"
        assert fields["source"] == "appointment-api"
        assert json.loads(fields["attributes"]) == {"countryISO": "CL"}
        assert mock_redis_client.xadd.call_args[1] == {"maxlen": 5000, "approximate": True}

    @pytest.mark.asyncio
    async def test_publish_without_attributes(self, broker, mock_redis_client):
        await broker.publish("appointments:confirmations", "appointment.processed", "a", {})

        fields = mock_redis_client.xadd.call_args[0][1]
        assert json.loads(fields["attributes"]) == {}

    @pytest.mark.asyncio
    async def test_append_keeps_existing_envelope(self, broker, mock_redis_client, sample_created_event):
        await broker.append("appointments:fanout", sample_created_event)

        fields = mock_redis_client.xadd.call_args[0][1]
        assert fields["correlation_id"] == sample_created_event.correlation_id
        assert fields["source"] == "test_service"

    @pytest.mark.asyncio
    async def test_append_failure_propagates(self, broker, mock_redis_client, sample_created_event):
        mock_redis_client.xadd.side_effect = ConnectionError("down")

        with pytest.raises(ConnectionError):
            await broker.append("appointments:fanout", sample_created_event)

    @pytest.mark.asyncio
    async def test_dead_letter_stamps_reason(self, broker, mock_redis_client, sample_created_event):
        await broker.dead_letter(
            "appointments:fanout:dlq", sample_created_event, "processing_failed", consumer="c1"
        )

        stream, fields = mock_redis_client.xadd.call_args[0]
        metadata = json.loads(fields["metadata"])
        assert stream == "appointments:fanout:dlq"
        assert metadata["dlq_reason"] == "processing_failed"
        assert metadata["consumer"] == "c1"
        assert "dlq_timestamp" in metadata


class TestGroups:

    @pytest.fixture
    def broker(self, mock_redis_client):
        return EventBroker(mock_redis_client)

    @pytest.mark.asyncio
    async def test_ensure_group_reads_from_start(self, broker, mock_redis_client):
        assert await broker.ensure_group("appointments:fanout", "appointment-processor-pe") is True

        mock_redis_client.xgroup_create.assert_called_once_with(
            "appointments:fanout", "appointment-processor-pe", id="0", mkstream=True
        )

    @pytest.mark.asyncio
    async def test_ensure_group_already_exists(self, broker, mock_redis_client):
        mock_redis_client.xgroup_create.side_effect = ResponseError(
            "BUSYGROUP Consumer Group name already exists"
        )

        assert await broker.ensure_group("appointments:fanout", "g") is False

    @pytest.mark.asyncio
    async def test_ensure_group_other_error(self, broker, mock_redis_client):
        mock_redis_client.xgroup_create.side_effect = ResponseError("WRONGTYPE")

        with pytest.raises(ResponseError):
            await broker.ensure_group("appointments:fanout", "g")

    @pytest.mark.asyncio
    async def test_read_flattens_entries(self, broker, mock_redis_client, sample_event_dict):
        mock_redis_client.xreadgroup.return_value = [
            ("appointments:fanout", [("1-0", sample_event_dict), ("2-0", sample_event_dict)])
        ]

        entries = await broker.read("appointments:fanout", "g", "c1", count=5, block_ms=10)

        assert [entry_id for entry_id, _ in entries] == ["1-0", "2-0"]
        mock_redis_client.xreadgroup.assert_called_once_with(
            groupname="g", consumername="c1", streams={"appointments:fanout": ">"}, count=5, block=10
        )

    @pytest.mark.asyncio
    async def test_read_timeout_is_empty(self, broker, mock_redis_client):
        mock_redis_client.xreadgroup.return_value = None

        assert await broker.read("appointments:fanout", "g", "c1") == []

    @pytest.mark.asyncio
    async def test_ack(self, broker, mock_redis_client):
        await broker.ack("appointments:fanout", "g", "1-0", "2-0")

        mock_redis_client.xack.assert_called_once_with("appointments:fanout", "g", "1-0", "2-0")

    @pytest.mark.asyncio
    async def test_ack_nothing(self, broker, mock_redis_client):
        assert await broker.ack("appointments:fanout", "g") == 0

        mock_redis_client.xack.assert_not_called()

    @pytest.mark.asyncio
    async def test_reclaim(self, broker, mock_redis_client, sample_event_dict):
        mock_redis_client.xautoclaim.return_value = ("0-0", [("5-0", sample_event_dict)], [])

        claimed = await broker.reclaim("appointments:fanout", "g", "c1", min_idle_ms=30000, count=20)

        assert claimed == [("5-0", sample_event_dict)]
        mock_redis_client.xautoclaim.assert_called_once_with(
            "appointments:fanout", "g", "c1", 30000, count=20
        )
