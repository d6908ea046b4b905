"""
Test configuration and fixtures for appointment saga tests.

Redis is an AsyncMock backed by in-memory dicts, with the tracking store
Lua scripts replayed in Python over the same dicts; durable stores run on
in-memory SQLite through aiosqlite.
"""

import json
from collections import defaultdict
from itertools import count

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from saga_shared import BusEvent

from ..config import AppointmentConfig
from ..durable_store import DurableStore
from ..models import CountryISO
from ..repository_factory import RepositoryFactory
from ..runtime import SagaRuntime, build_service
from ..tracking_store import CHANGE_STATUS_SCRIPT, SAVE_RECORD_SCRIPT


@pytest.fixture
def test_config():
    """Test configuration fixture"""
    return AppointmentConfig(
        redis_url="redis://localhost:6379/15",
        database_urls={"PE": "sqlite+aiosqlite://", "CL": "sqlite+aiosqlite://"},
        stale_pending_seconds=60,
        fail_pending_after_seconds=600,
        log_state_transitions=False,
    )


@pytest.fixture
def mock_redis_client():
    """Mock Redis client for testing"""
    mock_client = AsyncMock()
    # Store for data persistence across calls
    strings = {}
    sets = defaultdict(set)
    zsets = defaultdict(dict)
    streams = defaultdict(list)
    ids = count(1)

    async def mock_get(key):
        return strings.get(key)

    async def mock_set(key, value, nx=False, **kwargs):
        if nx and key in strings:
            return None
        strings[key] = value
        return True

    async def mock_mget(keys):
        return [strings.get(k) for k in keys]

    async def mock_delete(*keys):
        removed = 0
        for key in keys:
            removed += int(strings.pop(key, None) is not None)
        return removed

    async def mock_sadd(key, *members):
        before = len(sets[key])
        sets[key].update(members)
        return len(sets[key]) - before

    async def mock_smembers(key):
        return set(sets.get(key, set()))

    async def mock_zadd(key, mapping, **kwargs):
        zsets[key].update(mapping)
        return len(mapping)

    async def mock_zrem(key, *members):
        return sum(1 for m in members if zsets[key].pop(m, None) is not None)

    async def mock_zrangebyscore(key, low, high):
        low = float("-inf") if low == "-inf" else float(low)
        high = float("inf") if high == "+inf" else float(high)
        items = sorted(zsets.get(key, {}).items(), key=lambda kv: kv[1])
        return [member for member, score in items if low <= score <= high]

    async def mock_xadd(stream, fields, **kwargs):
        message_id = f"{next(ids)}-0"
        streams[stream].append((message_id, dict(fields)))
        return message_id

    def run_save_record(keys, args):
        slot_key, record_key, insured_key, pending_key = keys
        appointment_id, payload, created, holds_slot, is_pending, record_prefix = args[:6]
        if holds_slot == "1":
            holder = strings.get(slot_key)
            if holder and holder != appointment_id:
                raw = strings.get(record_prefix + holder)
                if raw and json.loads(raw)["status"] in args[6:]:
                    return holder
            strings[slot_key] = appointment_id
        strings[record_key] = payload
        sets[insured_key].add(appointment_id)
        if is_pending == "1":
            zsets[pending_key][appointment_id] = float(created)
        return None

    def run_change_status(keys, args):
        record_key, pending_key, slot_key = keys
        expected, payload, appointment_id, leaves_pending, releases_slot = args
        raw = strings.get(record_key)
        if not raw:
            return [0, ""]
        current = json.loads(raw)["status"]
        if current != expected:
            return [-1, current]
        strings[record_key] = payload
        if leaves_pending == "1":
            zsets[pending_key].pop(appointment_id, None)
        if releases_slot == "1" and strings.get(slot_key) == appointment_id:
            del strings[slot_key]
        return [1, current]

    script_handlers = {
        SAVE_RECORD_SCRIPT: run_save_record,
        CHANGE_STATUS_SCRIPT: run_change_status,
    }

    def mock_register_script(source):
        handler = script_handlers[source]

        async def run(keys=(), args=(), client=None):
            return handler(list(keys), [str(a) for a in args])

        return run

    mock_client.register_script = MagicMock(side_effect=mock_register_script)
    mock_client.get.side_effect = mock_get
    mock_client.set.side_effect = mock_set
    mock_client.mget.side_effect = mock_mget
    mock_client.delete.side_effect = mock_delete
    mock_client.sadd.side_effect = mock_sadd
    mock_client.smembers.side_effect = mock_smembers
    mock_client.zadd.side_effect = mock_zadd
    mock_client.zrem.side_effect = mock_zrem
    mock_client.zrangebyscore.side_effect = mock_zrangebyscore
    mock_client.xadd.side_effect = mock_xadd
    mock_client.ping.return_value = True
    mock_client.info.return_value = {"redis_version": "7.2.4"}
    mock_client.xgroup_create.return_value = True
    mock_client.xreadgroup.return_value = []
    mock_client.xack.return_value = 1

    mock_client.strings = strings
    mock_client.zsets = zsets
    mock_client.streams = streams
    return mock_client


def stream_events(mock_redis_client, stream_key):
    """(message_id, BusEvent) pairs published to a stream"""
    return [
        (message_id, BusEvent.from_redis_dict(fields))
        for message_id, fields in mock_redis_client.streams.get(stream_key, [])
    ]


async def _memory_store(country: CountryISO) -> DurableStore:
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    store = DurableStore(country, engine)
    await store.create_schema()
    return store


@pytest_asyncio.fixture
async def durable_stores():
    """One in-memory database per country"""
    stores = {country: await _memory_store(country) for country in CountryISO}
    yield stores
    for store in stores.values():
        await store.close()


@pytest.fixture
def repositories(test_config, mock_redis_client, durable_stores):
    return RepositoryFactory(test_config, mock_redis_client, durable_stores=durable_stores)


@pytest.fixture
def service(test_config, mock_redis_client, repositories):
    return build_service(test_config, mock_redis_client, repositories)


@pytest.fixture
def tracking_store(repositories):
    return repositories.create_tracking_store()


@pytest.fixture
def runtime(test_config, mock_redis_client, repositories, service):
    return SagaRuntime(
        config=test_config,
        redis=mock_redis_client,
        broker=service.fanout.broker,
        repositories=repositories,
        service=service,
        owns_redis=False,
    )
