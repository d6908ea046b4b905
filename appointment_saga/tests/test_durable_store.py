"""
Tests for the SQLAlchemy durable store (in-memory SQLite).
"""

from datetime import datetime, timedelta, timezone

import pytest

from ..errors import DuplicateAppointmentError, InfrastructureError, InvalidTransitionError
from ..models import AppointmentStatus, CountryISO, DurableRecord


def _record(appointment_id="a-1", insured_id="01234", created_at=None, status=AppointmentStatus.COMPLETED):
    created_at = created_at or datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    return DurableRecord(
        appointment_id=appointment_id,
        insured_id=insured_id,
        schedule_id=100,
        country_iso=CountryISO.PE,
        status=status,
        created_at=created_at,
        updated_at=created_at,
    )


@pytest.fixture
def store(durable_stores):
    return durable_stores[CountryISO.PE]


@pytest.mark.asyncio
async def test_save_and_find_by_id(store):
    await store.save(_record())

    found = await store.find_by_id("a-1")

    assert found.insured_id == "01234"
    assert found.schedule_id == 100
    assert found.country_iso == CountryISO.PE
    assert found.status == AppointmentStatus.COMPLETED


@pytest.mark.asyncio
async def test_find_by_id_missing(store):
    assert await store.find_by_id("missing") is None


@pytest.mark.asyncio
async def test_duplicate_id_is_rejected(store):
    await store.save(_record())

    with pytest.raises(DuplicateAppointmentError) as exc_info:
        await store.save(_record())

    assert isinstance(exc_info.value, InfrastructureError)


@pytest.mark.asyncio
async def test_find_by_insured_id_newest_first(store):
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    await store.save(_record("old", created_at=base))
    await store.save(_record("new", created_at=base + timedelta(days=1)))
    await store.save(_record("other", insured_id="55555"))

    records = await store.find_by_insured_id("01234")

    assert [r.appointment_id for r in records] == ["new", "old"]


@pytest.mark.asyncio
async def test_update_status(store):
    await store.save(_record(status=AppointmentStatus.PENDING))

    assert await store.update_status("a-1", AppointmentStatus.FAILED) is True
    assert (await store.find_by_id("a-1")).status == AppointmentStatus.FAILED


@pytest.mark.asyncio
async def test_update_status_unknown_id(store):
    assert await store.update_status("missing", AppointmentStatus.FAILED) is False


@pytest.mark.asyncio
async def test_completed_row_cannot_be_failed(store):
    await store.save(_record())

    with pytest.raises(InvalidTransitionError):
        await store.update_status("a-1", AppointmentStatus.FAILED)

    assert (await store.find_by_id("a-1")).status == AppointmentStatus.COMPLETED


@pytest.mark.asyncio
async def test_countries_are_isolated(durable_stores):
    await durable_stores[CountryISO.PE].save(_record())

    assert await durable_stores[CountryISO.CL].find_by_id("a-1") is None


@pytest.mark.asyncio
async def test_ping(store):
    assert await store.ping() is True
