"""
Relational durable store: the permanent per-country appointment history.

One DurableStore (and one async engine with its own pool) exists per
country. Rows are inserted once by the processing step and never deleted.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Column, DateTime, Integer, String, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .errors import DuplicateAppointmentError, InvalidTransitionError
from .models import VALID_TRANSITIONS, AppointmentStatus, CountryISO, DurableRecord
from .repository import AppointmentRepository

logger = logging.getLogger(__name__)

Base = declarative_base()


class AppointmentRow(Base):
    """Appointment row; status is always 'completed' on insert"""
    __tablename__ = "appointments"

    appointment_id = Column(String(36), primary_key=True)
    insured_id = Column(String(5), nullable=False, index=True)
    schedule_id = Column(Integer, nullable=False)
    country_iso = Column(String(2), nullable=False)
    status = Column(String(16), nullable=False, default=AppointmentStatus.COMPLETED.value)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )

    def to_record(self) -> DurableRecord:
        return DurableRecord(
            appointment_id=self.appointment_id,
            insured_id=self.insured_id,
            schedule_id=self.schedule_id,
            country_iso=CountryISO(self.country_iso),
            status=AppointmentStatus(self.status),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class DurableStore(AppointmentRepository[DurableRecord]):
    """SQLAlchemy asyncio store for one country's database"""

    def __init__(self, country: CountryISO, engine: AsyncEngine):
        self.country = CountryISO(country)
        self.engine = engine
        self._sessions = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, country: CountryISO, url: str, pool_size: int = 10) -> "DurableStore":
        """Build the store and its engine; the pool lives until close()"""
        engine_kwargs = {"pool_pre_ping": True}
        if not url.startswith("sqlite"):
            engine_kwargs["pool_size"] = pool_size
        engine = create_async_engine(url, **engine_kwargs)
        logger.info(f"Durable store engine created for {CountryISO(country).value}")
        return cls(country, engine)

    async def save(self, record: DurableRecord) -> None:
        """
        Insert the record.

        Raises:
            DuplicateAppointmentError: the appointment id is already stored
        """
        row = AppointmentRow(
            appointment_id=record.appointment_id,
            insured_id=record.insured_id,
            schedule_id=record.schedule_id,
            country_iso=CountryISO(record.country_iso).value,
            status=AppointmentStatus(record.status).value,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        async with self._sessions() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateAppointmentError(
                    f"Appointment {record.appointment_id} already stored in {self.country.value}",
                    details=str(e.orig),
                ) from e

    async def find_by_insured_id(self, insured_id: str) -> List[DurableRecord]:
        stmt = (
            select(AppointmentRow)
            .where(AppointmentRow.insured_id == insured_id)
            .order_by(AppointmentRow.created_at.desc())
        )
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [row.to_record() for row in rows]

    async def find_by_id(self, appointment_id: str) -> Optional[DurableRecord]:
        async with self._sessions() as session:
            row = await session.get(AppointmentRow, appointment_id)
        return row.to_record() if row else None

    async def update_status(self, appointment_id: str, status: AppointmentStatus) -> bool:
        status = AppointmentStatus(status)
        allowed_from = [s.value for s, targets in VALID_TRANSITIONS.items() if status in targets]
        stmt = (
            update(AppointmentRow)
            .where(AppointmentRow.appointment_id == appointment_id)
            .where(AppointmentRow.status.in_(allowed_from))
            .values(status=status.value, updated_at=datetime.now(timezone.utc))
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            await session.commit()
        if result.rowcount > 0:
            return True

        row = await self.find_by_id(appointment_id)
        if row is None:
            return False
        raise InvalidTransitionError(appointment_id, row.status.value, status.value)

    async def create_schema(self) -> None:
        """Create the appointments table if missing (local runs and tests)"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info(f"Durable store engine disposed for {self.country.value}")
