"""
Repository contract shared by the tracking store and the durable stores.

Two variants implement it: TrackingStore (Redis, live status) and
DurableStore (SQLAlchemy, one per country). RepositoryFactory picks the
variant from configuration.
"""

from abc import ABC, abstractmethod
from typing import Generic, List, Optional, TypeVar

from .models import AppointmentStatus

R = TypeVar("R")


class AppointmentRepository(ABC, Generic[R]):
    """Narrow read/write contract; every call is atomic for a single record"""

    @abstractmethod
    async def save(self, record: R) -> None:
        """Insert a new record"""

    @abstractmethod
    async def find_by_insured_id(self, insured_id: str) -> List[R]:
        """All records of a requester, newest first"""

    @abstractmethod
    async def find_by_id(self, appointment_id: str) -> Optional[R]:
        """Point lookup by appointment id"""

    @abstractmethod
    async def update_status(self, appointment_id: str, status: AppointmentStatus) -> bool:
        """
        Set status and updated timestamp.

        Returns:
            False when no record has this id (nothing is written)
        """
