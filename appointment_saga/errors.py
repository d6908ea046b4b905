"""
Error taxonomy and result types for the Appointment Saga

Stores and publishers raise; the service boundary converts every failure
into a ServiceResult so callers never rely on exceptions for control flow.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Failure classification with its HTTP status equivalent"""
    VALIDATION = "validation"
    CONFLICT = "conflict"
    INFRASTRUCTURE = "infrastructure"
    NOT_FOUND = "not_found"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INFRASTRUCTURE: 500,
    ErrorKind.NOT_FOUND: 404,
}


class AppointmentError(Exception):
    """Base class for saga failures"""
    kind = ErrorKind.INFRASTRUCTURE

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(AppointmentError):
    kind = ErrorKind.VALIDATION


class ConflictError(AppointmentError):
    kind = ErrorKind.CONFLICT


class SlotTakenError(ConflictError):
    """Raised by the tracking store when the slot reservation already exists"""

    def __init__(self, schedule_id: int, country_iso: str, holder: Optional[str] = None):
        super().__init__(
            f"Schedule slot {schedule_id} is already taken in {country_iso}",
            details={"holder": holder},
        )
        self.schedule_id = schedule_id
        self.country_iso = country_iso
        self.holder = holder


class InvalidTransitionError(ConflictError):
    """Raised when a status change is not allowed from the record's current status"""

    def __init__(self, appointment_id: str, current: str, requested: str):
        super().__init__(
            f"Appointment {appointment_id} is {current}; cannot move to {requested}",
            details={"current": current, "requested": requested},
        )
        self.appointment_id = appointment_id
        self.current = current
        self.requested = requested


class InfrastructureError(AppointmentError):
    kind = ErrorKind.INFRASTRUCTURE


class DuplicateAppointmentError(InfrastructureError):
    """Raised by the durable store when the appointment id is already stored"""


class NotFoundError(AppointmentError):
    kind = ErrorKind.NOT_FOUND


@dataclass
class ServiceError:
    """Failure carried by a ServiceResult"""
    kind: ErrorKind
    message: str
    details: Any = None

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    def to_dict(self) -> dict:
        return {"message": self.message, "kind": self.kind.value}


@dataclass
class ServiceResult(Generic[T]):
    """Explicit success/failure outcome of a service operation"""
    success: bool
    data: Optional[T] = None
    error: Optional[ServiceError] = None

    @classmethod
    def ok(cls, data: Optional[T] = None) -> "ServiceResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str, details: Any = None) -> "ServiceResult[T]":
        return cls(success=False, error=ServiceError(kind=kind, message=message, details=details))

    @classmethod
    def from_exception(cls, exc: AppointmentError) -> "ServiceResult[T]":
        return cls.fail(exc.kind, exc.message, exc.details)
