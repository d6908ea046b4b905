"""
Data models for the Appointment Saga

Contains enums, record dataclasses, bus message shapes and Pydantic models
for the HTTP contract.

Internal names are snake_case; the wire (bus payloads and HTTP bodies) uses
the camelCase keys clients already send (insuredId, scheduleId, countryISO).
"""

import re
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Enums
# ============================================================================

class AppointmentStatus(str, Enum):
    """Lifecycle status shared by tracking and durable records"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CountryISO(str, Enum):
    """Supported countries; each has its own durable store and subscriber"""
    PE = "PE"
    CL = "CL"


# ============================================================================
# Constants
# ============================================================================

INSURED_ID_PATTERN = re.compile(r'^\d{5}$')

# Statuses that keep a (schedule, country) slot occupied
SLOT_HOLDING_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.COMPLETED})

VALID_TRANSITIONS = {
    AppointmentStatus.PENDING: {AppointmentStatus.COMPLETED, AppointmentStatus.FAILED},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.FAILED: set(),
}


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and Z suffix"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp produced by utc_now_iso()"""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


# ============================================================================
# Records
# ============================================================================

@dataclass
class TrackingRecord:
    """Live status of an appointment in the tracking store"""
    appointment_id: str
    insured_id: str
    schedule_id: int
    country_iso: CountryISO
    status: AppointmentStatus
    created_at: str
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for storage (enum values as plain strings)"""
        data = asdict(self)
        data["country_iso"] = self.country_iso.value
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackingRecord":
        return cls(
            appointment_id=data["appointment_id"],
            insured_id=data["insured_id"],
            schedule_id=int(data["schedule_id"]),
            country_iso=CountryISO(data["country_iso"]),
            status=AppointmentStatus(data["status"]),
            created_at=data["created_at"],
            updated_at=data.get("updated_at"),
        )

    def holds_slot(self) -> bool:
        return self.status in SLOT_HOLDING_STATUSES

    def to_response(self) -> "AppointmentResponse":
        return AppointmentResponse(
            appointment_id=self.appointment_id,
            insured_id=self.insured_id,
            schedule_id=self.schedule_id,
            country_iso=self.country_iso,
            status=self.status,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


@dataclass
class DurableRecord:
    """Permanent copy of a processed appointment in a country database"""
    appointment_id: str
    insured_id: str
    schedule_id: int
    country_iso: CountryISO
    status: AppointmentStatus
    created_at: datetime
    updated_at: datetime


# ============================================================================
# Bus messages
# ============================================================================

@dataclass
class FanoutMessage:
    """Creation message broadcast to the country subscribers"""
    appointment_id: str
    insured_id: str
    schedule_id: int
    country_iso: CountryISO

    @classmethod
    def from_record(cls, record: TrackingRecord) -> "FanoutMessage":
        return cls(
            appointment_id=record.appointment_id,
            insured_id=record.insured_id,
            schedule_id=record.schedule_id,
            country_iso=record.country_iso,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "appointmentId": self.appointment_id,
            "insuredId": self.insured_id,
            "scheduleId": self.schedule_id,
            "countryISO": self.country_iso.value,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "FanoutMessage":
        return cls(
            appointment_id=payload["appointmentId"],
            insured_id=payload["insuredId"],
            schedule_id=int(payload["scheduleId"]),
            country_iso=CountryISO(payload["countryISO"]),
        )


@dataclass
class ConfirmationEvent:
    """Announces that the durable record was written"""
    appointment_id: str
    insured_id: str
    status: AppointmentStatus
    processed_at: str
    country_iso: CountryISO

    def to_payload(self) -> Dict[str, Any]:
        return {
            "appointmentId": self.appointment_id,
            "insuredId": self.insured_id,
            "status": self.status.value,
            "processedAt": self.processed_at,
            "countryISO": self.country_iso.value,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ConfirmationEvent":
        return cls(
            appointment_id=payload["appointmentId"],
            insured_id=payload["insuredId"],
            status=AppointmentStatus(payload["status"]),
            processed_at=payload["processedAt"],
            country_iso=CountryISO(payload["countryISO"]),
        )


# ============================================================================
# Pydantic Models for API
# ============================================================================

class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)


class AppointmentRequest(_WireModel):
    """Request model for creating an appointment"""
    insured_id: str = Field(..., alias="insuredId", description="Five digit insured identifier")
    schedule_id: int = Field(..., alias="scheduleId", description="Slot (center, specialty, doctor, time)")
    country_iso: str = Field(..., alias="countryISO", description="PE or CL")


class AppointmentResponse(_WireModel):
    """Projection of a tracking record returned to callers"""
    appointment_id: str = Field(..., alias="appointmentId")
    insured_id: str = Field(..., alias="insuredId")
    schedule_id: int = Field(..., alias="scheduleId")
    country_iso: CountryISO = Field(..., alias="countryISO")
    status: AppointmentStatus = Field(..., description="pending, completed or failed")
    created_at: str = Field(..., alias="createdAt")
    updated_at: Optional[str] = Field(None, alias="updatedAt")


class AppointmentListResponse(_WireModel):
    """Response model for listing a requester's appointments"""
    appointments: List[AppointmentResponse]
    count: int


class ErrorResponse(BaseModel):
    """Structured error body for synchronous callers"""
    message: str
    kind: str


class HealthResponse(BaseModel):
    """Response model for health check"""
    status: str = Field(..., description="Service status: healthy/degraded/unhealthy")
    checks: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    uptime_seconds: float = Field(..., description="Service uptime in seconds")
